"""
Vector helpers shared by the contour, panel and synthesis stages.

Thin numpy wrappers over the pydantic point/curve models.
"""

from typing import List, Tuple, Optional
import numpy as np

from formwork.core.models import Point3D, CurveSegment, BoundaryLoop

Z_AXIS = Point3D(x=0.0, y=0.0, z=1.0)
X_AXIS = Point3D(x=1.0, y=0.0, z=0.0)


def as_array(points: List[Point3D]) -> np.ndarray:
    """Stack points into an (N, 3) array."""
    if not points:
        return np.zeros((0, 3))
    return np.array([[p.x, p.y, p.z] for p in points], dtype=float)


def centroid(points: List[Point3D]) -> Point3D:
    """Arithmetic mean of a point set."""
    return Point3D.from_array(as_array(points).mean(axis=0))


def newell_normal(points: List[Point3D]) -> np.ndarray:
    """
    Area vector of a closed polygon (Newell's method).

    The direction follows the traversal order; the length is twice the
    enclosed area.
    """
    pts = as_array(points)
    if len(pts) < 3:
        return np.zeros(3)
    nxt = np.roll(pts, -1, axis=0)
    return np.array([
        np.sum((pts[:, 1] - nxt[:, 1]) * (pts[:, 2] + nxt[:, 2])),
        np.sum((pts[:, 2] - nxt[:, 2]) * (pts[:, 0] + nxt[:, 0])),
        np.sum((pts[:, 0] - nxt[:, 0]) * (pts[:, 1] + nxt[:, 1])),
    ])


def signed_area(loop: BoundaryLoop, normal: Point3D) -> float:
    """Signed area of a loop measured against a reference normal."""
    area_vector = newell_normal(loop.points())
    return float(0.5 * np.dot(area_vector, normal.normalized().to_array()))


def plane_frame(normal: Point3D) -> Tuple[Point3D, Point3D]:
    """
    Orthonormal in-plane axes for a plane normal.

    Vertical planes get a horizontal x axis and an upward y axis.
    """
    n = normal.normalized().to_array()
    reference = np.array([0.0, 0.0, 1.0])
    if abs(n[2]) > 0.9:
        reference = np.array([1.0, 0.0, 0.0])
        y_axis = np.cross(n, reference)
        y_axis /= np.linalg.norm(y_axis)
        x_axis = np.cross(y_axis, n)
    else:
        x_axis = np.cross(reference, n)
        x_axis /= np.linalg.norm(x_axis)
        y_axis = np.cross(n, x_axis)
    return Point3D.from_array(x_axis), Point3D.from_array(y_axis)


def distance_to_plane(point: Point3D, origin: Point3D, normal: Point3D) -> float:
    """Signed perpendicular distance of a point from a plane."""
    return (point - origin).dot(normal.normalized())


def project_to_plane(point: Point3D, origin: Point3D, normal: Point3D) -> Point3D:
    """Orthogonal projection of a point onto a plane."""
    n = normal.normalized()
    return point - n.scaled(distance_to_plane(point, origin, n))


def project_segment_to_plane(segment: CurveSegment, origin: Point3D,
                             normal: Point3D) -> CurveSegment:
    return CurveSegment(
        start=project_to_plane(segment.start, origin, normal),
        end=project_to_plane(segment.end, origin, normal),
        mid=project_to_plane(segment.mid, origin, normal) if segment.mid else None,
    )


def at_elevation(point: Point3D, elevation: float) -> Point3D:
    return Point3D(x=point.x, y=point.y, z=elevation)


def most_distant_pair(points: List[Point3D]) -> Optional[Tuple[Point3D, Point3D, float]]:
    """Two points of a set with the largest separation."""
    if len(points) < 2:
        return None
    pts = as_array(points)
    diffs = pts[:, None, :] - pts[None, :, :]
    distances = np.linalg.norm(diffs, axis=2)
    i, j = np.unravel_index(np.argmax(distances), distances.shape)
    return points[i], points[j], float(distances[i, j])


def vectors_parallel(a: Point3D, b: Point3D, tolerance: float = 1e-3) -> bool:
    """True when two directions are parallel or anti-parallel."""
    cross = np.cross(a.normalized().to_array(), b.normalized().to_array())
    return float(np.linalg.norm(cross)) < tolerance
