"""
Triangle-mesh geometry kernel.

Volumes are closed trimesh meshes. Faces are the mesh's coplanar facets
(plus any triangle belonging to no facet); their boundary loops come from
projecting the triangles onto the face plane and merging them with Shapely.
Booleans run on the manifold engine.
"""

from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import trimesh
from loguru import logger
from shapely.geometry import Polygon, MultiPolygon
from shapely.geometry.polygon import orient
from shapely.ops import unary_union

from formwork.core.geometry import plane_frame
from formwork.core.models import (
    BoundaryFace,
    BoundaryLoop,
    BoundingBox,
    CurveSegment,
    Point3D,
)


class MeshKernel:
    """GeometryKernel over trimesh meshes."""

    def __init__(self, engine: str = "manifold", simplify_tolerance: float = 1e-6):
        """
        Initialize kernel.

        Args:
            engine: trimesh boolean engine
            simplify_tolerance: Collinear vertex removal tolerance for face loops (m)
        """
        self.engine = engine
        self.simplify_tolerance = simplify_tolerance

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def volume_of(self, volume: Any) -> float:
        if volume is None or len(volume.faces) == 0:
            return 0.0
        return float(abs(volume.volume))

    def bounding_box(self, volume: Any) -> Optional[BoundingBox]:
        if volume is None or len(volume.vertices) == 0:
            return None
        lower, upper = volume.bounds
        return BoundingBox(
            min_x=float(lower[0]), min_y=float(lower[1]), min_z=float(lower[2]),
            max_x=float(upper[0]), max_y=float(upper[1]), max_z=float(upper[2]),
        )

    def faces(self, volume: Any) -> List[BoundaryFace]:
        """
        Planar faces of a mesh with outward normals and boundary loops.

        Args:
            volume: trimesh.Trimesh

        Returns:
            One BoundaryFace per facet and per stray triangle
        """
        if volume is None or len(volume.faces) == 0:
            return []

        groups: List[Tuple[np.ndarray, np.ndarray]] = []
        grouped = np.zeros(len(volume.faces), dtype=bool)

        for facet, normal in zip(volume.facets, volume.facets_normal):
            groups.append((np.asarray(facet), normal))
            grouped[facet] = True

        for index in np.nonzero(~grouped)[0]:
            groups.append((np.array([index]), volume.face_normals[index]))

        faces = []
        for triangles, normal in groups:
            area = float(volume.area_faces[triangles].sum())
            if area <= 0.0:
                continue
            face = self._face(volume, triangles, normal, area)
            if face is not None:
                faces.append(face)

        return faces

    def _face(self, mesh: trimesh.Trimesh, triangles: np.ndarray,
              normal: np.ndarray, area: float) -> Optional[BoundaryFace]:
        n = Point3D.from_array(normal)
        x_axis, y_axis = plane_frame(n)
        u = x_axis.to_array()
        v = y_axis.to_array()
        origin = mesh.vertices[mesh.faces[triangles[0]][0]]

        polygons = []
        for tri in mesh.vertices[mesh.faces[triangles]]:
            local = tri - origin
            polygon = Polygon([(float(p @ u), float(p @ v)) for p in local])
            if polygon.is_valid and polygon.area > 0:
                polygons.append(polygon)

        if not polygons:
            return None

        merged = unary_union(polygons)
        if isinstance(merged, MultiPolygon):
            merged = max(merged.geoms, key=lambda g: g.area)
        merged = orient(merged.simplify(self.simplify_tolerance, preserve_topology=True), sign=1.0)

        def lift(coords) -> BoundaryLoop:
            points = [
                Point3D.from_array(origin + x * u + y * v)
                for x, y in list(coords)[:-1]  # drop closing duplicate
            ]
            segments = [
                CurveSegment(start=points[i], end=points[(i + 1) % len(points)])
                for i in range(len(points))
            ]
            return BoundaryLoop(segments=segments)

        loops = [lift(merged.exterior.coords)]
        loops.extend(lift(ring.coords) for ring in merged.interiors)

        return BoundaryFace(
            normal=n,
            area=area,
            loops=loops,
            origin=Point3D.from_array(origin),
            x_axis=x_axis,
            y_axis=y_axis,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def extrude(self, loops: Sequence[BoundaryLoop], direction: Point3D,
                distance: float) -> trimesh.Trimesh:
        """
        Extrude planar loops along a direction.

        The first loop is the outer boundary, the others are holes. Arc
        segments contribute their mid point.

        Args:
            loops: Coplanar boundary loops
            direction: Extrusion direction (also the plane normal)
            distance: Extrusion length

        Returns:
            Closed mesh
        """
        if not loops or not loops[0].segments:
            raise ValueError("Nothing to extrude")
        if distance <= 0.0:
            raise ValueError(f"Extrusion distance must be positive, got {distance}")

        normal = direction.normalized()
        x_axis, y_axis = plane_frame(normal)
        origin = loops[0].segments[0].start.to_array()
        u, v = x_axis.to_array(), y_axis.to_array()

        def flatten(loop: BoundaryLoop) -> List[Tuple[float, float]]:
            coords = []
            for segment in loop.segments:
                for point in (segment.start, segment.mid):
                    if point is None:
                        continue
                    local = point.to_array() - origin
                    coords.append((float(local @ u), float(local @ v)))
            return coords

        polygon = Polygon(flatten(loops[0]), holes=[flatten(loop) for loop in loops[1:]])
        if not polygon.is_valid:
            polygon = polygon.buffer(0)
            if isinstance(polygon, MultiPolygon):
                polygon = max(polygon.geoms, key=lambda g: g.area)
        if polygon.is_empty or polygon.area <= 0.0:
            raise ValueError("Loops enclose no area")

        mesh = trimesh.creation.extrude_polygon(orient(polygon, sign=1.0), height=distance)

        transform = np.eye(4)
        transform[:3, 0] = u
        transform[:3, 1] = v
        transform[:3, 2] = normal.to_array()
        transform[:3, 3] = origin
        mesh.apply_transform(transform)
        return mesh

    def difference(self, volume: Any, tool: Any) -> trimesh.Trimesh:
        return volume.difference(tool, engine=self.engine)

    def intersect(self, volume: Any, tool: Any) -> Optional[trimesh.Trimesh]:
        if not self._boxes_overlap(volume, tool):
            return None
        result = volume.intersection(tool, engine=self.engine)
        if result is None or len(result.faces) == 0:
            return None
        return result

    def _boxes_overlap(self, a: trimesh.Trimesh, b: trimesh.Trimesh) -> bool:
        box_a, box_b = self.bounding_box(a), self.bounding_box(b)
        if box_a is None or box_b is None:
            return False
        overlap = box_a.intersects(box_b)
        if not overlap:
            logger.debug("Bounding boxes disjoint, skipping intersection")
        return overlap

    def translated(self, volume: trimesh.Trimesh, offset: Point3D) -> trimesh.Trimesh:
        """Copy of a mesh moved by offset."""
        moved = volume.copy()
        moved.apply_translation(offset.to_array())
        return moved
