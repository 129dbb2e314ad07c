"""
Principal face selection and boundary contour extraction.

Picks the face a panel or permanent element is built from, then validates
its boundary loops (closure, degenerate segments, zero area, coplanarity).
Wall contours that are not coplanar with a near-vertical plane are rejected;
floor contours are projected onto a horizontal plane.
"""

from typing import List, Optional, Tuple
from loguru import logger
import numpy as np

from formwork.core.config import FormworkSettings
from formwork.core.exceptions import ContourValidationError, GeometryExtractionError
from formwork.core.geometry import (
    as_array,
    at_elevation,
    centroid,
    distance_to_plane,
    newell_normal,
    project_segment_to_plane,
    signed_area,
    Z_AXIS,
)
from formwork.core.models import BoundaryFace, BoundaryLoop, CurveSegment, Point3D


class FaceContourExtractor:
    """Selects principal faces and extracts validated contours."""

    def __init__(self, settings: Optional[FormworkSettings] = None):
        """
        Initialize extractor.

        Args:
            settings: Thresholds (defaults when None)
        """
        self.settings = settings or FormworkSettings()

    # ------------------------------------------------------------------
    # Face selection
    # ------------------------------------------------------------------

    def vertical_faces(self, faces: List[BoundaryFace]) -> List[BoundaryFace]:
        return [
            f for f in faces
            if f.is_planar and abs(f.normal.normalized().z) < self.settings.vertical_tolerance
        ]

    def select_principal_face(
        self,
        faces: List[BoundaryFace],
        reference_centroid: Optional[Point3D] = None,
    ) -> BoundaryFace:
        """
        Select the vertical face a wall-like element is built from.

        Faces at least principal_face_ratio x the largest area are principal;
        with a reference element the principal face closest to its centroid
        wins, otherwise the largest face.

        Args:
            faces: All faces of the volume
            reference_centroid: Centroid of the linked structural element

        Returns:
            Selected face

        Raises:
            GeometryExtractionError: If the volume has no vertical face
        """
        vertical = self.vertical_faces(faces)
        if not vertical:
            raise GeometryExtractionError("No vertical face found")

        candidates = [f for f in vertical if f.area >= self.settings.min_principal_area]
        if not candidates:
            logger.debug("No large vertical faces, using all vertical faces")
            candidates = vertical

        largest = max(candidates, key=lambda f: f.area)

        if reference_centroid is None or len(candidates) < 2:
            return largest

        threshold = largest.area * self.settings.principal_face_ratio
        principal = [f for f in candidates if f.area >= threshold]
        if not principal:
            return largest

        selected = min(principal, key=lambda f: f.centroid().distance_to(reference_centroid))
        logger.debug(
            f"Principal face: area={selected.area:.3f} m2 "
            f"({len(principal)} principal of {len(candidates)} candidates)"
        )
        return selected

    def select_floor_face(
        self,
        faces: List[BoundaryFace],
        reference_centroid: Optional[Point3D] = None,
    ) -> BoundaryFace:
        """
        Select the face a floor-like element is built from.

        Among the faces with the largest vertical normal component (both
        sides of a board), the outer one is taken: farthest from the
        reference element, or the lowest without one.

        Raises:
            GeometryExtractionError: If the volume has no planar face
        """
        planar = [f for f in faces if f.is_planar and f.loops]
        if not planar:
            raise GeometryExtractionError("No planar face found")

        best = max(abs(f.normal.normalized().z) for f in planar)
        candidates = [f for f in planar if abs(f.normal.normalized().z) >= best - 1e-3]

        if reference_centroid is not None:
            return max(candidates, key=lambda f: f.centroid().distance_to(reference_centroid))
        return min(candidates, key=lambda f: f.centroid().z)

    # ------------------------------------------------------------------
    # Loop validation
    # ------------------------------------------------------------------

    def validate_closure(self, loop: BoundaryLoop) -> None:
        """Every end point must meet the next start point, wrap-around included."""
        segments = loop.segments
        for i, segment in enumerate(segments):
            following = segments[(i + 1) % len(segments)]
            gap = segment.end.distance_to(following.start)
            if gap > self.settings.closure_tolerance:
                raise ContourValidationError(
                    f"Loop not closed: gap of {gap * 1000:.1f}mm after segment {i}"
                )

    def validate_segments(self, loop: BoundaryLoop) -> None:
        if len(loop.segments) < 3:
            raise ContourValidationError(
                f"Loop has {len(loop.segments)} segments, at least 3 required"
            )
        for i, segment in enumerate(loop.segments):
            if segment.length() < self.settings.min_segment_length:
                raise ContourValidationError(
                    f"Degenerate segment {i}: {segment.length() * 1000:.2f}mm"
                )

    def validate_area(self, loop: BoundaryLoop, normal: Point3D,
                      min_area: Optional[float] = None) -> float:
        """Reject zero-area (colinear) loops. Returns the absolute area."""
        area = abs(signed_area(loop, normal))
        limit = self.settings.min_loop_area if min_area is None else min_area
        if area < limit:
            raise ContourValidationError(f"Loop area too small: {area:.6f} m2")
        return area

    def validate_loop(self, loop: BoundaryLoop, normal: Point3D) -> None:
        """Closure, segment count, degenerate segments and area checks."""
        if not loop.segments:
            raise ContourValidationError("Empty loop")
        self.validate_closure(loop)
        self.validate_segments(loop)
        self.validate_area(loop, normal)

    # ------------------------------------------------------------------
    # Multi-loop handling
    # ------------------------------------------------------------------

    def orient_loops(self, loops: List[BoundaryLoop]) -> List[BoundaryLoop]:
        """
        Give every loop the traversal direction of the first one.

        Secondary loops whose plane frame is anti-parallel to the primary
        loop's frame are reversed.
        """
        if len(loops) < 2:
            return list(loops)

        primary = newell_normal(loops[0].points())
        oriented = [loops[0]]
        for index, loop in enumerate(loops[1:], start=1):
            frame = newell_normal(loop.points())
            if np.dot(primary, frame) < 0.0:
                logger.debug(f"Reversing loop {index} to match primary orientation")
                oriented.append(loop.reversed())
            else:
                oriented.append(loop)
        return oriented

    # ------------------------------------------------------------------
    # Wall contours
    # ------------------------------------------------------------------

    def project_to_face_plane(
        self,
        loops: List[BoundaryLoop],
        normal: Point3D,
    ) -> List[BoundaryLoop]:
        """
        Snap wall loops onto their common plane.

        The plane goes through the centroid of all endpoints with the given
        normal. Contours deviating more than planarity_tolerance are rejected.
        """
        if abs(normal.normalized().z) >= self.settings.vertical_tolerance:
            raise ContourValidationError(
                f"Normal not horizontal enough for a wall contour (n.z={normal.z:.4f})"
            )

        endpoints = [p for loop in loops for p in loop.endpoints()]
        origin = centroid(endpoints)
        deviation = max(abs(distance_to_plane(p, origin, normal)) for p in endpoints)

        if deviation > self.settings.planarity_tolerance:
            raise ContourValidationError(
                f"Contour not coplanar: max deviation {deviation * 1000:.1f}mm",
                deviation=deviation,
            )

        projected_loops = []
        for loop in loops:
            segments = []
            for segment in loop.segments:
                projected = project_segment_to_plane(segment, origin, normal)
                if projected.length() >= self.settings.min_segment_length:
                    segments.append(projected)
            if len(segments) < 3:
                raise ContourValidationError(
                    f"Only {len(segments)} segments left after plane projection"
                )
            projected_loops.append(BoundaryLoop(segments=segments))

        return projected_loops

    def extract_wall_loops(self, face: BoundaryFace) -> List[BoundaryLoop]:
        """
        Validated, coplanar and consistently oriented loops of a vertical face.

        Raises:
            ContourValidationError: If any loop fails validation
        """
        if not face.loops:
            raise ContourValidationError("Face has no boundary loops")

        for loop in face.loops:
            self.validate_loop(loop, face.normal)

        loops = self.project_to_face_plane(face.loops, face.normal)
        for loop in loops:
            self.validate_closure(loop)

        return self.orient_loops(loops)

    def extract_wall_contour(self, face: BoundaryFace) -> List[CurveSegment]:
        """Single ordered curve sequence for wall synthesis."""
        loops = self.extract_wall_loops(face)
        contour = [segment for loop in loops for segment in loop.segments]
        logger.debug(f"Wall contour: {len(contour)} segments in {len(loops)} loop(s)")
        return contour

    # ------------------------------------------------------------------
    # Floor contours
    # ------------------------------------------------------------------

    def project_loop_horizontal(self, loop: BoundaryLoop, elevation: float) -> BoundaryLoop:
        """Flatten a loop onto z = elevation, dropping collapsed segments."""
        segments = []
        for segment in loop.segments:
            flat = CurveSegment(
                start=at_elevation(segment.start, elevation),
                end=at_elevation(segment.end, elevation),
                mid=at_elevation(segment.mid, elevation) if segment.mid else None,
            )
            if flat.length() >= self.settings.min_segment_length:
                segments.append(flat)
        return BoundaryLoop(segments=segments)

    def extract_floor_loops(
        self,
        face: BoundaryFace,
        inward_offset: float = 0.0,
    ) -> Tuple[List[BoundaryLoop], float]:
        """
        Horizontal loops for floor synthesis.

        Args:
            face: Floor-like face
            inward_offset: Distance to move the loops against the face normal
                (the panel thickness, so the floor lands on the concrete face)

        Returns:
            (loops projected at the mean elevation, mean elevation)

        Raises:
            ContourValidationError: If the projected loops are invalid
        """
        if not face.loops:
            raise ContourValidationError("Face has no boundary loops")

        displacement = face.normal.normalized().scaled(-inward_offset)
        displaced = [loop.translated(displacement) for loop in face.loops]

        points = [p for loop in displaced for p in loop.endpoints()]
        elevation = float(as_array(points)[:, 2].mean())

        loops = []
        for index, loop in enumerate(displaced):
            flat = self.project_loop_horizontal(loop, elevation)
            if not flat.segments:
                raise ContourValidationError(f"Loop {index} collapsed after projection")

            z_values = [p.z for p in flat.endpoints()]
            if max(z_values) - min(z_values) > self.settings.closure_tolerance:
                raise ContourValidationError("Loop not horizontal after projection")

            self.validate_closure(flat)
            self.validate_segments(flat)
            min_area = self.settings.min_floor_area if index == 0 else None
            self.validate_area(flat, Z_AXIS, min_area=min_area)
            loops.append(flat)

        return self.orient_loops(loops), elevation
