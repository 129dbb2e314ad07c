"""
Read-only extraction of conversion records from temporary panels.

Gathers everything needed to rebuild a panel later as a permanent element:
orientation, principal face and contour, bounding elevations, level and the
structural source behind the back-reference tag.
"""

from typing import Optional, Tuple
from loguru import logger

from formwork.classification.orientation_classifier import OrientationClassifier
from formwork.core.back_reference import format_tag, parse_tag
from formwork.core.config import FormworkSettings
from formwork.core.exceptions import (
    ContourValidationError,
    ConversionRecordMissing,
    GeometryExtractionError,
)
from formwork.core.geometry import most_distant_pair
from formwork.core.models import (
    BoundaryFace,
    BoundingBox,
    ConversionRecord,
    CurveSegment,
    Level,
    OrientationResult,
    PanelGeometry,
    Point3D,
)
from formwork.detection.face_contour import FaceContourExtractor
from formwork.generation.element_synthesis import resolve_level
from formwork.host.protocols import HostModel


def base_curve_for(face: Optional[BoundaryFace], bbox: BoundingBox,
                   tolerance: float) -> CurveSegment:
    """
    Horizontal base curve of a wall-like panel.

    Longest horizontal segment of the face's outer loop, else the farthest
    pair of its points, else the long axis of the bounding box.
    """
    if face is not None and face.loops:
        outer = face.loops[0].segments
        horizontal = [
            s for s in outer
            if abs(s.start.z - s.end.z) <= tolerance and not s.is_curved
        ]
        if horizontal:
            return max(horizontal, key=lambda s: s.length())

        flat = [Point3D(x=p.x, y=p.y, z=bbox.min_z) for p in face.loops[0].points()]
        pair = most_distant_pair(flat)
        if pair is not None and pair[2] > tolerance:
            return CurveSegment(start=pair[0], end=pair[1])

    center = bbox.center()
    if bbox.max_x - bbox.min_x >= bbox.max_y - bbox.min_y:
        start = Point3D(x=bbox.min_x, y=center.y, z=bbox.min_z)
        end = Point3D(x=bbox.max_x, y=center.y, z=bbox.min_z)
    else:
        start = Point3D(x=center.x, y=bbox.min_y, z=bbox.min_z)
        end = Point3D(x=center.x, y=bbox.max_y, z=bbox.min_z)
    return CurveSegment(start=start, end=end)


class RecordExtractor:
    """Builds ConversionRecords without modifying the model."""

    def __init__(self, host: HostModel, settings: Optional[FormworkSettings] = None):
        """
        Initialize extractor.

        Args:
            host: Host model
            settings: Thresholds (defaults when None)
        """
        self.host = host
        self.settings = settings or FormworkSettings()
        self.classifier = OrientationClassifier(self.settings)
        self.contours = FaceContourExtractor(self.settings)

    def resolve_reference(self, tag: Optional[str]) -> Tuple[Optional[int], Optional[Point3D]]:
        """
        Structural source of a panel.

        Returns:
            (source id, source centroid); (None, None) when the tag is missing
            or points at nothing, in which case bounding-box defaults apply
        """
        try:
            source_id = parse_tag(tag)
        except ConversionRecordMissing as e:
            logger.warning(f"{e}, using bounding-box defaults")
            return None, None

        bbox = self.host.element_bounding_box(source_id)
        if bbox is None:
            logger.warning(f"Back-reference {source_id} not found in model, using bounding-box defaults")
            return source_id, None
        return source_id, bbox.center()

    def _contour(self, face: BoundaryFace) -> Tuple[list, Optional[str]]:
        try:
            return self.contours.extract_wall_contour(face), None
        except ContourValidationError as e:
            logger.debug(f"Contour rejected: {e.reason}")
            return [], e.reason

    def _build(
        self,
        entity_id: int,
        volume,
        orientation: OrientationResult,
        face: BoundaryFace,
        bbox: BoundingBox,
        level: Level,
        tag: Optional[str],
        source_id: Optional[int],
        reference_centroid: Optional[Point3D],
    ) -> ConversionRecord:
        contour, contour_error = ([], None)
        if orientation.is_vertical:
            contour, contour_error = self._contour(face)

        return ConversionRecord(
            entity_id=entity_id,
            source_id=source_id,
            tag=tag,
            orientation=orientation,
            face=face,
            contour=contour,
            contour_error=contour_error,
            base_curve=base_curve_for(face, bbox, self.settings.closure_tolerance),
            height=bbox.height(),
            min_elevation=bbox.min_z,
            max_elevation=bbox.max_z,
            bounding_box=bbox,
            level=level,
            face_area=face.area,
            reference_centroid=reference_centroid,
            volume=volume,
        )

    def extract(self, entity_id: int) -> ConversionRecord:
        """
        Extract the record of one temporary entity.

        Args:
            entity_id: Temporary panel entity

        Returns:
            ConversionRecord

        Raises:
            GeometryExtractionError: If no usable volume, face or level exists
        """
        element = self.host.get_element(entity_id)
        if element is None:
            raise GeometryExtractionError(f"Entity {entity_id} not found")

        volume = self.host.element_volume(entity_id)
        if volume is None:
            raise GeometryExtractionError(f"Entity {entity_id} has no volume")

        kernel = self.host.kernel
        faces = kernel.faces(volume)
        if not faces:
            raise GeometryExtractionError(f"Entity {entity_id} has no faces")

        bbox = kernel.bounding_box(volume) or self.host.element_bounding_box(entity_id)
        if bbox is None:
            raise GeometryExtractionError(f"Entity {entity_id} has no bounding box")

        tag = self.host.get_tag(entity_id)
        source_id, reference_centroid = self.resolve_reference(tag)

        orientation = self.classifier.classify(faces)
        if orientation.is_vertical:
            face = self.contours.select_principal_face(faces, reference_centroid)
        else:
            face = self.contours.select_floor_face(faces, reference_centroid)

        levels = self.host.levels()
        if not levels:
            raise GeometryExtractionError("Model has no levels")
        level = resolve_level(levels, bbox.min_z)

        record = self._build(
            entity_id, volume, orientation, face, bbox, level,
            tag, source_id, reference_centroid,
        )

        logger.debug(
            f"Extracted {entity_id}: {orientation.orientation.value}, "
            f"face {face.area:.3f} m2, height {record.height:.3f} m, level {level.name}"
        )
        return record

    def from_panel(
        self,
        panel: PanelGeometry,
        orientation: OrientationResult,
        level: Optional[Level] = None,
        entity_id: int = 0,
    ) -> ConversionRecord:
        """
        Build a record straight from a synthesized panel.

        Args:
            panel: Panel geometry
            orientation: Orientation of the panel's host volume
            level: Level to host the element (resolved when None)
            entity_id: Identifier used in the report

        Returns:
            ConversionRecord
        """
        kernel = self.host.kernel
        bbox = kernel.bounding_box(panel.volume)
        if bbox is None:
            raise GeometryExtractionError("Panel has no bounding box")

        source_id = panel.host_element_id
        reference_centroid = None
        if source_id is not None:
            source_box = self.host.element_bounding_box(source_id)
            reference_centroid = source_box.center() if source_box is not None else None

        if level is None:
            levels = self.host.levels()
            if not levels:
                raise GeometryExtractionError("Model has no levels")
            level = resolve_level(levels, bbox.min_z)

        faces = kernel.faces(panel.volume)
        if orientation.is_vertical:
            face = self.contours.select_principal_face(faces, reference_centroid)
        else:
            face = self.contours.select_floor_face(faces, reference_centroid)

        tag = format_tag(source_id) if source_id is not None else None
        return self._build(
            entity_id, panel.volume, orientation, face, bbox, level,
            tag, source_id, reference_centroid,
        )
