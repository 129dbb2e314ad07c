"""
Panel synthesis from boundary faces.

Extrudes a face contour outward by the board thickness (after the release
air gap) and clips the result against intersecting neighbour volumes, one
boolean difference at a time.
"""

from typing import Any, List, Optional, Tuple
from loguru import logger

from formwork.core.config import FormworkSettings
from formwork.core.exceptions import BooleanOperationFailure, PanelSynthesisError
from formwork.core.models import (
    BoundaryFace,
    BoundingBox,
    HostElement,
    PanelGeometry,
    Point3D,
)
from formwork.detection.neighbor_intersections import NeighborIntersectionResolver
from formwork.host.protocols import HostModel


class PanelSynthesizer:
    """
    Builds clipped formwork panels.

    A subtraction is kept only if the kernel succeeds, the result passes the
    validity gate and the volume strictly decreases; otherwise the previous
    volume is restored and the next neighbour is tried.
    """

    def __init__(
        self,
        host: HostModel,
        settings: Optional[FormworkSettings] = None,
        resolver: Optional[NeighborIntersectionResolver] = None,
    ):
        """
        Initialize panel synthesizer.

        Args:
            host: Host model (its kernel performs the geometry operations)
            settings: Thresholds (defaults when None)
            resolver: Neighbour resolver (built from host when None)
        """
        self.host = host
        self.kernel = host.kernel
        self.settings = settings or FormworkSettings()
        self.resolver = resolver or NeighborIntersectionResolver(host, self.settings)

    def outward_direction(self, face: BoundaryFace,
                          element_centroid: Optional[Point3D] = None) -> Point3D:
        """Face normal, flipped if it points toward the element centroid."""
        normal = face.normal.normalized()
        if element_centroid is None:
            return normal

        to_centroid = element_centroid - face.centroid()
        if normal.dot(to_centroid) > 0.0:
            return normal.scaled(-1.0)
        return normal

    def measure(self, volume: Any) -> Tuple[bool, float, int]:
        """
        Validity gate.

        Returns:
            (is_valid, volume, face count)
        """
        if volume is None:
            return False, 0.0, 0
        value = self.kernel.volume_of(volume)
        face_count = len(self.kernel.faces(volume))
        is_valid = value >= self.settings.min_panel_volume and face_count > 0
        return is_valid, value, face_count

    def extrude(self, face: BoundaryFace, thickness: float, direction: Point3D,
                air_gap: float) -> Any:
        """Offset the face loops by the air gap and extrude them by thickness."""
        if not face.loops:
            raise PanelSynthesisError("Face has no boundary loops")

        offset = direction.scaled(air_gap)
        loops = [loop.translated(offset) for loop in face.loops]
        try:
            return self.kernel.extrude(loops, direction, thickness)
        except Exception as e:
            raise PanelSynthesisError(f"Extrusion failed: {e}") from e

    def subtract_neighbors(self, volume: Any, neighbors: List[Tuple[HostElement, Any]]) -> Tuple[Any, int]:
        """
        Subtract neighbour volumes sequentially.

        Args:
            volume: Panel volume
            neighbors: (element, volume) pairs

        Returns:
            (clipped volume, number of accepted subtractions)
        """
        current = volume
        _, current_value, _ = self.measure(current)
        accepted = 0

        for element, tool in neighbors:
            try:
                result = self.kernel.difference(current, tool)
                is_valid, value, _ = self.measure(result)
            except Exception as e:
                failure = BooleanOperationFailure(f"Difference with {element} raised: {e}")
                logger.warning(f"{failure}, reverted")
                continue

            if not is_valid:
                logger.warning(f"Difference with {element} gave an invalid volume, reverted")
                continue

            if value >= current_value:
                logger.debug(f"Difference with {element} did not shrink the panel, reverted")
                continue

            current, current_value = result, value
            accepted += 1

        return current, accepted

    def synthesize(
        self,
        face: BoundaryFace,
        thickness: float,
        neighbors: Optional[List[Tuple[HostElement, Any]]] = None,
        host_element: Optional[HostElement] = None,
        element_bbox: Optional[BoundingBox] = None,
    ) -> PanelGeometry:
        """
        Build one panel for a face.

        Args:
            face: Source face
            thickness: Board thickness
            neighbors: Intersecting (element, volume) pairs; resolved from the
                host when None and an element bounding box is available
            host_element: Element owning the face (excluded from neighbours)
            element_bbox: Bounding box of that element

        Returns:
            Valid PanelGeometry

        Raises:
            PanelSynthesisError: If the panel cannot be built or is invalid
        """
        if thickness <= 0.0:
            raise PanelSynthesisError(f"Invalid thickness: {thickness}")

        element_centroid = element_bbox.center() if element_bbox is not None else None
        direction = self.outward_direction(face, element_centroid)
        air_gap = self.settings.air_gap

        volume = self.extrude(face, thickness, direction, air_gap)
        is_valid, value, _ = self.measure(volume)
        if not is_valid:
            raise PanelSynthesisError(f"Extruded panel invalid (volume={value:.2e} m3)")

        if neighbors is None and element_bbox is not None:
            exclude_id = host_element.id if host_element is not None else None
            neighbors = self.resolver.resolve(volume, element_bbox, thickness, exclude_id)

        subtractions = 0
        if neighbors:
            volume, subtractions = self.subtract_neighbors(volume, neighbors)

        is_valid, value, face_count = self.measure(volume)
        if not is_valid:
            raise PanelSynthesisError(f"Clipped panel invalid (volume={value:.2e} m3)")

        logger.debug(
            f"Panel: {value * 1e3:.2f} dm3, {subtractions} subtraction(s), "
            f"direction=({direction.x:.2f}, {direction.y:.2f}, {direction.z:.2f})"
        )

        return PanelGeometry(
            volume=volume,
            source_face=face,
            thickness=thickness,
            direction=direction,
            air_gap=air_gap,
            subtractions=subtractions,
            volume_value=value,
            face_count=face_count,
            host_element_id=host_element.id if host_element is not None else None,
        )


def synthesize_panel(
    host: HostModel,
    face: BoundaryFace,
    thickness: float,
    neighbors: Optional[List[Tuple[HostElement, Any]]] = None,
    settings: Optional[FormworkSettings] = None,
) -> Optional[PanelGeometry]:
    """
    Convenience function to build one panel.

    Args:
        host: Host model
        face: Source face
        thickness: Board thickness
        neighbors: Intersecting (element, volume) pairs
        settings: Thresholds (defaults when None)

    Returns:
        PanelGeometry, or None when synthesis fails
    """
    synthesizer = PanelSynthesizer(host, settings=settings)
    try:
        return synthesizer.synthesize(face, thickness, neighbors=neighbors or [])
    except PanelSynthesisError as e:
        logger.error(f"Panel synthesis failed: {e}")
        return None
