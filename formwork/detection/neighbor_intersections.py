"""
Neighbour detection for panel clipping.

Finds structural elements whose volumes truly intersect a candidate panel.
Bounding boxes only pre-filter; every candidate is confirmed with a kernel
intersection.
"""

from typing import Any, List, Optional, Tuple
from loguru import logger

from formwork.core.config import FormworkSettings
from formwork.core.models import BoundingBox, HostElement, STRUCTURAL_CATEGORIES
from formwork.host.protocols import HostModel


class NeighborIntersectionResolver:
    """
    Resolves intersecting neighbour volumes for one panel.

    The query is issued on every call so entities created earlier in the
    same batch are seen (formwork entities are always excluded).
    """

    def __init__(self, host: HostModel, settings: Optional[FormworkSettings] = None):
        """
        Initialize resolver.

        Args:
            host: Host model answering bounding-box queries
            settings: Thresholds (defaults when None)
        """
        self.host = host
        self.settings = settings or FormworkSettings()

    def candidates(self, bbox: BoundingBox, thickness: float,
                   exclude_id: Optional[int] = None) -> List[HostElement]:
        """
        Structural elements near a bounding box.

        Args:
            bbox: Bounding box of the element being formed
            thickness: Panel thickness, added to the search margin
            exclude_id: Element to leave out (the host element)

        Returns:
            Candidate elements
        """
        search_box = bbox.expanded(thickness + self.settings.neighbor_tolerance)
        found = self.host.query_elements(search_box, STRUCTURAL_CATEGORIES)
        return [e for e in found if e.id != exclude_id and not e.is_formwork]

    def intersection_volume(self, panel_volume: Any, neighbor_volume: Any) -> float:
        """Volume shared by a panel and a neighbour (0 when disjoint or on failure)."""
        kernel = self.host.kernel
        try:
            shared = kernel.intersect(panel_volume, neighbor_volume)
        except Exception as e:
            logger.warning(f"Intersection test failed: {e}")
            return 0.0
        if shared is None:
            return 0.0
        return kernel.volume_of(shared)

    def resolve(
        self,
        panel_volume: Any,
        bbox: BoundingBox,
        thickness: float,
        exclude_id: Optional[int] = None,
    ) -> List[Tuple[HostElement, Any]]:
        """
        Neighbours whose volumes truly intersect the panel.

        Args:
            panel_volume: Kernel volume of the panel
            bbox: Bounding box of the host element
            thickness: Panel thickness
            exclude_id: Host element id

        Returns:
            (element, volume) pairs in query order
        """
        intersecting = []
        for element in self.candidates(bbox, thickness, exclude_id):
            volume = self.host.element_volume(element.id)
            if volume is None:
                logger.debug(f"{element} has no volume, skipped")
                continue

            shared = self.intersection_volume(panel_volume, volume)
            if shared > self.settings.min_intersection_volume:
                intersecting.append((element, volume))
                logger.debug(f"{element} intersects panel ({shared * 1e6:.1f} cm3)")

        return intersecting
