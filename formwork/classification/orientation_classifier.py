"""
Orientation classification of element volumes.

Decides whether a volume is wall-like (vertical) or floor-like
(horizontal/inclined) by area-weighted voting over its boundary faces.
Small edge and thickness faces are ignored so they cannot outvote the
large faces.
"""

from typing import List, Optional, Any
from loguru import logger

from formwork.core.config import FormworkSettings
from formwork.core.exceptions import ClassificationAmbiguous
from formwork.core.geometry import Z_AXIS, X_AXIS
from formwork.core.models import BoundaryFace, Orientation, OrientationResult
from formwork.host.protocols import GeometryKernel


class OrientationClassifier:
    """
    Classifies a volume from its faces.

    Strategy: drop noise faces, then faces below significance_ratio x mean
    area; a face votes vertical iff |n.z| < vertical_tolerance. The volume is
    vertical if vertical faces win by count or by total area.
    """

    def __init__(self, settings: Optional[FormworkSettings] = None):
        """
        Initialize classifier.

        Args:
            settings: Thresholds (defaults when None)
        """
        self.settings = settings or FormworkSettings()

    def is_vertical_face(self, face: BoundaryFace) -> bool:
        """Strict vertical test used for wall/floor discrimination."""
        return abs(face.normal.normalized().z) < self.settings.vertical_tolerance

    def significant_faces(self, faces: List[BoundaryFace]) -> List[BoundaryFace]:
        """Planar faces large enough to vote."""
        usable = [f for f in faces if f.area >= self.settings.min_face_area]
        if not usable:
            return []

        mean_area = sum(f.area for f in usable) / len(usable)
        threshold = mean_area * self.settings.significance_ratio

        return [f for f in usable if f.is_planar and f.area >= threshold]

    def classify(self, faces: List[BoundaryFace]) -> OrientationResult:
        """
        Classify a face set.

        Args:
            faces: All boundary faces of one volume

        Returns:
            OrientationResult (horizontal with +z when nothing can vote)
        """
        significant = self.significant_faces(faces)

        if not significant:
            error = ClassificationAmbiguous(
                f"No significant faces among {len(faces)}, defaulting to horizontal"
            )
            logger.warning(str(error))
            return OrientationResult(
                orientation=Orientation.HORIZONTAL,
                representative_normal=Z_AXIS,
                ambiguous=True,
            )

        vertical = [f for f in significant if self.is_vertical_face(f)]
        horizontal = [f for f in significant if not self.is_vertical_face(f)]

        vertical_area = sum(f.area for f in vertical)
        horizontal_area = sum(f.area for f in horizontal)

        is_vertical = len(vertical) > len(horizontal) or vertical_area > horizontal_area
        winners = vertical if is_vertical else horizontal

        if winners:
            # Stable under ties: first largest face in input order
            representative = max(winners, key=lambda f: f.area).normal.normalized()
        else:
            representative = X_AXIS if is_vertical else Z_AXIS

        result = OrientationResult(
            orientation=Orientation.VERTICAL if is_vertical else Orientation.HORIZONTAL,
            representative_normal=representative,
            vertical_count=len(vertical),
            horizontal_count=len(horizontal),
            vertical_area=vertical_area,
            horizontal_area=horizontal_area,
            significant_faces=len(significant),
        )

        logger.debug(
            f"Orientation {result.orientation.value}: "
            f"vertical {len(vertical)} faces / {vertical_area:.3f} m2, "
            f"horizontal {len(horizontal)} faces / {horizontal_area:.3f} m2"
        )

        return result

    def classify_volume(self, kernel: GeometryKernel, volume: Any) -> OrientationResult:
        """Classify a kernel volume by enumerating its faces."""
        return self.classify(kernel.faces(volume))


def classify_orientation(
    kernel: GeometryKernel,
    volume: Any,
    settings: Optional[FormworkSettings] = None,
) -> OrientationResult:
    """
    Convenience function to classify a volume's orientation.

    Args:
        kernel: Geometry kernel owning the volume
        volume: Volume handle
        settings: Thresholds (defaults when None)

    Returns:
        OrientationResult
    """
    classifier = OrientationClassifier(settings=settings)
    return classifier.classify_volume(kernel, volume)
