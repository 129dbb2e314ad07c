"""
Per-category face rules.

Decides which faces of a structural element receive formwork and whether the
panel is later rebuilt as a wall-like or floor-like element. Uses the loose
lateral tolerance, which is only a rough filter; the strict wall/floor
decision is made by the orientation classifier.
"""

from enum import Enum
from typing import Dict, Optional
from loguru import logger

from formwork.core.config import FormworkSettings, Config
from formwork.core.models import BoundaryFace, ElementCategory


class PanelKind(str, Enum):
    """Element family a panel will be converted to."""
    WALL = "wall"
    FLOOR = "floor"


# rule key -> kind, per category
DEFAULT_RULES: Dict[str, Dict[str, str]] = {
    ElementCategory.COLUMN.value: {"lateral": "wall"},
    ElementCategory.FRAMING.value: {"lateral": "wall", "underside": "floor"},
    ElementCategory.WALL.value: {"lateral": "wall"},
    ElementCategory.FLOOR.value: {"underside": "floor"},
    ElementCategory.STAIR.value: {"lateral": "wall", "inclined": "floor"},
    ElementCategory.FOUNDATION.value: {"lateral": "wall", "underside": "floor"},
}


class FaceRules:
    """
    Face selection rules by element category.

    Rule keys:
    - lateral: |n.z| < lateral_face_tolerance (side faces)
    - underside: n.z < -underside_threshold (soffits)
    - inclined: n.z < underside_threshold and not lateral (soffits and
      sloped faces, never the top)
    """

    def __init__(
        self,
        settings: Optional[FormworkSettings] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize rules.

        Args:
            settings: Thresholds (defaults when None)
            config: Optional config whose face_rules override the defaults
        """
        self.settings = settings or FormworkSettings()
        self.config = config

    def rule_for(self, category: ElementCategory) -> Dict[str, str]:
        if self.config is not None:
            configured = self.config.get_category_rule(category.value)
            if configured is not None:
                return configured
        return DEFAULT_RULES.get(category.value, {})

    def panel_kind(self, category: ElementCategory, face: BoundaryFace) -> Optional[PanelKind]:
        """
        Decide whether a face receives formwork.

        Args:
            category: Category of the element owning the face
            face: Candidate face

        Returns:
            PanelKind, or None when the face is not formed
        """
        if not face.is_planar:
            return None

        rule = self.rule_for(category)
        if not rule:
            return None

        nz = face.normal.normalized().z
        is_lateral = abs(nz) < self.settings.lateral_face_tolerance

        if is_lateral and "lateral" in rule:
            return PanelKind(rule["lateral"])

        if is_lateral:
            return None

        if "underside" in rule and nz < -self.settings.underside_threshold:
            return PanelKind(rule["underside"])

        if "inclined" in rule and nz < self.settings.underside_threshold:
            return PanelKind(rule["inclined"])

        logger.debug(f"No formwork for {category.value} face with n.z={nz:.3f}")
        return None
