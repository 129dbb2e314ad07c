"""
Configuration management for formwork generation.

Thresholds live in one FormworkSettings model threaded through every
component. A JSON file can override them and name the wall/floor profiles
used for permanent elements.
"""

import json
from pathlib import Path
from typing import Dict, Any, Optional
from loguru import logger
from pydantic import BaseModel, field_validator


class FormworkSettings(BaseModel):
    """All tolerances and dimensions of the pipeline (metres)."""

    # Orientation
    vertical_tolerance: float = 0.01  # |n.z| below this is vertical (~0.57 deg)
    significance_ratio: float = 0.2  # of mean face area
    min_face_area: float = 1e-4  # m2, faces below are noise

    # Per-category face rules
    lateral_face_tolerance: float = 0.3  # rough |n.z| filter for side faces
    underside_threshold: float = 0.7  # n.z below -threshold is an underside

    # Principal face selection
    min_principal_area: float = 0.01  # m2, smaller faces are thickness edges
    principal_face_ratio: float = 0.3  # of max candidate area

    # Contour validation
    closure_tolerance: float = 0.003  # ~3mm between consecutive endpoints
    min_segment_length: float = 0.0003  # ~0.3mm
    min_loop_area: float = 1e-5  # m2
    planarity_tolerance: float = 0.003
    min_floor_area: float = 0.01  # m2

    # Panels
    wall_panel_thickness: float = 0.018  # 18mm board
    floor_panel_thickness: float = 0.025  # 25mm board
    air_gap: float = 0.002  # release gap between concrete face and board
    neighbor_tolerance: float = 0.01
    min_intersection_volume: float = 1e-8  # m3
    min_panel_volume: float = 3e-8  # m3 (~0.03 cm3)

    # Element synthesis
    base_point_tolerance: float = 0.1  # |z - zmin| for baseline candidates
    min_baseline_length: float = 0.01
    floor_offset_tolerance: float = 0.01
    slope_normal_threshold: float = 0.95  # |n.z| above this is flat
    wall_thickness: float = 0.018  # permanent wall-like element width
    floor_thickness: float = 0.025

    @field_validator(
        'vertical_tolerance', 'significance_ratio', 'closure_tolerance',
        'min_segment_length', 'wall_panel_thickness', 'floor_panel_thickness',
        'wall_thickness', 'floor_thickness', 'min_panel_volume',
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Ensure tolerances and thicknesses are positive."""
        if v <= 0.0:
            raise ValueError('Value must be positive')
        return v

    @field_validator('air_gap')
    @classmethod
    def validate_air_gap(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError('Air gap cannot be negative')
        return v


class Config:
    """Configuration manager for thresholds and element profiles."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to JSON config file. If None, uses the bundled defaults.
        """
        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "formwork_defaults.json"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()
        self.settings = FormworkSettings(**self._config.get("thresholds", {}))

    def _load_config(self) -> None:
        """Load configuration from JSON file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            self._config = json.load(f)

        logger.info(f"Loaded config: {self._config.get('name', 'Unknown')}")

    def get_profile(self, kind: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get the element profile (type) name for 'wall' or 'floor'.

        Args:
            kind: Profile kind
            default: Default value if not configured

        Returns:
            Profile name or default
        """
        return self._config.get("profiles", {}).get(kind, default)

    def get_category_rule(self, category: str, default: Any = None) -> Any:
        """
        Get the face rule configured for an element category.

        Args:
            category: ElementCategory value ('column', 'framing', ...)
            default: Default value if no rule is configured

        Returns:
            Rule dict or default
        """
        return self._config.get("face_rules", {}).get(category, default)


# Global default config instance
_default_config: Optional[Config] = None


def get_default_config() -> Config:
    """Get the default global configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = Config()
    return _default_config


def load_config(config_path: str) -> Config:
    """
    Load configuration from a specific file.

    Args:
        config_path: Path to JSON config file

    Returns:
        Config instance
    """
    return Config(config_path)
