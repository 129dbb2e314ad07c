"""
Formwork - Shuttering Geometry for BIM Workflows

Generates temporary formwork panels around structural elements and converts
them into permanent walls and floors.
"""

__version__ = "0.1.0"

from formwork.classification.orientation_classifier import classify_orientation
from formwork.generation.panel_synthesizer import synthesize_panel
from formwork.generation.element_synthesis import try_create_element
from formwork.generation.formwork_generator import generate_formwork
from formwork.conversion.conversion_pipeline import convert_batch
from formwork.core.config import FormworkSettings, load_config
from formwork.spatial.spatial_index import SpatialIndex

__all__ = [
    "classify_orientation",
    "synthesize_panel",
    "try_create_element",
    "generate_formwork",
    "convert_batch",
    "FormworkSettings",
    "load_config",
    "SpatialIndex",
]
