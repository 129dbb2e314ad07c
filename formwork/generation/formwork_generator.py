"""
Formwork panel generation for structural elements.

For every selected element, faces chosen by the category rules get a panel
clipped against intersecting neighbours; each panel is stored as a temporary
generic entity tagged with a back-reference to its element. Elements that
already have formwork are skipped, so re-running creates nothing new.
"""

from typing import List, Optional, Sequence
from loguru import logger

from formwork.classification.face_rules import FaceRules, PanelKind
from formwork.core.back_reference import format_tag, has_tag
from formwork.core.config import FormworkSettings, Config
from formwork.core.exceptions import FormworkError, TransactionNotCommitted
from formwork.core.models import (
    ElementCategory,
    ElementResult,
    GenerationReport,
    HostElement,
)
from formwork.generation.panel_synthesizer import PanelSynthesizer
from formwork.host.protocols import HostModel, TransactionStatus


class FormworkGenerator:
    """
    Generates temporary formwork panels.

    Strategy: per element, per accepted face, one panel; neighbours are
    re-queried for every panel so earlier panels never clip later ones.
    """

    def __init__(
        self,
        host: HostModel,
        settings: Optional[FormworkSettings] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize generator.

        Args:
            host: Host model
            settings: Thresholds (taken from config, or defaults, when None)
            config: Optional config providing face rules
        """
        self.host = host
        if settings is None:
            settings = config.settings if config is not None else FormworkSettings()
        self.settings = settings
        self.rules = FaceRules(self.settings, config)
        self.synthesizer = PanelSynthesizer(host, self.settings)

    def already_formed(self, element: HostElement) -> bool:
        """True for formwork entities and elements some entity already references."""
        if element.is_formwork:
            return True
        if has_tag(self.host.get_tag(element.id)):
            return True
        return bool(self.host.find_back_references(element.id))

    def thickness_for(self, kind: PanelKind) -> float:
        if kind == PanelKind.FLOOR:
            return self.settings.floor_panel_thickness
        return self.settings.wall_panel_thickness

    def discard(self, entity_ids: List[int]) -> None:
        """Delete the panels already created for an element that failed part way."""
        for entity_id in reversed(entity_ids):
            try:
                self.host.delete(entity_id)
            except Exception as e:
                logger.warning(f"Could not remove panel {entity_id}: {e}")
        entity_ids.clear()

    def form_element(self, element: HostElement) -> ElementResult:
        """
        Create the panels of one element.

        Returns:
            ElementResult listing the created temporary entities
        """
        host = self.host
        kernel = host.kernel

        volume = host.element_volume(element.id)
        if volume is None:
            return ElementResult(entity_id=element.id, success=False, reason="Element has no volume")

        bbox = host.element_bounding_box(element.id) or kernel.bounding_box(volume)
        faces = [f for f in kernel.faces(volume) if f.area >= self.settings.min_face_area]

        created: List[int] = []
        failures: List[str] = []

        for index, face in enumerate(faces):
            kind = self.rules.panel_kind(element.category, face)
            if kind is None:
                continue

            try:
                panel = self.synthesizer.synthesize(
                    face,
                    self.thickness_for(kind),
                    host_element=element,
                    element_bbox=bbox,
                )
            except FormworkError as e:
                logger.warning(f"{element} face {index}: {e}")
                failures.append(f"face {index}: {e}")
                continue

            # a host failure removes every panel of the element
            try:
                entity_id = host.create_generic_volume(
                    panel.volume,
                    ElementCategory.GENERIC,
                    f"Formwork {kind.value} {element.id}",
                    is_formwork=True,
                )
                created.append(entity_id)
                host.set_tag(entity_id, format_tag(element.id))
            except Exception:
                self.discard(created)
                raise

        if not created:
            reason = "; ".join(failures) if failures else "No formable faces"
            logger.error(f"{element}: no panels created ({reason})")
            return ElementResult(entity_id=element.id, success=False, reason=reason)

        logger.debug(f"{element}: {len(created)} panel(s), {len(failures)} face failure(s)")
        return ElementResult(
            entity_id=element.id,
            success=True,
            created_ids=created,
            reason="; ".join(failures),
        )

    def generate(self, element_ids: Sequence[int]) -> GenerationReport:
        """
        Generate formwork for a selection.

        Args:
            element_ids: Structural elements in selection order

        Returns:
            GenerationReport

        Raises:
            TransactionNotCommitted: If the host did not commit the transaction
        """
        logger.info(f"Generating formwork for {len(element_ids)} elements")
        report = GenerationReport()

        with self.host.transaction("Generate formwork") as transaction:
            for element_id in element_ids:
                element = self.host.get_element(element_id)
                if element is None:
                    report.results.append(
                        ElementResult(entity_id=element_id, success=False, reason="Element not found")
                    )
                    continue

                if self.already_formed(element):
                    logger.info(f"{element} already has formwork, skipped")
                    report.skipped.append(element_id)
                    continue

                try:
                    report.results.append(self.form_element(element))
                except Exception as e:
                    logger.error(f"{element}: {e}")
                    report.results.append(
                        ElementResult(entity_id=element_id, success=False,
                                      reason=f"{type(e).__name__}: {e}")
                    )

            status = transaction.commit()

        if status != TransactionStatus.COMMITTED:
            raise TransactionNotCommitted(status.value)

        logger.success(str(report))
        return report


def generate_formwork(
    host: HostModel,
    element_ids: Sequence[int],
    settings: Optional[FormworkSettings] = None,
    config: Optional[Config] = None,
) -> GenerationReport:
    """
    Convenience function to generate formwork panels.

    Args:
        host: Host model
        element_ids: Structural elements to form
        settings: Thresholds (defaults when None)
        config: Optional config providing face rules

    Returns:
        GenerationReport
    """
    generator = FormworkGenerator(host, settings=settings, config=config)
    return generator.generate(element_ids)
