"""
Batch conversion of temporary panels into permanent elements.

Runs in three phases inside one host transaction:

1. Extract: read everything needed from every panel (read-only)
2. Delete: remove every panel that reached extraction
3. Create: rebuild each extracted record through the synthesis chain

A failure only ever costs one record; nothing created is rolled back
because of a later failure. If the host reports the transaction did not
commit, TransactionNotCommitted is raised and nothing else is attempted.
"""

from typing import List, Optional, Sequence
from loguru import logger

from formwork.core.config import FormworkSettings
from formwork.core.exceptions import FormworkError, TransactionNotCommitted
from formwork.core.models import (
    ConversionRecord,
    ConversionReport,
    ElementResult,
    Level,
    OrientationResult,
    PanelGeometry,
)
from formwork.conversion.extraction import RecordExtractor
from formwork.generation.element_synthesis import ElementSynthesisChain
from formwork.host.protocols import HostModel, TransactionStatus


class ConversionPipeline:
    """
    Extract -> delete -> create orchestrator.

    Entities are processed in the order given.
    """

    def __init__(
        self,
        host: HostModel,
        settings: Optional[FormworkSettings] = None,
        wall_profile: Optional[str] = None,
        floor_profile: Optional[str] = None,
        chain: Optional[ElementSynthesisChain] = None,
    ):
        """
        Initialize pipeline.

        Args:
            host: Host model
            settings: Thresholds (defaults when None)
            wall_profile: Wall type name for wall-like results
            floor_profile: Floor type name for floor-like results
            chain: Synthesis chain (built from the other arguments when None)
        """
        self.host = host
        self.settings = settings or FormworkSettings()
        self.extractor = RecordExtractor(host, self.settings)
        self.chain = chain or ElementSynthesisChain(
            host,
            settings=self.settings,
            wall_profile=wall_profile,
            floor_profile=floor_profile,
        )

    def extract_phase(self, entity_ids: Sequence[int], report: ConversionReport) -> List[ConversionRecord]:
        """Extract every entity, recording failures in the report."""
        logger.info(f"[1/3] Extracting {len(entity_ids)} temporary entities")

        records = []
        for entity_id in entity_ids:
            try:
                records.append(self.extractor.extract(entity_id))
            except FormworkError as e:
                logger.error(f"Extraction failed for {entity_id}: {e}")
                report.results.append(
                    ElementResult(entity_id=entity_id, success=False, reason=f"Extraction failed: {e}")
                )
            except Exception as e:
                logger.error(f"Extraction failed for {entity_id} in host: {e}")
                report.results.append(
                    ElementResult(entity_id=entity_id, success=False,
                                  reason=f"Extraction failed: {type(e).__name__}: {e}")
                )

        logger.info(f"      {len(records)} extracted, {len(entity_ids) - len(records)} failed")
        return records

    def delete_phase(self, entity_ids: Sequence[int], report: ConversionReport) -> None:
        """Delete every entity that reached extraction; failures are logged only."""
        logger.info(f"[2/3] Deleting {len(entity_ids)} temporary entities")

        for entity_id in entity_ids:
            try:
                self.host.delete(entity_id)
                report.deleted_ids.append(entity_id)
            except Exception as e:
                logger.warning(f"Could not delete {entity_id}: {e}")
                report.deletion_failures[entity_id] = str(e)

    def create_phase(self, records: List[ConversionRecord], report: ConversionReport) -> None:
        """Run the synthesis chain for every record."""
        logger.info(f"[3/3] Creating {len(records)} permanent elements")

        for record in records:
            try:
                result = self.chain.try_create(record)
            except Exception as e:
                logger.error(f"Creation failed for {record.entity_id}: {e}")
                result = ElementResult(
                    entity_id=record.entity_id,
                    success=False,
                    reason=f"Creation failed: {type(e).__name__}: {e}",
                )
            report.results.append(result)

    def convert(self, entity_ids: Sequence[int]) -> ConversionReport:
        """
        Convert a batch of temporary entities.

        Args:
            entity_ids: Temporary panel entities in selection order

        Returns:
            ConversionReport

        Raises:
            TransactionNotCommitted: If the host did not commit the transaction
        """
        report = ConversionReport()
        ids = list(entity_ids)

        with self.host.transaction("Convert formwork") as transaction:
            records = self.extract_phase(ids, report)
            self.delete_phase(ids, report)
            self.create_phase(records, report)
            status = transaction.commit()

        if status != TransactionStatus.COMMITTED:
            logger.error(f"Conversion transaction ended as '{status.value}'")
            raise TransactionNotCommitted(status.value)

        report.committed = True
        # results in selection order
        order = {entity_id: i for i, entity_id in enumerate(ids)}
        report.results.sort(key=lambda r: order.get(r.entity_id, len(order)))

        logger.success(
            f"Converted {report.created} of {len(ids)} entities "
            f"({len(report.failed)} failed)"
        )
        return report


def convert_batch(
    host: HostModel,
    entity_ids: Sequence[int],
    wall_profile: Optional[str] = None,
    floor_profile: Optional[str] = None,
    settings: Optional[FormworkSettings] = None,
) -> ConversionReport:
    """
    Convenience function to convert temporary panels.

    Args:
        host: Host model
        entity_ids: Temporary panel entities
        wall_profile: Wall type name
        floor_profile: Floor type name
        settings: Thresholds (defaults when None)

    Returns:
        ConversionReport
    """
    pipeline = ConversionPipeline(
        host,
        settings=settings,
        wall_profile=wall_profile,
        floor_profile=floor_profile,
    )
    return pipeline.convert(entity_ids)


def create_element_from_panel(
    host: HostModel,
    panel: PanelGeometry,
    orientation: OrientationResult,
    level: Optional[Level] = None,
    wall_profile: Optional[str] = None,
    floor_profile: Optional[str] = None,
    settings: Optional[FormworkSettings] = None,
) -> ElementResult:
    """
    Materialize a synthesized panel directly, without a temporary entity.

    Args:
        host: Host model
        panel: Panel geometry
        orientation: Orientation of the panel
        level: Hosting level (resolved from the panel when None)
        wall_profile: Wall type name
        floor_profile: Floor type name
        settings: Thresholds (defaults when None)

    Returns:
        ElementResult (failed, with the reason, when no record can be built)
    """
    pipeline = ConversionPipeline(
        host,
        settings=settings,
        wall_profile=wall_profile,
        floor_profile=floor_profile,
    )
    try:
        record = pipeline.extractor.from_panel(panel, orientation, level)
    except FormworkError as e:
        logger.error(f"Cannot build a record from panel: {e}")
        return ElementResult(entity_id=0, success=False, reason=str(e))

    return pipeline.chain.try_create(record)
