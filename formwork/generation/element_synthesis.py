"""
Permanent element synthesis from formwork panels.

Wall-like panels go through an ordered list of strategies, each one tried
only if the previous one failed:

1. Curve-loop synthesis from the validated coplanar contour
2. Profile-sketch editing of a straight-baseline wall
3. Multi-loop synthesis from the dominant loop's farthest points
4. Geometry-preserving generic entity
5. Baseline fallback with a uniform height

Floor-like panels take a single floor path. After a wall strategy succeeds
the element is detached from automatic joins, its base offset is set from
the true minimum elevation and it is moved half its width outward.
"""

from typing import List, Optional
from loguru import logger

from formwork.core.back_reference import format_tag
from formwork.core.config import FormworkSettings
from formwork.core.exceptions import (
    ContourValidationError,
    FormworkError,
    SynthesisStrategyFailure,
)
from formwork.core.geometry import (
    at_elevation,
    most_distant_pair,
    project_segment_to_plane,
    signed_area,
)
from formwork.core.models import (
    BoundaryLoop,
    ConversionRecord,
    CurveSegment,
    ElementCategory,
    ElementResult,
    Level,
    Point3D,
    SynthesisAttempt,
    SynthesisOutcome,
)
from formwork.detection.face_contour import FaceContourExtractor
from formwork.host.protocols import HostModel


def resolve_level(levels: List[Level], elevation: float) -> Level:
    """
    Pick the level an element is hosted on.

    The highest level at or below the elevation wins, so base offsets stay
    non-negative; the nearest level is used only when none lies below.

    Raises:
        SynthesisStrategyFailure: If the model has no levels
    """
    if not levels:
        raise SynthesisStrategyFailure("Model has no levels")

    below = [level for level in levels if level.elevation <= elevation + 1e-9]
    if below:
        return max(below, key=lambda level: level.elevation)

    return min(levels, key=lambda level: abs(level.elevation - elevation))


class SynthesisContext:
    """Everything a strategy needs besides the record."""

    def __init__(
        self,
        host: HostModel,
        settings: Optional[FormworkSettings] = None,
        wall_profile: Optional[str] = None,
        floor_profile: Optional[str] = None,
    ):
        self.host = host
        self.settings = settings or FormworkSettings()
        self.wall_profile = wall_profile
        self.floor_profile = floor_profile
        self.extractor = FaceContourExtractor(self.settings)


class SynthesisStrategy:
    """
    One way of materializing a record as a permanent element.

    Subclasses implement build(); try_synthesize() turns failures into a
    failed SynthesisAttempt instead of propagating them.
    """

    index = 0
    name = "strategy"
    adjusts_placement = True  # run post-creation wall adjustment on success

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        raise NotImplementedError

    def try_synthesize(self, record: ConversionRecord, context: SynthesisContext) -> SynthesisAttempt:
        """
        Run the strategy.

        Returns:
            SynthesisAttempt with the created element id on success
        """
        try:
            element_id = self.build(record, context)
        except FormworkError as e:
            logger.debug(f"[{self.index}] {self.name} failed: {e}")
            return self._attempt(SynthesisOutcome.FAILED, str(e))
        except Exception as e:
            logger.warning(f"[{self.index}] {self.name} failed in host: {e}")
            return self._attempt(SynthesisOutcome.FAILED, f"{type(e).__name__}: {e}")

        return self._attempt(SynthesisOutcome.SUCCESS, "", element_id)

    def _attempt(self, outcome: SynthesisOutcome, reason: str,
                 element_id: Optional[int] = None) -> SynthesisAttempt:
        return SynthesisAttempt(
            strategy_index=self.index,
            strategy_name=self.name,
            outcome=outcome,
            reason=reason,
            element_id=element_id,
        )


def _require_vertical_contour(record: ConversionRecord, context: SynthesisContext) -> List[CurveSegment]:
    normal = record.face.normal.normalized()
    if abs(normal.z) >= context.settings.vertical_tolerance:
        raise SynthesisStrategyFailure(f"Contour not near-vertical (n.z={normal.z:.4f})")
    if record.contour_error:
        raise SynthesisStrategyFailure(f"Contour rejected: {record.contour_error}")
    if not record.contour:
        raise SynthesisStrategyFailure("No validated contour")
    return record.contour


def _baseline(p1: Point3D, p2: Point3D, elevation: float) -> CurveSegment:
    return CurveSegment(start=at_elevation(p1, elevation), end=at_elevation(p2, elevation))


class CurveLoopStrategy(SynthesisStrategy):
    """Wall straight from the full validated contour."""

    index = 1
    name = "curve_loop"

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        contour = _require_vertical_contour(record, context)
        return context.host.create_wall_from_curves(
            contour, record.level, context.wall_profile, record.face.normal.normalized()
        )


class ProfileSketchStrategy(SynthesisStrategy):
    """Straight-baseline wall whose cross-section is rewritten with the contour."""

    index = 2
    name = "profile_sketch"

    def sketch_curves(self, record: ConversionRecord, context: SynthesisContext) -> List[CurveSegment]:
        """Validated contour, or the face loops projected onto the face plane."""
        normal = record.face.normal.normalized()
        if abs(normal.z) >= context.settings.vertical_tolerance:
            raise SynthesisStrategyFailure(f"Contour not near-vertical (n.z={normal.z:.4f})")
        if record.contour and not record.contour_error:
            return record.contour

        origin = record.face.centroid()
        curves = [
            project_segment_to_plane(segment, origin, normal)
            for loop in record.face.loops
            for segment in loop.segments
        ]
        if not curves:
            raise SynthesisStrategyFailure("No curves to sketch")
        return curves

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        contour = self.sketch_curves(record, context)
        tolerance = context.settings.base_point_tolerance

        z_min = min(s.start.z for s in contour)
        base_points = [s.start for s in contour if abs(s.start.z - z_min) < tolerance]

        for segment in contour:
            on_base = (abs(segment.start.z - z_min) < tolerance and
                       abs(segment.end.z - z_min) < tolerance)
            if on_base and segment.is_curved:
                raise SynthesisStrategyFailure("Curved baseline not supported for profile editing")

        pair = most_distant_pair(base_points)
        if pair is None or pair[2] < context.settings.min_baseline_length:
            raise SynthesisStrategyFailure("Not enough base points for a baseline")

        host = context.host
        baseline = _baseline(pair[0], pair[1], record.level.elevation)
        wall_id = host.create_wall_from_baseline(
            baseline, record.level, context.wall_profile, record.height
        )

        try:
            host.edit_wall_profile(wall_id, contour)
        except Exception:
            # no half-built wall may survive a failed edit
            host.delete(wall_id)
            raise

        return wall_id


class MultiLoopStrategy(SynthesisStrategy):
    """Wall on a baseline through the dominant loop's two farthest points."""

    index = 3
    name = "multi_loop"

    def dominant_loop(self, record: ConversionRecord) -> BoundaryLoop:
        loops = [loop for loop in record.face.loops if loop.segments]
        if not loops:
            raise SynthesisStrategyFailure("Face has no loops")
        normal = record.face.normal
        return max(loops, key=lambda loop: abs(signed_area(loop, normal)))

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        normal = record.face.normal.normalized()
        if abs(normal.z) >= context.settings.vertical_tolerance:
            raise SynthesisStrategyFailure(f"Face not near-vertical (n.z={normal.z:.4f})")

        points = self.dominant_loop(record).points()
        if len(points) < 2:
            raise SynthesisStrategyFailure("Dominant loop has fewer than 2 points")

        z_min = min(p.z for p in points)
        base = [p for p in points if abs(p.z - z_min) < context.settings.base_point_tolerance]
        # inclined contours (stair stringers) share no base points
        pair = most_distant_pair(base if len(base) >= 2 else points)
        if pair is None or pair[2] < context.settings.min_baseline_length:
            raise SynthesisStrategyFailure("Farthest points too close for a baseline")

        baseline = _baseline(pair[0], pair[1], record.level.elevation)
        if baseline.length() < context.settings.min_baseline_length:
            raise SynthesisStrategyFailure("Baseline collapses in plan")

        return context.host.create_wall_from_baseline(
            baseline, record.level, context.wall_profile, record.height
        )


class GeometryPreservingStrategy(SynthesisStrategy):
    """Exact panel volume kept as a tagged generic entity."""

    index = 4
    name = "geometry_preserving"
    adjusts_placement = False  # the volume is already in place

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        if record.volume is None:
            raise SynthesisStrategyFailure("No panel volume to preserve")
        name = f"Formwork {record.entity_id}"
        return context.host.create_generic_volume(
            record.volume, ElementCategory.WALL, name, is_formwork=True
        )


class BaselineFallbackStrategy(SynthesisStrategy):
    """Straight baseline and uniform height from the bounding elevations."""

    index = 5
    name = "baseline_fallback"

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        if record.height <= 0.0:
            raise SynthesisStrategyFailure("Bounding volume has no height")

        baseline = _baseline(record.base_curve.start, record.base_curve.end, record.level.elevation)
        if baseline.length() < context.settings.min_baseline_length:
            raise SynthesisStrategyFailure("Base curve too short")

        return context.host.create_wall_from_baseline(
            baseline, record.level, context.wall_profile, record.height
        )


class FloorStrategy(SynthesisStrategy):
    """Floor from the horizontal projection of the panel face."""

    index = 0
    name = "floor"
    adjusts_placement = False

    def build(self, record: ConversionRecord, context: SynthesisContext) -> int:
        settings = context.settings
        host = context.host

        try:
            loops, elevation = context.extractor.extract_floor_loops(
                record.face, inward_offset=settings.floor_panel_thickness
            )
        except ContourValidationError as e:
            raise SynthesisStrategyFailure(f"Floor contour invalid: {e.reason}") from e

        level = resolve_level(host.levels(), elevation)
        floor_id = host.create_floor(loops, level, context.floor_profile)

        try:
            offset = elevation - level.elevation
            if abs(offset) > settings.floor_offset_tolerance:
                host.set_base_offset(floor_id, offset)

            normal = record.face.normal.normalized()
            if abs(normal.z) <= settings.slope_normal_threshold:
                inner = record.face.centroid() - normal.scaled(settings.floor_panel_thickness)
                sloped = host.apply_floor_slope(floor_id, inner, normal)
                logger.debug(f"Slope adjustment on floor {floor_id}: {sloped}")
        except Exception:
            # no half-placed floor may survive a failed adjustment
            host.delete(floor_id)
            raise

        return floor_id


def default_wall_strategies() -> List[SynthesisStrategy]:
    """Wall strategies in priority order."""
    return [
        CurveLoopStrategy(),
        ProfileSketchStrategy(),
        MultiLoopStrategy(),
        GeometryPreservingStrategy(),
        BaselineFallbackStrategy(),
    ]


class ElementSynthesisChain:
    """
    Runs the strategies for one record until the first success.

    Terminal states: success with the winning strategy index, or failure
    with every attempt recorded.
    """

    def __init__(
        self,
        host: HostModel,
        settings: Optional[FormworkSettings] = None,
        wall_profile: Optional[str] = None,
        floor_profile: Optional[str] = None,
        strategies: Optional[List[SynthesisStrategy]] = None,
        floor_strategy: Optional[SynthesisStrategy] = None,
    ):
        """
        Initialize chain.

        Args:
            host: Host model
            settings: Thresholds (defaults when None)
            wall_profile: Wall type name for wall-like elements
            floor_profile: Floor type name for floor-like elements
            strategies: Wall strategies (default order when None)
            floor_strategy: Floor path (FloorStrategy when None)
        """
        self.context = SynthesisContext(host, settings, wall_profile, floor_profile)
        self.strategies = strategies if strategies is not None else default_wall_strategies()
        self.floor_strategy = floor_strategy or FloorStrategy()

    @property
    def host(self) -> HostModel:
        return self.context.host

    def post_adjust(self, element_id: int, record: ConversionRecord) -> None:
        """
        Place a freshly created wall.

        Joins are disallowed, the base is offset to the true minimum
        elevation and the wall is moved half its width so its inner face
        lies on the source face. Each step is best effort.
        """
        host = self.host
        settings = self.context.settings

        try:
            host.set_wall_joins(element_id, False)
        except Exception as e:
            logger.warning(f"Could not disallow joins on {element_id}: {e}")

        offset = record.min_elevation - record.level.elevation
        try:
            host.set_base_offset(element_id, offset)
        except Exception as e:
            logger.warning(f"Could not set base offset on {element_id}: {e}")

        normal = record.face.normal.normalized()
        half_width = settings.wall_thickness / 2.0
        direction = normal
        if record.reference_centroid is not None:
            to_reference = record.reference_centroid - record.face.centroid()
            if normal.dot(to_reference) > 0.0:
                direction = normal.scaled(-1.0)

        try:
            host.move_element(element_id, direction.scaled(half_width))
        except Exception as e:
            logger.warning(f"Could not move {element_id} off the source face: {e}")

    def _tag(self, element_id: int, record: ConversionRecord) -> None:
        if record.source_id is None:
            return
        try:
            self.host.set_tag(element_id, format_tag(record.source_id))
        except Exception as e:
            logger.warning(f"Could not tag {element_id}: {e}")

    def try_create(self, record: ConversionRecord) -> ElementResult:
        """
        Materialize one record.

        Args:
            record: Extracted conversion record

        Returns:
            ElementResult with every attempt made
        """
        strategies = self.strategies if record.is_vertical else [self.floor_strategy]
        attempts: List[SynthesisAttempt] = []

        for strategy in strategies:
            attempt = strategy.try_synthesize(record, self.context)
            attempts.append(attempt)

            if not attempt.succeeded:
                continue

            if record.is_vertical and strategy.adjusts_placement:
                self.post_adjust(attempt.element_id, record)
            self._tag(attempt.element_id, record)

            logger.success(
                f"Entity {record.entity_id}: created {attempt.element_id} "
                f"with strategy {attempt.strategy_index} ({attempt.strategy_name})"
            )
            return ElementResult(
                entity_id=record.entity_id,
                success=True,
                created_ids=[attempt.element_id],
                strategy_index=attempt.strategy_index,
                attempts=attempts,
            )

        reason = "; ".join(f"[{a.strategy_index}] {a.reason}" for a in attempts)
        logger.error(f"Entity {record.entity_id}: all strategies failed ({reason})")
        return ElementResult(
            entity_id=record.entity_id,
            success=False,
            reason=reason or "No strategy available",
            attempts=attempts,
        )


def try_create_element(
    host: HostModel,
    record: ConversionRecord,
    settings: Optional[FormworkSettings] = None,
    wall_profile: Optional[str] = None,
    floor_profile: Optional[str] = None,
) -> ElementResult:
    """
    Convenience function to materialize one record.

    Args:
        host: Host model
        record: Conversion record (built from a panel or a temporary entity)
        settings: Thresholds (defaults when None)
        wall_profile: Wall type name
        floor_profile: Floor type name

    Returns:
        ElementResult
    """
    chain = ElementSynthesisChain(
        host,
        settings=settings,
        wall_profile=wall_profile,
        floor_profile=floor_profile,
    )
    return chain.try_create(record)
