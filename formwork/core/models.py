"""
Core data models for the formwork module.

All models use Pydantic for validation and serialization. Geometry handles
owned by the geometry kernel (volumes) are carried as opaque values.
"""

from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
import numpy as np


class ElementCategory(str, Enum):
    """Host model categories the pipeline distinguishes."""
    COLUMN = "column"
    FRAMING = "framing"
    WALL = "wall"
    FLOOR = "floor"
    FOUNDATION = "foundation"
    STAIR = "stair"
    GENERIC = "generic"


# Categories whose volumes may clip a panel
STRUCTURAL_CATEGORIES = (
    ElementCategory.COLUMN,
    ElementCategory.FRAMING,
    ElementCategory.WALL,
    ElementCategory.FLOOR,
    ElementCategory.FOUNDATION,
    ElementCategory.STAIR,
)


class Orientation(str, Enum):
    """Dominant orientation of a volume."""
    VERTICAL = "vertical"  # wall-like
    HORIZONTAL = "horizontal"  # floor-like or inclined


class SynthesisOutcome(str, Enum):
    """Result of a single synthesis strategy."""
    SUCCESS = "success"
    FAILED = "failed"


class Point3D(BaseModel):
    """3D point (or direction vector) in model space, metres."""
    x: float
    y: float
    z: float = 0.0

    def distance_to(self, other: "Point3D") -> float:
        """Calculate Euclidean distance to another point."""
        return ((self.x - other.x) ** 2 +
                (self.y - other.y) ** 2 +
                (self.z - other.z) ** 2) ** 0.5

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, values) -> "Point3D":
        return cls(x=float(values[0]), y=float(values[1]), z=float(values[2]))

    def __add__(self, other: "Point3D") -> "Point3D":
        return Point3D(x=self.x + other.x, y=self.y + other.y, z=self.z + other.z)

    def __sub__(self, other: "Point3D") -> "Point3D":
        return Point3D(x=self.x - other.x, y=self.y - other.y, z=self.z - other.z)

    def scaled(self, factor: float) -> "Point3D":
        return Point3D(x=self.x * factor, y=self.y * factor, z=self.z * factor)

    def dot(self, other: "Point3D") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def length(self) -> float:
        return (self.x ** 2 + self.y ** 2 + self.z ** 2) ** 0.5

    def normalized(self) -> "Point3D":
        """Unit vector in the same direction (zero vectors are returned as-is)."""
        length = self.length()
        if length < 1e-12:
            return Point3D(x=self.x, y=self.y, z=self.z)
        return self.scaled(1.0 / length)


class BoundingBox(BaseModel):
    """Axis-aligned 3D bounding box."""
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    min_z: float = 0.0
    max_z: float = 0.0

    def center(self) -> Point3D:
        """Centre of the box, used as an element centroid."""
        return Point3D(
            x=(self.min_x + self.max_x) / 2.0,
            y=(self.min_y + self.max_y) / 2.0,
            z=(self.min_z + self.max_z) / 2.0,
        )

    def height(self) -> float:
        return self.max_z - self.min_z

    def expanded(self, margin: float) -> "BoundingBox":
        """Return a copy grown by margin on every side."""
        return BoundingBox(
            min_x=self.min_x - margin,
            min_y=self.min_y - margin,
            min_z=self.min_z - margin,
            max_x=self.max_x + margin,
            max_y=self.max_y + margin,
            max_z=self.max_z + margin,
        )

    def intersects(self, other: "BoundingBox") -> bool:
        """Check overlap with another box (touching counts)."""
        return (self.min_x <= other.max_x and self.max_x >= other.min_x and
                self.min_y <= other.max_y and self.max_y >= other.min_y and
                self.min_z <= other.max_z and self.max_z >= other.min_z)

    @classmethod
    def from_points(cls, points: List[Point3D]) -> "BoundingBox":
        if not points:
            raise ValueError("Cannot build a bounding box from no points")
        return cls(
            min_x=min(p.x for p in points),
            min_y=min(p.y for p in points),
            min_z=min(p.z for p in points),
            max_x=max(p.x for p in points),
            max_y=max(p.y for p in points),
            max_z=max(p.z for p in points),
        )


class Level(BaseModel):
    """Level (storey) datum."""
    id: int
    name: str
    elevation: float


class HostElement(BaseModel):
    """Reference to an element living in the host model."""
    id: int
    category: ElementCategory
    name: str = ""
    level_id: Optional[int] = None
    tag: Optional[str] = None  # free-form text tag (back-reference)
    is_formwork: bool = False  # temporary panels and generated formwork

    def __str__(self) -> str:
        return f"HostElement({self.id}, {self.category.value})"


class CurveSegment(BaseModel):
    """Boundary curve segment; a mid point marks a curved (arc) segment."""
    start: Point3D
    end: Point3D
    mid: Optional[Point3D] = None

    @property
    def is_curved(self) -> bool:
        return self.mid is not None

    def length(self) -> float:
        """Segment length (arcs approximated through their mid point)."""
        if self.mid is not None:
            return self.start.distance_to(self.mid) + self.mid.distance_to(self.end)
        return self.start.distance_to(self.end)

    def reversed(self) -> "CurveSegment":
        return CurveSegment(start=self.end, end=self.start, mid=self.mid)

    def translated(self, offset: Point3D) -> "CurveSegment":
        return CurveSegment(
            start=self.start + offset,
            end=self.end + offset,
            mid=self.mid + offset if self.mid is not None else None,
        )


class BoundaryLoop(BaseModel):
    """Ordered closed sequence of curve segments."""
    segments: List[CurveSegment]

    def points(self) -> List[Point3D]:
        """Start points of all segments, in order."""
        return [segment.start for segment in self.segments]

    def endpoints(self) -> List[Point3D]:
        """Start and end points of every segment."""
        result = []
        for segment in self.segments:
            result.append(segment.start)
            result.append(segment.end)
        return result

    def reversed(self) -> "BoundaryLoop":
        """Same loop traversed in the opposite direction."""
        return BoundaryLoop(segments=[s.reversed() for s in reversed(self.segments)])

    def translated(self, offset: Point3D) -> "BoundaryLoop":
        return BoundaryLoop(segments=[s.translated(offset) for s in self.segments])

    def __len__(self) -> int:
        return len(self.segments)


class BoundaryFace(BaseModel):
    """Surface patch of a volume with its outward unit normal."""
    normal: Point3D
    area: float = Field(ge=0.0)
    loops: List[BoundaryLoop] = Field(default_factory=list)  # first loop is the outer one
    origin: Optional[Point3D] = None
    x_axis: Optional[Point3D] = None
    y_axis: Optional[Point3D] = None
    is_planar: bool = True

    def centroid(self) -> Point3D:
        """Average of the outer loop's segment start points."""
        if not self.loops or not self.loops[0].segments:
            if self.origin is not None:
                return self.origin
            raise ValueError("Face has no boundary loops")
        points = self.loops[0].points()
        n = len(points)
        return Point3D(
            x=sum(p.x for p in points) / n,
            y=sum(p.y for p in points) / n,
            z=sum(p.z for p in points) / n,
        )


class OrientationResult(BaseModel):
    """Dominant orientation of a volume with the supporting votes."""
    orientation: Orientation
    representative_normal: Point3D
    vertical_count: int = 0
    horizontal_count: int = 0
    vertical_area: float = 0.0
    horizontal_area: float = 0.0
    significant_faces: int = 0
    ambiguous: bool = False  # no significant faces, defaulted to horizontal

    @property
    def is_vertical(self) -> bool:
        return self.orientation == Orientation.VERTICAL


class PanelGeometry(BaseModel):
    """Extruded formwork panel derived from a displaced boundary loop."""
    volume: Any  # kernel volume handle
    source_face: BoundaryFace
    thickness: float = Field(gt=0.0)
    direction: Point3D  # outward extrusion direction
    air_gap: float = 0.0
    subtractions: int = 0
    volume_value: float = 0.0
    face_count: int = 0
    host_element_id: Optional[int] = None


class SynthesisAttempt(BaseModel):
    """One strategy run inside the element synthesis chain."""
    strategy_index: int = Field(ge=0, le=5)  # 0 is the floor path
    strategy_name: str
    outcome: SynthesisOutcome
    reason: str = ""
    element_id: Optional[int] = None

    @field_validator('reason')
    @classmethod
    def strip_reason(cls, v: str) -> str:
        return v.strip()

    @property
    def succeeded(self) -> bool:
        return self.outcome == SynthesisOutcome.SUCCESS


class ConversionRecord(BaseModel):
    """Everything needed to rebuild a temporary panel as a permanent element."""
    entity_id: int
    source_id: Optional[int] = None  # structural element from the back-reference
    tag: Optional[str] = None
    orientation: OrientationResult
    face: BoundaryFace
    contour: List[CurveSegment] = Field(default_factory=list)  # validated, may be empty
    contour_error: Optional[str] = None  # why the contour was rejected
    base_curve: CurveSegment
    height: float
    min_elevation: float
    max_elevation: float
    bounding_box: BoundingBox
    level: Level
    face_area: float = 0.0
    reference_centroid: Optional[Point3D] = None
    volume: Any = None  # kernel volume of the temporary entity

    @property
    def is_vertical(self) -> bool:
        return self.orientation.is_vertical


class ElementResult(BaseModel):
    """Per-entity line of a run report."""
    entity_id: int
    success: bool
    created_ids: List[int] = Field(default_factory=list)
    strategy_index: Optional[int] = None
    reason: str = ""
    attempts: List[SynthesisAttempt] = Field(default_factory=list)


class ConversionReport(BaseModel):
    """Typed report of a ConvertBatch run."""
    results: List[ElementResult] = Field(default_factory=list)
    deleted_ids: List[int] = Field(default_factory=list)
    deletion_failures: Dict[int, str] = Field(default_factory=dict)
    committed: bool = False

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> List[int]:
        return [r.entity_id for r in self.results if not r.success]

    @property
    def reasons(self) -> Dict[int, str]:
        return {r.entity_id: r.reason for r in self.results if not r.success}

    def result_for(self, entity_id: int) -> Optional[ElementResult]:
        for result in self.results:
            if result.entity_id == entity_id:
                return result
        return None

    def __str__(self) -> str:
        return f"ConversionReport(created={self.created}, failed={len(self.failed)})"


class GenerationReport(BaseModel):
    """Typed report of a formwork generation run."""
    results: List[ElementResult] = Field(default_factory=list)
    skipped: List[int] = Field(default_factory=list)  # already carried formwork

    @property
    def panels_created(self) -> int:
        return sum(len(r.created_ids) for r in self.results)

    @property
    def failed(self) -> List[int]:
        return [r.entity_id for r in self.results if not r.success]

    def __str__(self) -> str:
        return (f"GenerationReport(panels={self.panels_created}, "
                f"failed={len(self.failed)}, skipped={len(self.skipped)})")
