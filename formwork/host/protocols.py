"""
Interfaces of the collaborators the pipeline consumes.

The geometry kernel owns volumes (opaque handles) and the booleans and
extrusions on them; the host model owns elements, levels, tags and the
transaction. Concrete implementations: MeshKernel and IfcHostModel.
"""

from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, ContextManager

from formwork.core.models import (
    BoundaryFace,
    BoundaryLoop,
    BoundingBox,
    CurveSegment,
    ElementCategory,
    HostElement,
    Level,
    Point3D,
)


class TransactionStatus(str, Enum):
    """Final state of a host transaction."""
    STARTED = "started"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class Transaction(Protocol):
    """Unit of work on the host model."""

    name: str

    @property
    def status(self) -> TransactionStatus: ...

    def commit(self) -> TransactionStatus: ...

    def rollback(self) -> TransactionStatus: ...


class GeometryKernel(Protocol):
    """Volume/face enumeration, booleans and extrusion."""

    def faces(self, volume: Any) -> List[BoundaryFace]: ...

    def volume_of(self, volume: Any) -> float: ...

    def bounding_box(self, volume: Any) -> Optional[BoundingBox]: ...

    def extrude(self, loops: Sequence[BoundaryLoop], direction: Point3D,
                distance: float) -> Any: ...

    def difference(self, volume: Any, tool: Any) -> Any: ...

    def intersect(self, volume: Any, tool: Any) -> Any: ...


class HostModel(Protocol):
    """Building model the formwork is read from and written to."""

    kernel: GeometryKernel

    def get_element(self, element_id: int) -> Optional[HostElement]: ...

    def elements(self, categories: Optional[Sequence[ElementCategory]] = None) -> List[HostElement]: ...

    def element_volume(self, element_id: int) -> Any: ...

    def element_bounding_box(self, element_id: int) -> Optional[BoundingBox]: ...

    def query_elements(self, bbox: BoundingBox,
                       categories: Sequence[ElementCategory]) -> List[HostElement]: ...

    def levels(self) -> List[Level]: ...

    def get_tag(self, element_id: int) -> Optional[str]: ...

    def set_tag(self, element_id: int, tag: str) -> None: ...

    def find_back_references(self, source_id: int) -> List[int]: ...

    def create_generic_volume(self, volume: Any, category: ElementCategory,
                              name: str, is_formwork: bool = True) -> int: ...

    def create_wall_from_curves(self, curves: List[CurveSegment], level: Level,
                                profile: Optional[str], normal: Point3D) -> int: ...

    def create_wall_from_baseline(self, baseline: CurveSegment, level: Level,
                                  profile: Optional[str], height: float) -> int: ...

    def edit_wall_profile(self, wall_id: int, curves: List[CurveSegment]) -> None: ...

    def create_floor(self, loops: List[BoundaryLoop], level: Level,
                     profile: Optional[str]) -> int: ...

    def set_wall_joins(self, wall_id: int, allowed: bool) -> None: ...

    def set_base_offset(self, element_id: int, offset: float) -> None: ...

    def move_element(self, element_id: int, translation: Point3D) -> None: ...

    def apply_floor_slope(self, floor_id: int, plane_origin: Point3D,
                          plane_normal: Point3D) -> bool: ...

    def delete(self, element_id: int) -> None: ...

    def transaction(self, name: str) -> ContextManager[Transaction]: ...
