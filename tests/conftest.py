"""
Shared test fixtures for the formwork pipeline.

BoxKernel is an exact geometry kernel for unions of axis-aligned boxes, and
FakeHost an in-memory host model that records every call and can be told to
fail individual operations or to end its transaction without committing.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytest

from formwork.core.config import FormworkSettings
from formwork.core.geometry import newell_normal, plane_frame
from formwork.core.models import (
    BoundaryFace,
    BoundaryLoop,
    BoundingBox,
    ConversionRecord,
    CurveSegment,
    ElementCategory,
    HostElement,
    Level,
    Orientation,
    OrientationResult,
    Point3D,
)
from formwork.host.protocols import TransactionStatus

Vec = Tuple[float, float, float]


# ─── Box kernel ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Box:
    lo: Vec
    hi: Vec

    @property
    def volume(self) -> float:
        return float(np.prod(np.subtract(self.hi, self.lo)))

    def intersection(self, other: "Box") -> Optional["Box"]:
        lo = tuple(max(a, b) for a, b in zip(self.lo, other.lo))
        hi = tuple(min(a, b) for a, b in zip(self.hi, other.hi))
        if any(h - l <= 1e-12 for l, h in zip(lo, hi)):
            return None
        return Box(lo, hi)

    def minus(self, other: "Box") -> List["Box"]:
        shared = self.intersection(other)
        if shared is None:
            return [self]
        pieces = []
        lo, hi = list(self.lo), list(self.hi)
        for axis in range(3):
            if lo[axis] < shared.lo[axis]:
                top = hi.copy()
                top[axis] = shared.lo[axis]
                pieces.append(Box(tuple(lo), tuple(top)))
                lo[axis] = shared.lo[axis]
            if hi[axis] > shared.hi[axis]:
                bottom = lo.copy()
                bottom[axis] = shared.hi[axis]
                pieces.append(Box(tuple(bottom), tuple(hi)))
                hi[axis] = shared.hi[axis]
        return pieces


@dataclass
class BoxVolume:
    boxes: List[Box] = field(default_factory=list)


def make_box(lo: Sequence[float], hi: Sequence[float]) -> BoxVolume:
    return BoxVolume([Box(tuple(float(v) for v in lo), tuple(float(v) for v in hi))])


def make_face(points: List[Vec], normal: Optional[Vec] = None,
              holes: Optional[List[List[Vec]]] = None) -> BoundaryFace:
    """Planar face from ordered corner points (normal from the winding when omitted)."""

    def loop(corners: List[Vec]) -> BoundaryLoop:
        pts = [Point3D(x=p[0], y=p[1], z=p[2]) for p in corners]
        return BoundaryLoop(segments=[
            CurveSegment(start=pts[i], end=pts[(i + 1) % len(pts)]) for i in range(len(pts))
        ])

    outer = loop(points)
    area_vector = newell_normal(outer.points())
    area = float(np.linalg.norm(area_vector) / 2.0)
    if normal is None:
        n = Point3D.from_array(area_vector / np.linalg.norm(area_vector))
    else:
        n = Point3D(x=normal[0], y=normal[1], z=normal[2]).normalized()

    loops = [outer] + [loop(h) for h in (holes or [])]
    return BoundaryFace(normal=n, area=area, loops=loops)


def box_faces(box: Box) -> List[BoundaryFace]:
    """Six outward faces of a box, loops counter-clockwise about the normal."""
    lo, hi = np.array(box.lo), np.array(box.hi)
    center = (lo + hi) / 2.0
    size = hi - lo
    faces = []
    for axis in range(3):
        for sign in (-1.0, 1.0):
            n = np.zeros(3)
            n[axis] = sign
            normal = Point3D.from_array(n)
            u_axis, v_axis = plane_frame(normal)
            u, v = u_axis.to_array(), v_axis.to_array()
            hu, hv = abs(size @ u) / 2.0, abs(size @ v) / 2.0
            c = center + n * size[axis] / 2.0
            corners = [tuple(c + su * hu * u + sv * hv * v)
                       for su, sv in ((-1, -1), (1, -1), (1, 1), (-1, 1))]
            faces.append(make_face(corners, normal=tuple(n)))
    return faces


class BoxKernel:
    """GeometryKernel over unions of disjoint axis-aligned boxes."""

    def __init__(self):
        self.fail_difference = False
        self.fail_intersect = False
        self.difference_calls = 0

    def faces(self, volume: BoxVolume) -> List[BoundaryFace]:
        if volume is None:
            return []
        return [face for box in volume.boxes for face in box_faces(box)]

    def volume_of(self, volume: BoxVolume) -> float:
        if volume is None:
            return 0.0
        return sum(box.volume for box in volume.boxes)

    def bounding_box(self, volume: BoxVolume) -> Optional[BoundingBox]:
        if volume is None or not volume.boxes:
            return None
        lo = np.min([b.lo for b in volume.boxes], axis=0)
        hi = np.max([b.hi for b in volume.boxes], axis=0)
        return BoundingBox(min_x=lo[0], min_y=lo[1], min_z=lo[2],
                           max_x=hi[0], max_y=hi[1], max_z=hi[2])

    def extrude(self, loops: Sequence[BoundaryLoop], direction: Point3D,
                distance: float) -> BoxVolume:
        points = np.array([[p.x, p.y, p.z] for p in loops[0].points()])
        lo, hi = points.min(axis=0), points.max(axis=0)
        d = direction.normalized().to_array()
        axis = int(np.argmax(np.abs(d)))
        if d[axis] > 0:
            hi[axis] = lo[axis] + distance
        else:
            lo[axis] = hi[axis] - distance
        return make_box(lo, hi)

    def difference(self, volume: BoxVolume, tool: BoxVolume) -> BoxVolume:
        self.difference_calls += 1
        if self.fail_difference:
            raise RuntimeError("boolean kernel failure")
        pieces = list(volume.boxes)
        for cutter in tool.boxes:
            pieces = [piece for box in pieces for piece in box.minus(cutter)]
        return BoxVolume(pieces)

    def intersect(self, volume: BoxVolume, tool: BoxVolume) -> Optional[BoxVolume]:
        if self.fail_intersect:
            raise RuntimeError("boolean kernel failure")
        shared = [
            s for a in volume.boxes for b in tool.boxes
            for s in [a.intersection(b)] if s is not None
        ]
        return BoxVolume(shared) if shared else None


# ─── Host double ─────────────────────────────────────────────────────────────

class FakeTransaction:
    def __init__(self, host: "FakeHost", name: str):
        self.host = host
        self.name = name
        self._status = TransactionStatus.STARTED

    @property
    def status(self) -> TransactionStatus:
        return self._status

    def commit(self) -> TransactionStatus:
        self._status = self.host.commit_status
        return self._status

    def rollback(self) -> TransactionStatus:
        self._status = TransactionStatus.ROLLED_BACK
        return self._status


class FakeHost:
    """In-memory HostModel recording calls; `fail` names operations that raise."""

    def __init__(self, kernel: Optional[BoxKernel] = None):
        self.kernel = kernel or BoxKernel()
        self._elements: Dict[int, HostElement] = {}
        self._volumes: Dict[int, BoxVolume] = {}
        self._levels: List[Level] = []
        self._next_id = 100
        self.calls: List[Tuple[str, tuple]] = []
        self.fail: set = set()
        self.fail_delete_ids: set = set()
        self.commit_status = TransactionStatus.COMMITTED
        self.transactions: List[FakeTransaction] = []
        self.offsets: Dict[int, float] = {}
        self.moves: Dict[int, Point3D] = {}
        self.joins: Dict[int, bool] = {}
        self.profiles: Dict[int, Optional[str]] = {}

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def calls_to(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]

    # setup helpers
    def add_level(self, name: str, elevation: float) -> Level:
        level = Level(id=len(self._levels) + 1, name=name, elevation=elevation)
        self._levels.append(level)
        return level

    def add_element(self, category: ElementCategory, volume: Optional[BoxVolume],
                    tag: Optional[str] = None, is_formwork: bool = False,
                    name: str = "") -> HostElement:
        element = HostElement(id=self._next_id, category=category, name=name,
                              tag=tag, is_formwork=is_formwork)
        self._next_id += 1
        self._elements[element.id] = element
        if volume is not None:
            self._volumes[element.id] = volume
        return element

    # reading
    def get_element(self, element_id: int) -> Optional[HostElement]:
        return self._elements.get(element_id)

    def elements(self, categories=None) -> List[HostElement]:
        return [e for e in self._elements.values() if not categories or e.category in categories]

    def element_volume(self, element_id: int) -> Optional[BoxVolume]:
        return self._volumes.get(element_id)

    def element_bounding_box(self, element_id: int) -> Optional[BoundingBox]:
        return self.kernel.bounding_box(self._volumes.get(element_id))

    def query_elements(self, bbox: BoundingBox, categories) -> List[HostElement]:
        self.calls.append(("query_elements", (bbox,)))
        found = []
        for element_id, element in sorted(self._elements.items()):
            box = self.element_bounding_box(element_id)
            if box is not None and element.category in categories and box.intersects(bbox):
                found.append(element)
        return found

    def levels(self) -> List[Level]:
        return list(self._levels)

    def get_tag(self, element_id: int) -> Optional[str]:
        element = self._elements.get(element_id)
        return element.tag if element is not None else None

    def set_tag(self, element_id: int, tag: str) -> None:
        self._call("set_tag", element_id, tag)
        self._elements[element_id] = self._elements[element_id].model_copy(update={"tag": tag})

    def find_back_references(self, source_id: int) -> List[int]:
        from formwork.core.back_reference import try_parse_tag
        return [i for i, e in sorted(self._elements.items())
                if i != source_id and try_parse_tag(e.tag) == source_id]

    # creation
    def create_generic_volume(self, volume, category, name, is_formwork=True) -> int:
        self._call("create_generic_volume", category, name)
        return self.add_element(category, volume, is_formwork=is_formwork, name=name).id

    def create_wall_from_curves(self, curves, level, profile, normal) -> int:
        self._call("create_wall_from_curves", len(curves), level.id, profile)
        wall = self.add_element(ElementCategory.WALL, None, name="wall")
        self.profiles[wall.id] = profile
        return wall.id

    def create_wall_from_baseline(self, baseline, level, profile, height) -> int:
        self._call("create_wall_from_baseline", baseline, level.id, profile, height)
        wall = self.add_element(ElementCategory.WALL, None, name="wall")
        self.profiles[wall.id] = profile
        return wall.id

    def edit_wall_profile(self, wall_id, curves) -> None:
        self._call("edit_wall_profile", wall_id, len(curves))

    def create_floor(self, loops, level, profile) -> int:
        self._call("create_floor", loops, level.id, profile)
        floor = self.add_element(ElementCategory.FLOOR, None, name="floor")
        self.profiles[floor.id] = profile
        return floor.id

    # edits
    def set_wall_joins(self, wall_id, allowed) -> None:
        self._call("set_wall_joins", wall_id, allowed)
        self.joins[wall_id] = allowed

    def set_base_offset(self, element_id, offset) -> None:
        self._call("set_base_offset", element_id, offset)
        self.offsets[element_id] = offset

    def move_element(self, element_id, translation) -> None:
        self._call("move_element", element_id, translation)
        self.moves[element_id] = translation

    def apply_floor_slope(self, floor_id, plane_origin, plane_normal) -> bool:
        self._call("apply_floor_slope", floor_id, plane_origin, plane_normal)
        return True

    def delete(self, element_id) -> None:
        self._call("delete", element_id)
        if element_id in self.fail_delete_ids:
            raise RuntimeError(f"Element {element_id} is pinned")
        del self._elements[element_id]
        self._volumes.pop(element_id, None)

    @contextmanager
    def transaction(self, name: str):
        transaction = FakeTransaction(self, name)
        self.transactions.append(transaction)
        try:
            yield transaction
        except Exception:
            transaction.rollback()
            raise


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    """Default thresholds."""
    return FormworkSettings()


@pytest.fixture
def kernel():
    return BoxKernel()


@pytest.fixture
def host(kernel):
    """Host with levels at 0.0 m and 3.0 m."""
    fake = FakeHost(kernel)
    fake.add_level("Level 0", 0.0)
    fake.add_level("Level 1", 3.0)
    return fake


@pytest.fixture
def box():
    """Factory: box volume from two corners."""
    return make_box


@pytest.fixture
def face():
    """Factory: planar face from corner points."""
    return make_face


@pytest.fixture
def faces_of():
    """Factory: six faces of a box volume."""
    def build(volume: BoxVolume) -> List[BoundaryFace]:
        return [f for b in volume.boxes for f in box_faces(b)]
    return build


@pytest.fixture
def wall_panel_face():
    """Vertical 2.0 x 3.0 m face in the plane y=0 with its normal along -y."""
    return make_face([(0, 0, 0), (2, 0, 0), (2, 0, 3), (0, 0, 3)], normal=(0, -1, 0))


@pytest.fixture
def record_for(host):
    """Factory: ConversionRecord for a face, vertical or horizontal."""
    from formwork.detection.face_contour import FaceContourExtractor

    def build(panel_face: BoundaryFace, vertical: bool = True, entity_id: int = 1,
              source_id: Optional[int] = None, reference: Optional[Vec] = None,
              volume=None, contour_error: Optional[str] = None) -> ConversionRecord:
        points = [p for loop in panel_face.loops for p in loop.points()]
        bbox = BoundingBox.from_points(points)
        contour = []
        if vertical and contour_error is None:
            contour = FaceContourExtractor().extract_wall_contour(panel_face)
        level = host.levels()[0]
        if vertical:
            base = CurveSegment(
                start=Point3D(x=bbox.min_x, y=bbox.min_y, z=bbox.min_z),
                end=Point3D(x=bbox.max_x, y=bbox.max_y, z=bbox.min_z),
            )
        else:
            base = CurveSegment(start=points[0], end=points[1])
        return ConversionRecord(
            entity_id=entity_id,
            source_id=source_id,
            tag=f"ID: {source_id}" if source_id is not None else None,
            orientation=OrientationResult(
                orientation=Orientation.VERTICAL if vertical else Orientation.HORIZONTAL,
                representative_normal=panel_face.normal,
            ),
            face=panel_face,
            contour=contour,
            contour_error=contour_error,
            base_curve=base,
            height=bbox.height(),
            min_elevation=bbox.min_z,
            max_elevation=bbox.max_z,
            bounding_box=bbox,
            level=level,
            face_area=panel_face.area,
            reference_centroid=Point3D(x=reference[0], y=reference[1], z=reference[2]) if reference else None,
            volume=volume,
        )

    return build
