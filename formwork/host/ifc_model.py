"""
IFC4 host model using IfcOpenShell.

Storeys are the levels and building elements are the host elements. The
back-reference tag and the formwork flags live in a "Formwork_Link" property
set. Element geometry is held as meshes (MeshKernel volumes): loaded elements
are tessellated in world coordinates, created elements keep a local mesh and
a translation-only placement at their base point, so base offsets and moves
only touch the placement.
"""

from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np
import trimesh
from loguru import logger

try:
    import ifcopenshell
    import ifcopenshell.api
    import ifcopenshell.geom
    import ifcopenshell.util.element
except ImportError:
    raise ImportError(
        "IfcOpenShell is required for the IFC host model. "
        "Install with: pip install ifcopenshell"
    )

from formwork.core.back_reference import try_parse_tag
from formwork.core.config import FormworkSettings
from formwork.core.geometry import Z_AXIS, newell_normal, project_to_plane, signed_area
from formwork.core.models import (
    BoundaryLoop,
    BoundingBox,
    CurveSegment,
    ElementCategory,
    HostElement,
    Level,
    Point3D,
)
from formwork.generation.element_synthesis import resolve_level
from formwork.host.mesh_kernel import MeshKernel
from formwork.host.protocols import TransactionStatus
from formwork.spatial.spatial_index import SpatialIndex

LINK_PSET = "Formwork_Link"

# Category -> IFC class written for created elements
IFC_CLASSES: Dict[ElementCategory, str] = {
    ElementCategory.COLUMN: "IfcColumn",
    ElementCategory.FRAMING: "IfcBeam",
    ElementCategory.WALL: "IfcWall",
    ElementCategory.FLOOR: "IfcSlab",
    ElementCategory.FOUNDATION: "IfcFooting",
    ElementCategory.STAIR: "IfcStair",
    ElementCategory.GENERIC: "IfcBuildingElementProxy",
}


def split_loops(curves: Sequence[CurveSegment], tolerance: float) -> List[BoundaryLoop]:
    """
    Split a flat curve sequence into loops, largest first.

    A new loop starts wherever a segment does not begin at the previous end.
    """
    loops: List[BoundaryLoop] = []
    current: List[CurveSegment] = []
    for segment in curves:
        if current and segment.start.distance_to(current[-1].end) > tolerance:
            loops.append(BoundaryLoop(segments=current))
            current = []
        current.append(segment)
    if current:
        loops.append(BoundaryLoop(segments=current))

    return sorted(loops, key=lambda loop: -abs(signed_area(loop, _loop_normal(loop))))


def _loop_normal(loop: BoundaryLoop) -> Point3D:
    normal = newell_normal(loop.points())
    if np.linalg.norm(normal) < 1e-12:
        return Z_AXIS
    return Point3D.from_array(normal)


@dataclass
class _Record:
    """Element state kept beside the IFC entity."""
    element: HostElement
    mesh: Optional[trimesh.Trimesh]  # local coordinates
    origin: np.ndarray  # placement (base point) in world coordinates
    level: Optional[Level] = None
    base_offset: float = 0.0
    normal: Optional[Point3D] = None  # wall plane normal
    anchor: Optional[np.ndarray] = None  # local point on the wall centre plane
    created: bool = False
    joins_allowed: bool = True
    profile: Optional[str] = None

    @property
    def id(self) -> int:
        return self.element.id

    def world_mesh(self) -> Optional[trimesh.Trimesh]:
        if self.mesh is None:
            return None
        mesh = self.mesh.copy()
        mesh.apply_translation(self.origin)
        return mesh


class IfcTransaction:
    """Snapshot-based unit of work on an IfcHostModel."""

    def __init__(self, model: "IfcHostModel", name: str):
        self.model = model
        self.name = name
        self._status = TransactionStatus.STARTED
        self._snapshot = model._snapshot()

    @property
    def status(self) -> TransactionStatus:
        return self._status

    def commit(self) -> TransactionStatus:
        if self._status == TransactionStatus.STARTED:
            self._status = TransactionStatus.COMMITTED
            self._snapshot = None
            logger.debug(f"Transaction '{self.name}' committed")
        return self._status

    def rollback(self) -> TransactionStatus:
        if self._status == TransactionStatus.STARTED:
            self.model._restore(self._snapshot)
            self._status = TransactionStatus.ROLLED_BACK
            self._snapshot = None
            logger.warning(f"Transaction '{self.name}' rolled back")
        return self._status


class IfcHostModel:
    """
    HostModel over an IFC4 file.

    Element ids are IFC step ids. Geometry is owned by a MeshKernel.
    """

    def __init__(
        self,
        project_name: str = "Formwork Model",
        settings: Optional[FormworkSettings] = None,
        kernel: Optional[MeshKernel] = None,
        ifc_file: Optional["ifcopenshell.file"] = None,
    ):
        """
        Initialize host model.

        Args:
            project_name: Name of the IFC project (new files only)
            settings: Thresholds providing element thicknesses (defaults when None)
            kernel: Geometry kernel (MeshKernel when None)
            ifc_file: Existing IFC file to wrap; a new project is created when None
        """
        self.project_name = project_name
        self.settings = settings or FormworkSettings()
        self.kernel = kernel or MeshKernel()
        self.index = SpatialIndex()
        self._records: Dict[int, _Record] = {}

        if ifc_file is None:
            self.ifc_file = self._create_project()
        else:
            self.ifc_file = ifc_file
            self._load_elements()

    # ------------------------------------------------------------------
    # Project structure
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, path: str, settings: Optional[FormworkSettings] = None,
             kernel: Optional[MeshKernel] = None) -> "IfcHostModel":
        """
        Load an existing IFC file.

        Args:
            path: Path to .ifc file
            settings: Thresholds (defaults when None)
            kernel: Geometry kernel (MeshKernel when None)

        Returns:
            IfcHostModel with every supported element indexed
        """
        logger.info(f"Opening IFC model: {path}")
        return cls(settings=settings, kernel=kernel, ifc_file=ifcopenshell.open(str(path)))

    def _create_project(self) -> "ifcopenshell.file":
        """Create the IFC4 project, site and building (no storeys)."""
        logger.info(f"Creating IFC4 project: {self.project_name}")

        ifc_file = ifcopenshell.api.run("project.create_file", version="IFC4")
        project = ifcopenshell.api.run(
            "root.create_entity", ifc_file, ifc_class="IfcProject", name=self.project_name
        )

        length = ifcopenshell.api.run("unit.add_si_unit", ifc_file, unit_type="LENGTHUNIT")
        ifcopenshell.api.run("unit.assign_unit", ifc_file, units=[length])

        model = ifcopenshell.api.run("context.add_context", ifc_file, context_type="Model")
        ifcopenshell.api.run(
            "context.add_context",
            ifc_file,
            context_type="Model",
            context_identifier="Body",
            target_view="MODEL_VIEW",
            parent=model,
        )

        site = ifcopenshell.api.run("root.create_entity", ifc_file, ifc_class="IfcSite", name="Site")
        building = ifcopenshell.api.run(
            "root.create_entity", ifc_file, ifc_class="IfcBuilding", name="Building"
        )
        ifcopenshell.api.run("aggregate.assign_object", ifc_file, relating_object=project, products=[site])
        ifcopenshell.api.run("aggregate.assign_object", ifc_file, relating_object=site, products=[building])

        logger.success("Created IFC project structure")
        return ifc_file

    def add_storey(self, name: str, elevation: float) -> Level:
        """
        Add a building storey.

        Args:
            name: Storey name (e.g., "Level 1")
            elevation: Elevation in metres

        Returns:
            The new Level
        """
        buildings = self.ifc_file.by_type("IfcBuilding")
        if not buildings:
            raise RuntimeError("Model has no building to hold storeys")

        storey = ifcopenshell.api.run(
            "root.create_entity", self.ifc_file, ifc_class="IfcBuildingStorey", name=name
        )
        storey.Elevation = elevation
        ifcopenshell.api.run(
            "aggregate.assign_object", self.ifc_file, relating_object=buildings[0], products=[storey]
        )
        return Level(id=storey.id(), name=name, elevation=elevation)

    def levels(self) -> List[Level]:
        levels = [
            Level(id=s.id(), name=s.Name or f"Storey {s.id()}", elevation=float(s.Elevation or 0.0))
            for s in self.ifc_file.by_type("IfcBuildingStorey")
        ]
        return sorted(levels, key=lambda level: level.elevation)

    def write(self, output_path: str) -> None:
        """
        Write IFC file to disk.

        Args:
            output_path: Path to output .ifc file
        """
        output_file = Path(output_path)
        self.ifc_file.write(str(output_file))

        file_size_kb = output_file.stat().st_size / 1024
        logger.success(f"Wrote IFC file: {output_file.absolute()} ({file_size_kb:.1f} KB)")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _category_of(self, entity) -> Optional[ElementCategory]:
        if entity.is_a("IfcStairFlight"):
            return ElementCategory.STAIR
        for category, ifc_class in IFC_CLASSES.items():
            if entity.is_a(ifc_class):
                return category
        return None

    def _shape_mesh(self, entity, geom_settings) -> Optional[trimesh.Trimesh]:
        try:
            shape = ifcopenshell.geom.create_shape(geom_settings, entity)
        except RuntimeError as e:
            logger.warning(f"No geometry for #{entity.id()} ({entity.is_a()}): {e}")
            return None

        vertices = np.array(shape.geometry.verts, dtype=float).reshape(-1, 3)
        faces = np.array(shape.geometry.faces, dtype=int).reshape(-1, 3)
        if len(faces) == 0:
            return None
        return trimesh.Trimesh(vertices=vertices, faces=faces, process=True)

    def _load_elements(self) -> None:
        """Register every supported building element of the wrapped file."""
        geom_settings = ifcopenshell.geom.settings()
        geom_settings.set("use-world-coords", True)

        levels = {level.id: level for level in self.levels()}

        for entity in self.ifc_file.by_type("IfcBuildingElement"):
            category = self._category_of(entity)
            if category is None:
                continue

            link = ifcopenshell.util.element.get_pset(entity, LINK_PSET) or {}
            container = ifcopenshell.util.element.get_container(entity)
            level = levels.get(container.id()) if container is not None else None

            element = HostElement(
                id=entity.id(),
                category=category,
                name=entity.Name or "",
                level_id=level.id if level is not None else None,
                tag=link.get("Tag"),
                is_formwork=bool(link.get("IsFormwork", False)),
            )
            record = _Record(
                element=element,
                mesh=self._shape_mesh(entity, geom_settings),
                origin=np.zeros(3),
                level=level,
                joins_allowed=bool(link.get("JoinsAllowed", True)),
            )
            self._records[element.id] = record
            self._index(record)

        logger.info(f"Loaded {len(self._records)} elements on {len(levels)} storeys")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _record(self, element_id: int) -> _Record:
        record = self._records.get(element_id)
        if record is None:
            raise KeyError(f"Element {element_id} not found")
        return record

    def get_element(self, element_id: int) -> Optional[HostElement]:
        record = self._records.get(element_id)
        return record.element if record is not None else None

    def elements(self, categories: Optional[Sequence[ElementCategory]] = None) -> List[HostElement]:
        return [
            self._records[i].element for i in sorted(self._records)
            if not categories or self._records[i].element.category in categories
        ]

    def element_volume(self, element_id: int) -> Optional[trimesh.Trimesh]:
        record = self._records.get(element_id)
        return record.world_mesh() if record is not None else None

    def element_bounding_box(self, element_id: int) -> Optional[BoundingBox]:
        return self.kernel.bounding_box(self.element_volume(element_id))

    def query_elements(self, bbox: BoundingBox,
                       categories: Sequence[ElementCategory]) -> List[HostElement]:
        ids = self.index.query_by_bbox(bbox, categories, include_formwork=True)
        return [self._records[i].element for i in ids if i in self._records]

    def get_tag(self, element_id: int) -> Optional[str]:
        record = self._records.get(element_id)
        return record.element.tag if record is not None else None

    def find_back_references(self, source_id: int) -> List[int]:
        """Ids of elements whose tag references source_id."""
        return [
            i for i in sorted(self._records)
            if i != source_id and try_parse_tag(self._records[i].element.tag) == source_id
        ]

    def base_offset(self, element_id: int) -> float:
        return self._record(element_id).base_offset

    def joins_allowed(self, element_id: int) -> bool:
        return self._record(element_id).joins_allowed

    # ------------------------------------------------------------------
    # IFC writing helpers
    # ------------------------------------------------------------------

    def _body_context(self):
        for context in self.ifc_file.by_type("IfcGeometricRepresentationSubContext"):
            if context.ContextIdentifier == "Body":
                return context
        return self.ifc_file.by_type("IfcGeometricRepresentationContext")[0]

    def _storey(self, level: Optional[Level]):
        if level is None:
            return None
        return self.ifc_file.by_id(level.id)

    def _level_below(self, elevation: float) -> Optional[Level]:
        levels = self.levels()
        if not levels:
            return None
        return resolve_level(levels, elevation)

    def _tessellation(self, mesh: trimesh.Trimesh):
        """Closed IfcTriangulatedFaceSet body for a mesh."""
        f = self.ifc_file
        points = f.createIfcCartesianPointList3D(
            [tuple(float(c) for c in vertex) for vertex in mesh.vertices]
        )
        face_set = f.createIfcTriangulatedFaceSet(
            points,
            None,
            True,
            [tuple(int(i) + 1 for i in face) for face in mesh.faces],  # 1-based
            None,
        )
        return f.createIfcShapeRepresentation(self._body_context(), "Body", "Tessellation", [face_set])

    def _slab_solid(self, loops: List[BoundaryLoop], thickness: float):
        """Swept-solid body: profile at z=0 of the placement, extruded downward."""
        f = self.ifc_file

        def polyline(loop: BoundaryLoop):
            coords = []
            for segment in loop.segments:
                coords.append((segment.start.x, segment.start.y))
                if segment.mid is not None:
                    coords.append((segment.mid.x, segment.mid.y))
            coords.append(coords[0])
            return f.createIfcPolyline([f.createIfcCartesianPoint((float(x), float(y))) for x, y in coords])

        outer = polyline(loops[0])
        if len(loops) > 1:
            profile = f.createIfcArbitraryProfileDefWithVoids(
                "AREA", None, outer, [polyline(loop) for loop in loops[1:]]
            )
        else:
            profile = f.createIfcArbitraryClosedProfileDef("AREA", None, outer)

        placement = f.createIfcAxis2Placement3D(
            f.createIfcCartesianPoint((0.0, 0.0, -thickness)),
            f.createIfcDirection((0.0, 0.0, 1.0)),
            f.createIfcDirection((1.0, 0.0, 0.0)),
        )
        solid = f.createIfcExtrudedAreaSolid(profile, placement, f.createIfcDirection((0.0, 0.0, 1.0)), thickness)
        return f.createIfcShapeRepresentation(self._body_context(), "Body", "SweptSolid", [solid])

    def _assign_body(self, entity, representation) -> None:
        if entity.Representation is not None:
            for old in list(entity.Representation.Representations):
                ifcopenshell.api.run(
                    "geometry.unassign_representation", self.ifc_file, product=entity, representation=old
                )
                ifcopenshell.api.run("geometry.remove_representation", self.ifc_file, representation=old)
        ifcopenshell.api.run(
            "geometry.assign_representation", self.ifc_file, product=entity, representation=representation
        )

    def _write_placement(self, record: _Record) -> None:
        matrix = np.eye(4)
        matrix[:3, 3] = record.origin
        ifcopenshell.api.run(
            "geometry.edit_object_placement",
            self.ifc_file,
            product=self.ifc_file.by_id(record.id),
            matrix=matrix,
        )

    def _write_link(self, record: _Record) -> None:
        """Store tag and formwork flags in the Formwork_Link property set."""
        entity = self.ifc_file.by_id(record.id)
        existing = ifcopenshell.util.element.get_pset(entity, LINK_PSET)
        if existing:
            pset = self.ifc_file.by_id(existing["id"])
        else:
            pset = ifcopenshell.api.run("pset.add_pset", self.ifc_file, product=entity, name=LINK_PSET)

        properties = {
            "IsFormwork": record.element.is_formwork,
            "Tag": record.element.tag,
            "JoinsAllowed": record.joins_allowed,
            "BaseOffset": record.base_offset,
            "Profile": record.profile,
        }
        ifcopenshell.api.run(
            "pset.edit_pset",
            self.ifc_file,
            pset=pset,
            properties={k: v for k, v in properties.items() if v is not None},
        )

    def _index(self, record: _Record) -> None:
        bbox = self.kernel.bounding_box(record.world_mesh())
        if bbox is None:
            self.index.remove_element(record.id)
        else:
            self.index.insert_element(record.element, bbox)

    def _register(
        self,
        category: ElementCategory,
        name: str,
        mesh: trimesh.Trimesh,
        origin: np.ndarray,
        level: Optional[Level],
        representation_for=None,
        is_formwork: bool = False,
        **extra,
    ) -> _Record:
        """Create the IFC entity and its record; representation_for builds a non-mesh body."""
        entity = ifcopenshell.api.run(
            "root.create_entity", self.ifc_file, ifc_class=IFC_CLASSES[category], name=name
        )
        storey = self._storey(level)
        if storey is not None:
            ifcopenshell.api.run(
                "spatial.assign_container", self.ifc_file, relating_structure=storey, products=[entity]
            )

        element = HostElement(
            id=entity.id(),
            category=category,
            name=name,
            level_id=level.id if level is not None else None,
            is_formwork=is_formwork,
        )
        record = _Record(element=element, mesh=mesh, origin=np.asarray(origin, dtype=float),
                         level=level, created=True, **extra)
        self._records[record.id] = record

        representation = representation_for() if representation_for else self._tessellation(mesh)
        self._assign_body(entity, representation)
        self._write_placement(record)
        self._write_link(record)
        self._index(record)
        return record

    # ------------------------------------------------------------------
    # Element creation
    # ------------------------------------------------------------------

    def _wall_mesh(self, curves: Sequence[CurveSegment], normal: Point3D) -> trimesh.Trimesh:
        """Wall body centred on the curves' plane."""
        width = self.settings.wall_thickness
        loops = split_loops(curves, self.settings.closure_tolerance)
        shift = normal.scaled(-width / 2.0)
        return self.kernel.extrude([loop.translated(shift) for loop in loops], normal, width)

    def create_generic_volume(self, volume: trimesh.Trimesh, category: ElementCategory,
                              name: str, is_formwork: bool = True) -> int:
        """Store a mesh as-is (world coordinates, placement at the origin)."""
        if volume is None or len(volume.faces) == 0:
            raise ValueError("Cannot store an empty volume")

        level = self._level_below(float(volume.bounds[0][2]))
        record = self._register(category, name, volume.copy(), np.zeros(3), level, is_formwork=is_formwork)
        logger.debug(f"Created {IFC_CLASSES[category]} #{record.id} '{name}'")
        return record.id

    def create_wall_from_curves(self, curves: List[CurveSegment], level: Level,
                                profile: Optional[str], normal: Point3D) -> int:
        """
        Wall whose elevation profile is the given closed contour.

        The base point sits at the lowest contour point, so the initial base
        offset is that point's height above the level.
        """
        if len(curves) < 3:
            raise ValueError(f"Wall profile needs at least 3 curves, got {len(curves)}")

        n = normal.normalized()
        world = self._wall_mesh(curves, n)
        origin = np.array([0.0, 0.0, float(world.bounds[0][2])])
        world.apply_translation(-origin)

        record = self._register(
            ElementCategory.WALL,
            profile or "Wall",
            world,
            origin,
            level,
            base_offset=float(origin[2]) - level.elevation,
            normal=n,
            anchor=curves[0].start.to_array() - origin,
            profile=profile,
        )
        logger.debug(f"Created wall #{record.id} from {len(curves)} curves")
        return record.id

    def create_wall_from_baseline(self, baseline: CurveSegment, level: Level,
                                  profile: Optional[str], height: float) -> int:
        """Straight wall of uniform height with its base on the level."""
        if height <= 0.0:
            raise ValueError(f"Wall height must be positive, got {height}")

        start = Point3D(x=baseline.start.x, y=baseline.start.y, z=0.0)
        end = Point3D(x=baseline.end.x, y=baseline.end.y, z=0.0)
        along = end - start
        if along.length() < self.settings.min_baseline_length:
            raise ValueError("Baseline too short")

        n = Point3D(x=-along.y, y=along.x, z=0.0).normalized()
        up = Z_AXIS.scaled(height)
        corners = [start, end, end + up, start + up]
        rectangle = [
            CurveSegment(start=corners[i], end=corners[(i + 1) % 4]) for i in range(4)
        ]

        record = self._register(
            ElementCategory.WALL,
            profile or "Wall",
            self._wall_mesh(rectangle, n),
            np.array([0.0, 0.0, level.elevation]),
            level,
            normal=n,
            anchor=start.to_array(),
            profile=profile,
        )
        logger.debug(f"Created wall #{record.id} on a {along.length():.3f} m baseline")
        return record.id

    def edit_wall_profile(self, wall_id: int, curves: List[CurveSegment]) -> None:
        """Replace a created wall's elevation profile; curves are projected onto the wall plane."""
        record = self._record(wall_id)
        if record.normal is None or record.anchor is None:
            raise ValueError(f"Element {wall_id} has no editable profile")
        if len(curves) < 3:
            raise ValueError(f"Wall profile needs at least 3 curves, got {len(curves)}")

        plane_point = Point3D.from_array(record.anchor + record.origin)

        def onto_plane(point: Optional[Point3D]) -> Optional[Point3D]:
            if point is None:
                return None
            return project_to_plane(point, plane_point, record.normal)

        projected = [
            CurveSegment(start=onto_plane(s.start), end=onto_plane(s.end), mid=onto_plane(s.mid))
            for s in curves
        ]
        world = self._wall_mesh(projected, record.normal)
        world.apply_translation(-record.origin)

        record.mesh = world
        self._assign_body(self.ifc_file.by_id(wall_id), self._tessellation(world))
        self._index(record)
        logger.debug(f"Edited profile of wall #{wall_id} ({len(curves)} curves)")

    def create_floor(self, loops: List[BoundaryLoop], level: Level,
                     profile: Optional[str]) -> int:
        """
        Floor with its top on the level; the loops' own elevation is ignored.

        Use set_base_offset to raise or lower it.
        """
        if not loops:
            raise ValueError("Floor needs at least one boundary loop")

        thickness = self.settings.floor_thickness
        flat = [
            BoundaryLoop(segments=[
                CurveSegment(
                    start=Point3D(x=s.start.x, y=s.start.y, z=0.0),
                    end=Point3D(x=s.end.x, y=s.end.y, z=0.0),
                    mid=Point3D(x=s.mid.x, y=s.mid.y, z=0.0) if s.mid is not None else None,
                )
                for s in loop.segments
            ])
            for loop in loops
        ]
        below = Z_AXIS.scaled(-thickness)
        mesh = self.kernel.extrude([loop.translated(below) for loop in flat], Z_AXIS, thickness)

        record = self._register(
            ElementCategory.FLOOR,
            profile or "Floor",
            mesh,
            np.array([0.0, 0.0, level.elevation]),
            level,
            representation_for=lambda: self._slab_solid(flat, thickness),
            profile=profile,
        )
        logger.debug(f"Created floor #{record.id} with {len(loops)} loop(s)")
        return record.id

    # ------------------------------------------------------------------
    # Element edits
    # ------------------------------------------------------------------

    def set_tag(self, element_id: int, tag: str) -> None:
        record = self._record(element_id)
        record.element = record.element.model_copy(update={"tag": tag})
        self._write_link(record)

    def set_wall_joins(self, wall_id: int, allowed: bool) -> None:
        record = self._record(wall_id)
        record.joins_allowed = allowed
        self._write_link(record)

    def set_base_offset(self, element_id: int, offset: float) -> None:
        """Place the base point at level elevation + offset."""
        record = self._record(element_id)
        if not record.created or record.level is None:
            raise ValueError(f"Element {element_id} has no level-relative base")

        record.origin[2] = record.level.elevation + offset
        record.base_offset = offset
        self._write_placement(record)
        self._write_link(record)
        self._index(record)

    def move_element(self, element_id: int, translation: Point3D) -> None:
        record = self._record(element_id)
        if record.mesh is not None and not record.created:
            # loaded meshes are already in world coordinates
            record.mesh = record.mesh.copy()
            record.mesh.apply_translation(translation.to_array())
        else:
            record.origin = record.origin + translation.to_array()
            self._write_placement(record)
        self._index(record)

    def apply_floor_slope(self, floor_id: int, plane_origin: Point3D,
                          plane_normal: Point3D) -> bool:
        """
        Tilt a floor so its top lies on a plane.

        Returns:
            False when the element is not a floor or the plane is vertical
        """
        record = self._record(floor_id)
        if record.element.category != ElementCategory.FLOOR or record.mesh is None:
            return False

        n = plane_normal.normalized()
        if abs(n.z) < 1e-6:
            return False

        world = record.world_mesh()
        top = float(world.bounds[1][2])
        vertices = np.array(world.vertices)
        plane_z = plane_origin.z - (n.x * (vertices[:, 0] - plane_origin.x) +
                                    n.y * (vertices[:, 1] - plane_origin.y)) / n.z
        vertices[:, 2] += plane_z - top

        tilted = trimesh.Trimesh(vertices=vertices - record.origin, faces=world.faces, process=False)
        record.mesh = tilted
        self._assign_body(self.ifc_file.by_id(floor_id), self._tessellation(tilted))
        self._index(record)
        return True

    def delete(self, element_id: int) -> None:
        self._record(element_id)
        ifcopenshell.api.run("root.remove_product", self.ifc_file, product=self.ifc_file.by_id(element_id))
        self.index.remove_element(element_id)
        del self._records[element_id]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _snapshot(self):
        records = {
            i: replace(r, origin=r.origin.copy(), element=r.element.model_copy())
            for i, r in self._records.items()
        }
        return self.ifc_file.to_string(), records

    def _restore(self, snapshot) -> None:
        text, records = snapshot
        self.ifc_file = ifcopenshell.file.from_string(text)
        self._records = records
        self.index.clear()
        for record in self._records.values():
            self._index(record)

    @contextmanager
    def transaction(self, name: str) -> Iterator[IfcTransaction]:
        """
        Unit of work; rolled back on error or when left uncommitted.

        Args:
            name: Transaction name for logs
        """
        transaction = IfcTransaction(self, name)
        logger.debug(f"Transaction '{name}' started")
        try:
            yield transaction
        except Exception:
            transaction.rollback()
            raise

        if transaction.status == TransactionStatus.STARTED:
            logger.warning(f"Transaction '{name}' was not committed")
            transaction.rollback()
