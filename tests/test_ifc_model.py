"""Tests for the IfcOpenShell host model, including an end-to-end run."""
import numpy as np
import pytest
import trimesh

ifcopenshell = pytest.importorskip("ifcopenshell")
import ifcopenshell.util.element  # noqa: E402

from formwork.conversion.conversion_pipeline import ConversionPipeline  # noqa: E402
from formwork.core.models import BoundaryLoop, CurveSegment, ElementCategory, Point3D  # noqa: E402
from formwork.generation.formwork_generator import FormworkGenerator  # noqa: E402
from formwork.host.ifc_model import LINK_PSET, IfcHostModel, split_loops  # noqa: E402


def _cube(lo, hi):
    lo, hi = np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)
    return trimesh.creation.box(
        extents=hi - lo,
        transform=trimesh.transformations.translation_matrix((lo + hi) / 2.0),
    )


def _rectangle(corners):
    pts = [Point3D(x=c[0], y=c[1], z=c[2]) for c in corners]
    return [CurveSegment(start=pts[i], end=pts[(i + 1) % len(pts)]) for i in range(len(pts))]


@pytest.fixture
def model():
    ifc = IfcHostModel("Test Project")
    ifc.add_storey("Level 0", 0.0)
    ifc.add_storey("Level 1", 3.0)
    return ifc


@pytest.fixture
def levels(model):
    return model.levels()


@pytest.fixture
def column_id(model):
    return model.create_generic_volume(_cube((0, 0, 0), (0.4, 0.4, 3)), ElementCategory.COLUMN,
                                       "C1", is_formwork=False)


class TestProjectStructure:

    def test_storeys_are_levels(self, model, levels):
        assert [level.name for level in levels] == ["Level 0", "Level 1"]
        assert [level.elevation for level in levels] == [0.0, 3.0]
        assert model.ifc_file.by_id(levels[1].id).is_a("IfcBuildingStorey")

    def test_generic_volume(self, model, column_id):
        element = model.get_element(column_id)
        assert element.category == ElementCategory.COLUMN
        assert not element.is_formwork
        assert model.ifc_file.by_id(column_id).is_a("IfcColumn")
        assert model.kernel.volume_of(model.element_volume(column_id)) == pytest.approx(0.48)

    @pytest.mark.parametrize("z, expected", [(4.0, "Level 1"), (3.0, "Level 1"), (-2.0, "Level 0")])
    def test_generic_volume_hosted_on_level_below(self, model, z, expected):
        element_id = model.create_generic_volume(_cube((0, 0, z), (1, 1, z + 0.5)),
                                                 ElementCategory.GENERIC, "tmp")
        level_id = model.get_element(element_id).level_id
        level = next(level for level in model.levels() if level.id == level_id)
        assert level.name == expected

    def test_query_by_bbox(self, model, column_id):
        bbox = model.element_bounding_box(column_id).expanded(0.05)
        found = model.query_elements(bbox, [ElementCategory.COLUMN])
        assert [e.id for e in found] == [column_id]
        assert model.query_elements(bbox, [ElementCategory.WALL]) == []

    def test_write_and_reopen(self, model, column_id, tmp_path):
        model.set_tag(column_id, "ID: 5")
        path = tmp_path / "model.ifc"
        model.write(str(path))

        reopened = IfcHostModel.open(str(path))

        element = reopened.get_element(column_id)
        assert element.category == ElementCategory.COLUMN
        assert element.tag == "ID: 5"
        assert element.level_id == model.levels()[0].id
        bbox = reopened.element_bounding_box(column_id)
        assert bbox.max_z == pytest.approx(3.0)


class TestWalls:

    def test_baseline_wall_on_level(self, model, levels):
        baseline = CurveSegment(start=Point3D(x=0, y=0, z=7), end=Point3D(x=4, y=0, z=7))

        wall_id = model.create_wall_from_baseline(baseline, levels[1], "Board 18", 2.5)

        bbox = model.element_bounding_box(wall_id)
        assert (bbox.min_x, bbox.max_x) == pytest.approx((0.0, 4.0))
        assert (bbox.min_y, bbox.max_y) == pytest.approx((-0.009, 0.009))
        assert (bbox.min_z, bbox.max_z) == pytest.approx((3.0, 5.5))
        assert model.base_offset(wall_id) == 0.0
        assert model.ifc_file.by_id(wall_id).is_a("IfcWall")

    def test_curve_wall_base_offset(self, model, levels):
        contour = _rectangle([(0, 0, 0.5), (2, 0, 0.5), (2, 0, 2.5), (0, 0, 2.5)])

        wall_id = model.create_wall_from_curves(contour, levels[0], None, Point3D(x=0, y=-1, z=0))

        assert model.base_offset(wall_id) == pytest.approx(0.5)
        bbox = model.element_bounding_box(wall_id)
        assert (bbox.min_z, bbox.max_z) == pytest.approx((0.5, 2.5))

    def test_offset_and_move_only_shift(self, model, levels):
        baseline = CurveSegment(start=Point3D(x=0, y=0), end=Point3D(x=4, y=0))
        wall_id = model.create_wall_from_baseline(baseline, levels[0], None, 3.0)

        model.set_base_offset(wall_id, 0.5)
        model.move_element(wall_id, Point3D(x=1.0, y=0.0, z=0.0))

        bbox = model.element_bounding_box(wall_id)
        assert (bbox.min_z, bbox.max_z) == pytest.approx((0.5, 3.5))
        assert (bbox.min_x, bbox.max_x) == pytest.approx((1.0, 5.0))
        link = ifcopenshell.util.element.get_pset(model.ifc_file.by_id(wall_id), LINK_PSET)
        assert link["BaseOffset"] == pytest.approx(0.5)

    def test_edit_profile(self, model, levels):
        baseline = CurveSegment(start=Point3D(x=0, y=0), end=Point3D(x=4, y=0))
        wall_id = model.create_wall_from_baseline(baseline, levels[0], None, 3.0)
        gable = _rectangle([(0, 0.001, 0), (4, 0.001, 0), (2, 0.001, 4)])

        model.edit_wall_profile(wall_id, gable)

        bbox = model.element_bounding_box(wall_id)
        assert bbox.max_z == pytest.approx(4.0)
        assert (bbox.min_y, bbox.max_y) == pytest.approx((-0.009, 0.009))

    def test_tags_and_joins_in_pset(self, model, levels, column_id):
        baseline = CurveSegment(start=Point3D(x=0, y=0), end=Point3D(x=4, y=0))
        wall_id = model.create_wall_from_baseline(baseline, levels[0], "Board 18", 3.0)

        model.set_tag(wall_id, f"ID: {column_id}")
        model.set_wall_joins(wall_id, False)

        assert model.get_tag(wall_id) == f"ID: {column_id}"
        assert model.find_back_references(column_id) == [wall_id]
        assert not model.joins_allowed(wall_id)
        link = ifcopenshell.util.element.get_pset(model.ifc_file.by_id(wall_id), LINK_PSET)
        assert link["Tag"] == f"ID: {column_id}"
        assert link["JoinsAllowed"] is False
        assert link["Profile"] == "Board 18"

    def test_split_loops_largest_first(self):
        hole = _rectangle([(1, 0, 1), (1, 0, 2), (2, 0, 2), (2, 0, 1)])
        outer = _rectangle([(0, 0, 0), (4, 0, 0), (4, 0, 3), (0, 0, 3)])
        loops = split_loops(hole + outer, 0.003)
        assert [len(loop) for loop in loops] == [4, 4]
        assert loops[0].segments[0].start.x == pytest.approx(0.0)


class TestFloors:

    @pytest.fixture
    def square(self):
        return [BoundaryLoop(segments=_rectangle([(0, 0, 2.7), (2, 0, 2.7), (2, 2, 2.7), (0, 2, 2.7)]))]

    def test_floor_top_on_level(self, model, levels, square):
        floor_id = model.create_floor(square, levels[0], "Deck 25")

        bbox = model.element_bounding_box(floor_id)
        assert (bbox.min_z, bbox.max_z) == pytest.approx((-0.025, 0.0))
        assert model.ifc_file.by_id(floor_id).is_a("IfcSlab")

        model.set_base_offset(floor_id, 2.725)
        assert model.element_bounding_box(floor_id).max_z == pytest.approx(2.725)

    def test_slope(self, model, levels, square, column_id):
        floor_id = model.create_floor(square, levels[0], None)
        normal = Point3D(x=0, y=-1, z=2).normalized()

        assert model.apply_floor_slope(floor_id, Point3D(x=1, y=1, z=0), normal)
        bbox = model.element_bounding_box(floor_id)
        assert bbox.max_z - bbox.min_z == pytest.approx(1.0 + 0.025)

        assert not model.apply_floor_slope(column_id, Point3D(x=0, y=0, z=0), normal)
        assert not model.apply_floor_slope(floor_id, Point3D(x=0, y=0, z=0), Point3D(x=1, y=0, z=0))

    def test_loaded_element_has_no_level_base(self, model, column_id, tmp_path):
        path = tmp_path / "model.ifc"
        model.write(str(path))
        reopened = IfcHostModel.open(str(path))
        with pytest.raises(ValueError):
            reopened.set_base_offset(column_id, 1.0)


class TestTransactions:

    def test_delete(self, model, column_id):
        model.delete(column_id)
        assert model.get_element(column_id) is None
        assert model.index.count_elements() == 0
        with pytest.raises(KeyError):
            model.delete(column_id)

    def test_error_rolls_back(self, model):
        with pytest.raises(RuntimeError):
            with model.transaction("Failing"):
                model.create_generic_volume(_cube((0, 0, 0), (1, 1, 1)), ElementCategory.GENERIC, "tmp")
                raise RuntimeError("boom")

        assert model.elements() == []
        assert not model.ifc_file.by_type("IfcBuildingElementProxy")

    def test_uncommitted_rolls_back(self, model, column_id):
        with model.transaction("Forgotten") as transaction:
            model.delete(column_id)
        assert transaction.status.value == "rolled_back"
        assert model.get_element(column_id) is not None
        assert model.index.count_elements() == 1

    def test_commit_keeps_changes(self, model, column_id):
        with model.transaction("Kept") as transaction:
            model.delete(column_id)
            assert transaction.commit().value == "committed"
        assert model.get_element(column_id) is None


class TestEndToEnd:

    def test_generate_then_convert(self, model, column_id):
        """Column -> four temporary boards -> four walls tagged with the column."""
        generated = FormworkGenerator(model).generate([column_id])
        panels = generated.results[0].created_ids
        assert len(panels) == 4
        assert all(model.get_element(i).is_formwork for i in panels)

        report = ConversionPipeline(model, wall_profile="Board 18").convert(panels)

        assert report.created == 4
        assert report.deleted_ids == panels
        walls = model.find_back_references(column_id)
        assert len(walls) == 4
        assert all(model.get_element(w).category == ElementCategory.WALL for w in walls)
        assert all(not model.joins_allowed(w) for w in walls)
        for wall in walls:
            bbox = model.element_bounding_box(wall)
            assert bbox.min_z == pytest.approx(0.0, abs=1e-6)
            assert bbox.max_z == pytest.approx(3.0, abs=1e-6)

        again = FormworkGenerator(model).generate([column_id])
        assert again.skipped == [column_id]
