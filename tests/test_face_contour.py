"""Tests for principal face selection and contour validation."""
import pytest

from formwork.core.exceptions import ContourValidationError, GeometryExtractionError
from formwork.core.geometry import newell_normal
from formwork.core.models import BoundaryLoop, CurveSegment, Point3D
from formwork.detection.face_contour import FaceContourExtractor


def _loop(points):
    pts = [Point3D(x=p[0], y=p[1], z=p[2]) for p in points]
    return BoundaryLoop(segments=[
        CurveSegment(start=pts[i], end=pts[(i + 1) % len(pts)]) for i in range(len(pts))
    ])


@pytest.fixture
def extractor():
    return FaceContourExtractor()


class TestLoopValidation:

    def test_gap_above_tolerance_rejected(self, extractor):
        """Endpoints 4 mm apart fail the 3 mm closure tolerance."""
        loop = _loop([(0, 0, 0), (1, 0, 0), (1, 0, 1), (0, 0, 1)])
        last = loop.segments[-1]
        loop.segments[-1] = CurveSegment(start=last.start, end=Point3D(x=0.004, y=0, z=0))

        with pytest.raises(ContourValidationError, match="not closed"):
            extractor.validate_closure(loop)

    def test_gap_within_tolerance_accepted(self, extractor):
        loop = _loop([(0, 0, 0), (1, 0, 0), (1, 0, 1), (0, 0, 1)])
        last = loop.segments[-1]
        loop.segments[-1] = CurveSegment(start=last.start, end=Point3D(x=0.002, y=0, z=0))
        extractor.validate_closure(loop)

    def test_degenerate_segment_rejected(self, extractor):
        loop = _loop([(0, 0, 0), (1, 0, 0), (1, 0, 0.0001), (1, 0, 1), (0, 0, 1)])
        with pytest.raises(ContourValidationError, match="Degenerate"):
            extractor.validate_segments(loop)

    def test_two_segments_rejected(self, extractor):
        loop = _loop([(0, 0, 0), (1, 0, 0)])
        with pytest.raises(ContourValidationError):
            extractor.validate_segments(loop)

    def test_colinear_loop_rejected(self, extractor):
        loop = _loop([(0, 0, 0), (1, 0, 0), (2, 0, 0)])
        with pytest.raises(ContourValidationError, match="area"):
            extractor.validate_area(loop, Point3D(x=0, y=-1, z=0))

    def test_accepted_loops_are_closed(self, extractor, wall_panel_face):
        loops = extractor.extract_wall_loops(wall_panel_face)
        tolerance = extractor.settings.closure_tolerance
        for loop in loops:
            segments = loop.segments
            for i, segment in enumerate(segments):
                following = segments[(i + 1) % len(segments)]
                assert segment.end.distance_to(following.start) <= tolerance


class TestWallContour:

    def test_rectangle_contour(self, extractor, wall_panel_face):
        contour = extractor.extract_wall_contour(wall_panel_face)
        assert len(contour) == 4
        assert all(s.start.y == pytest.approx(0.0) for s in contour)

    def test_non_coplanar_contour_rejected(self, extractor, face):
        skewed = face([(0, 0, 0), (2, 0, 0), (2, 0.01, 3), (0, 0, 3)], normal=(0, -1, 0))
        with pytest.raises(ContourValidationError) as info:
            extractor.extract_wall_contour(skewed)
        assert info.value.deviation > extractor.settings.planarity_tolerance

    def test_small_deviation_snapped_to_plane(self, extractor, face):
        warped = face([(0, 0, 0), (2, 0, 0), (2, 0.001, 3), (0, 0, 3)], normal=(0, -1, 0))
        contour = extractor.extract_wall_contour(warped)
        ys = [s.start.y for s in contour]
        assert max(ys) - min(ys) == pytest.approx(0.0, abs=1e-9)

    def test_horizontal_face_rejected(self, extractor, face):
        flat = face([(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0)], normal=(0, 0, 1))
        with pytest.raises(ContourValidationError, match="horizontal"):
            extractor.extract_wall_contour(flat)

    def test_opening_loop_matches_outer_orientation(self, extractor, face):
        """A hole traversed against the outer loop is reversed."""
        with_opening = face(
            [(0, 0, 0), (4, 0, 0), (4, 0, 3), (0, 0, 3)],
            normal=(0, -1, 0),
            holes=[[(1, 0, 2), (2, 0, 2), (2, 0, 1), (1, 0, 1)]],
        )
        loops = extractor.extract_wall_loops(with_opening)

        outer = newell_normal(loops[0].points())
        inner = newell_normal(loops[1].points())
        assert (outer @ inner) > 0
        assert len(extractor.extract_wall_contour(with_opening)) == 8


class TestFaceSelection:

    def test_largest_vertical_face_without_reference(self, extractor, box, faces_of):
        selected = extractor.select_principal_face(faces_of(box((0, 0, 0), (3, 0.2, 3))))
        assert selected.area == pytest.approx(9.0)

    def test_face_nearest_reference_wins(self, extractor, box, faces_of):
        faces = faces_of(box((0, 0, 0), (3, 0.2, 3)))
        near_far_side = Point3D(x=1.5, y=5.0, z=1.5)

        selected = extractor.select_principal_face(faces, near_far_side)

        assert selected.normal.y == pytest.approx(1.0)
        assert selected.centroid().y == pytest.approx(0.2)

    def test_thin_edge_faces_never_principal(self, extractor, box, faces_of):
        """Edge faces below 30% of the largest area are ignored even when closer."""
        faces = faces_of(box((0, 0, 0), (3, 0.2, 3)))
        beside_edge = Point3D(x=10.0, y=0.1, z=1.5)

        selected = extractor.select_principal_face(faces, beside_edge)

        assert selected.area == pytest.approx(9.0)

    def test_no_vertical_face(self, extractor, face):
        flat = face([(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0)], normal=(0, 0, 1))
        with pytest.raises(GeometryExtractionError):
            extractor.select_principal_face([flat])

    def test_floor_face_farthest_from_reference(self, extractor, box, faces_of):
        panel = faces_of(box((0, 0, -0.027), (2, 2, -0.002)))
        slab_centroid = Point3D(x=1.0, y=1.0, z=0.1)

        selected = extractor.select_floor_face(panel, slab_centroid)

        assert selected.normal.z == pytest.approx(-1.0)
        assert selected.centroid().z == pytest.approx(-0.027)

    def test_floor_face_lowest_without_reference(self, extractor, box, faces_of):
        selected = extractor.select_floor_face(faces_of(box((0, 0, 1), (2, 2, 1.025))))
        assert selected.centroid().z == pytest.approx(1.0)


class TestFloorLoops:

    def test_loops_moved_inward_by_board(self, extractor, face):
        underside = face([(0, 0, -0.027), (0, 2, -0.027), (2, 2, -0.027), (2, 0, -0.027)],
                         normal=(0, 0, -1))

        loops, elevation = extractor.extract_floor_loops(underside, inward_offset=0.025)

        assert elevation == pytest.approx(-0.002)
        assert len(loops) == 1
        assert all(p.z == pytest.approx(-0.002) for p in loops[0].endpoints())

    def test_inclined_face_flattened(self, extractor, face):
        inclined = face([(0, 0, 0), (2, 0, 0), (2, 2, 1), (0, 2, 1)])
        loops, elevation = extractor.extract_floor_loops(inclined)
        assert elevation == pytest.approx(0.5)
        assert {round(p.z, 9) for p in loops[0].endpoints()} == {0.5}

    def test_too_small_floor_rejected(self, extractor, face):
        scrap = face([(0, 0, 0), (0.05, 0, 0), (0.05, 0.05, 0), (0, 0.05, 0)], normal=(0, 0, 1))
        with pytest.raises(ContourValidationError, match="area"):
            extractor.extract_floor_loops(scrap)
