import numpy as np
import pytest

from meshpaths.slicing import slice_mesh, strip_segments

SQUARE_POINTS = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 1.0, 0.0)]
SQUARE_FACES = [(0, 1, 2), (0, 2, 3)]

TETRA_POINTS = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)]
TETRA_FACES = [(0, 2, 1), (0, 1, 3), (1, 2, 3), (0, 3, 2)]


def test_slice_square_gives_one_line_across():
    cut, segments = slice_mesh(SQUARE_POINTS, SQUARE_FACES, (0.5, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert np.allclose(cut[:, 0], 0.5)
    assert np.allclose(cut[:, 2], 0.0)
    lines = strip_segments(segments)
    assert len(lines) == 1
    ends = sorted(cut[[lines[0][0], lines[0][-1]], 1])
    assert ends == pytest.approx([0.0, 1.0])


def test_shared_edge_points_are_not_repeated():
    cut, segments = slice_mesh(SQUARE_POINTS, SQUARE_FACES, (0.5, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert len(cut) == 3
    assert len(segments) == 2


def test_plane_missing_mesh_gives_nothing():
    cut, segments = slice_mesh(SQUARE_POINTS, SQUARE_FACES, (2.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert cut.shape == (0, 3)
    assert segments == []


def test_plane_through_shared_edge_gives_single_segment():
    cut, segments = slice_mesh(SQUARE_POINTS, SQUARE_FACES, (0.0, 0.0, 0.0), (1.0, -1.0, 0.0))
    assert len(segments) == 1
    found = {tuple(p) for p in cut}
    assert found == {SQUARE_POINTS[0], SQUARE_POINTS[2]}


def test_slice_tetrahedron_gives_closed_loop():
    cut, segments = slice_mesh(TETRA_POINTS, TETRA_FACES, (0.0, 0.0, 0.5), (0.0, 0.0, 1.0))
    assert np.allclose(cut[:, 2], 0.5)
    lines = strip_segments(segments)
    assert len(lines) == 1
    assert lines[0][0] == lines[0][-1]
    assert sorted(set(lines[0])) == list(range(len(cut)))


def test_zero_normal_is_rejected():
    with pytest.raises(ValueError):
        slice_mesh(SQUARE_POINTS, SQUARE_FACES, (0.0, 0.0, 0.0), (0.0, 0.0, 0.0))


def test_strip_ordered_chain():
    assert strip_segments([(0, 1), (1, 2), (2, 3)]) == [[0, 1, 2, 3]]


def test_strip_unordered_chain_walks_from_an_end():
    lines = strip_segments([(2, 3), (0, 1), (1, 2)])
    assert len(lines) == 1
    line = lines[0]
    assert {line[0], line[-1]} == {0, 3}
    assert sorted(line[1:-1]) == [1, 2]


def test_strip_separate_chains():
    lines = strip_segments([(0, 1), (5, 6), (1, 2)])
    assert len(lines) == 2
    assert sorted(sorted(line) for line in lines) == [[0, 1, 2], [5, 6]]


def test_strip_ignores_degenerate_segments():
    assert strip_segments([(4, 4)]) == []