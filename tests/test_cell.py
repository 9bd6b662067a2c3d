import numpy as np
import pandas as pd
import pytest

from trackml_ca.cell import MAX_CA_STATE, VECTOR_SIZE, Cell, CellStatus, LinkMode
from trackml_ca.config import CAParameters
from trackml_ca.hit_doublets import HitDoublets

CUTS = CAParameters().cuts()
XY_CUTS = {k: v for k, v in CUTS.items() if k != "theta_cut"}


def _cells(doublets):
    return [Cell(doublets, i, i) for i in range(len(doublets))]


def _random_dag(cells, seed, p=0.3):
    rng = np.random.default_rng(seed)
    for i, cell in enumerate(cells):
        cell.outer_neighbors = [j for j in range(i + 1, len(cells)) if rng.random() < p]


def test_status_update_and_saturation():
    st = CellStatus()
    assert st.get_ca_state() == 0
    st.update_state()
    assert st.ca_state == 0

    st.has_same_state_neighbors = 1
    st.update_state()
    assert st.ca_state == 1

    st.ca_state = MAX_CA_STATE
    st.update_state()
    assert st.ca_state == MAX_CA_STATE


def test_is_root_cell():
    st = CellStatus(ca_state=2)
    assert st.is_root_cell(0)
    assert st.is_root_cell(2)
    assert not st.is_root_cell(3)


def test_cell_geometry(line_doublets):
    c = Cell(line_doublets, 1, 1)
    assert c.inner_hit_index == 1
    assert c.outer_hit_index == 2
    assert c.inner_r == pytest.approx(8.0)
    assert c.outer_r == pytest.approx(12.0)
    assert c.inner_z == pytest.approx(4.0)
    assert c.outer_phi == pytest.approx(0.3)
    assert c.outer_hit["particle_id"] == 7
    assert c.outer_neighbors == []
    assert "index=1" in repr(c)


def test_evolve_sets_flag_only():
    status = [CellStatus(ca_state=1), CellStatus(ca_state=1), CellStatus(ca_state=0)]
    d = HitDoublets(pd.DataFrame({"x": [1.0, 2.0], "y": [0.0, 0.0], "z": [0.0, 0.0]}), [0, 0, 0], [1, 1, 1])
    cells = _cells(d)
    cells[0].outer_neighbors = [2, 1]
    cells[1].outer_neighbors = [2]

    cells[0].evolve(0, status)
    cells[1].evolve(1, status)
    cells[2].evolve(2, status)
    assert [s.has_same_state_neighbors for s in status] == [1, 0, 0]
    assert [s.ca_state for s in status] == [1, 1, 0]


def test_read_phase_is_order_independent(scratch_doublets):
    cells = _cells(scratch_doublets)
    _random_dag(cells, seed=5, p=0.4)
    rng = np.random.default_rng(6)
    levels = rng.integers(0, 3, len(cells))

    def flags(order):
        status = [CellStatus(ca_state=int(s)) for s in levels]
        for i in order:
            cells[i].evolve(i, status)
        return [s.has_same_state_neighbors for s in status]

    forward = flags(range(len(cells)))
    assert flags(reversed(range(len(cells)))) == forward
    assert flags(rng.permutation(len(cells))) == forward


def test_levels_never_decrease(scratch_doublets):
    cells = _cells(scratch_doublets)
    _random_dag(cells, seed=8, p=0.5)
    status = [CellStatus() for _ in cells]
    previous = [0] * len(cells)
    for _ in range(len(cells) + 1):
        for c in cells:
            c.evolve(c.index, status)
        for s in status:
            s.update_state()
        current = [s.ca_state for s in status]
        assert all(b >= a for a, b in zip(previous, current))
        previous = current


def test_push_mode_requires_sink(line_doublets):
    cells = _cells(line_doublets)
    with pytest.raises(ValueError):
        cells[1].check_alignment_and_act(cells, [0], LinkMode.PUSH, **CUTS)


def test_tag_links_predecessor(line_doublets):
    cells = _cells(line_doublets)
    cells[1].check_alignment_and_tag(cells, [0], **CUTS)
    cells[2].check_alignment_and_tag(cells, [1], **CUTS)
    assert cells[0].outer_neighbors == [1]
    assert cells[1].outer_neighbors == [2]
    assert cells[2].outer_neighbors == []


def test_push_leaves_graph_untouched(line_doublets):
    cells = _cells(line_doublets)
    found = []
    cells[2].check_alignment_and_push_triplet(cells, [1], found, **CUTS)
    cells[1].check_alignment_and_push_triplet(cells, [], found, **CUTS)
    assert found == [[1, 2]]
    assert all(c.outer_neighbors == [] for c in cells)


def test_more_candidates_than_one_group():
    n = VECTOR_SIZE + 4
    phi = 0.3
    r = np.r_[np.full(n, 4.0), 8.0, 12.0]
    z = np.r_[np.where(np.arange(n) % 2 == 0, 2.0, -3.0), 4.0, 6.0]
    hits = pd.DataFrame({"x": r * np.cos(phi), "y": r * np.sin(phi), "z": z})
    d = HitDoublets(hits, np.r_[np.arange(n), n], np.r_[np.full(n, n), n + 1])
    cells = _cells(d)

    found = []
    cells[n].check_alignment_and_push_triplet(cells, list(range(n)), found, **CUTS)
    assert found == [[k, n] for k in range(0, n, 2)]

    cells[n].check_alignment_and_tag(cells, list(range(n)), **CUTS)
    assert [len(cells[k].outer_neighbors) for k in range(n)] == [1 - k % 2 for k in range(n)]


def test_find_ntuplets_branches(scratch_doublets):
    cells = _cells(scratch_doublets)
    cells[0].outer_neighbors = [1, 2]
    found, tmp = [], [0]
    cells[0].find_ntuplets(cells, found, tmp, 3)
    assert found == [[0, 1], [0, 2]]
    assert tmp == [0]


def test_find_ntuplets_dead_end(scratch_doublets):
    cells = _cells(scratch_doublets)
    found = []
    cells[0].find_ntuplets(cells, found, [0], 3)
    assert found == []


def test_find_ntuplets_target_reached_immediately(scratch_doublets):
    cells = _cells(scratch_doublets)
    cells[4].outer_neighbors = [5]
    found = []
    cells[4].find_ntuplets(cells, found, [4], 2)
    assert found == [[4]]


@pytest.mark.parametrize("min_hits", [2, 3, 4, 5, 6])
def test_iterative_matches_recursive(scratch_doublets, min_hits):
    cells = _cells(scratch_doublets)
    _random_dag(cells, seed=11, p=0.45)
    for root in range(len(cells)):
        rec, it = [], []
        tmp_rec, tmp_it = [root], [root]
        cells[root].find_ntuplets(cells, rec, tmp_rec, min_hits)
        cells[root].find_ntuplets_iterative(cells, it, tmp_it, min_hits)
        assert it == rec
        assert tmp_it == tmp_rec == [root]
        assert all(len(chain) == min_hits - 1 for chain in rec)


def test_cell_rz_alignment(line_doublets):
    c = Cell(line_doublets, 1, 1)  # inner (r=8, z=4)
    assert c.are_aligned_rz(4.0, 2.0, 12.0, 6.0, 0.9, 0.002)
    assert not c.are_aligned_rz(4.0, -3.0, 12.0, 6.0, 0.9, 0.002)


def test_cell_rz_alignment_symmetric_under_relabeling(line_doublets):
    c = Cell(line_doublets, 1, 1)
    rng = np.random.default_rng(21)
    for _ in range(100):
        r1, ro = rng.uniform(1.0, 7.5), rng.uniform(8.5, 30.0)
        z1, zo = rng.uniform(-20.0, 20.0, 2)
        theta_cut = rng.uniform(1e-3, 1.0)
        assert c.are_aligned_rz(r1, z1, ro, zo, 0.9, theta_cut) == c.are_aligned_rz(
            ro, zo, r1, z1, 0.9, theta_cut
        )


def _bent_candidate_doublets():
    # rows: straight predecessor, bent predecessor, shared hit, outer hit
    phi = np.array([0.3, 0.8, 0.3, 0.3])
    r = np.array([4.0, 4.0, 8.0, 12.0])
    hits = pd.DataFrame({"x": r * np.cos(phi), "y": r * np.sin(phi), "z": 0.5 * r})
    return HitDoublets(hits, [0, 1, 2], [2, 2, 3])


def test_cell_curvature_compatibility():
    cells = _cells(_bent_candidate_doublets())
    assert cells[2].have_similar_curvature(cells[0], **XY_CUTS)
    assert not cells[2].have_similar_curvature(cells[1], **XY_CUTS)
    # the bent predecessor is still aligned in r-z
    c1, c2 = cells[1], cells[2]
    assert c2.are_aligned_rz(c1.inner_r, c1.inner_z, c2.outer_r, c2.outer_z, 0.9, 0.002)


def test_growth_applies_both_tests_per_group():
    cells = _cells(_bent_candidate_doublets())
    found = []
    cells[2].check_alignment_and_push_triplet(cells, [0, 1], found, **CUTS)
    assert found == [[0, 2]]

    cells[2].check_alignment_and_tag(cells, [0, 1], **CUTS)
    assert cells[0].outer_neighbors == [2]
    assert cells[1].outer_neighbors == []
