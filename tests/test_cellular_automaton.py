import networkx as nx
import numpy as np
import pytest

from trackml_ca.cellular_automaton import CellularAutomaton
from trackml_ca.config import CAParameters
from trackml_ca.hit_doublets import HitDoublets, consecutive_layer_pairs, make_doublets
from trackml_ca.metrics import summarize_chains


@pytest.fixture
def five_track_doublets(five_track_event):
    pairs = consecutive_layer_pairs(five_track_event)
    return make_doublets(five_track_event, pairs, max_dphi=0.05, max_dz=30.0, max_z0=20.0)


def test_inner_candidates(line_doublets):
    ca = CellularAutomaton(line_doublets)
    assert ca.inner_candidates(0).tolist() == []
    assert ca.inner_candidates(1).tolist() == [0]
    assert ca.inner_candidates(2).tolist() == [1]


def test_line_round(line_doublets):
    ca = CellularAutomaton(line_doublets)
    assert ca.create_graph() == 2
    assert [c.outer_neighbors for c in ca.cells] == [[1], [2], []]

    assert ca.evolve() == 2
    assert ca.levels().tolist() == [2, 1, 0]
    assert ca.max_level() == 2

    chains = ca.find_ntuplets(4)
    assert chains == [[0, 1, 2]]
    assert ca.ntuplet_hits(chains[0]) == [0, 1, 2, 3]


def test_shorter_chains_from_lower_roots(line_doublets):
    ca = CellularAutomaton(line_doublets)
    ca.create_graph()
    ca.evolve()
    assert ca.find_ntuplets(3) == [[0, 1], [1, 2]]
    assert ca.find_ntuplets(3, minimum_level=2) == [[0, 1]]
    assert ca.find_ntuplets(3, roots=[1]) == [[1, 2]]


def test_configured_minimum_level_applies_to_any_length(line_doublets):
    ca = CellularAutomaton(line_doublets, CAParameters(minimum_level=2))
    ca.create_graph()
    ca.evolve()
    assert ca.find_ntuplets(3) == [[0, 1]]
    assert ca.find_ntuplets(4) == [[0, 1, 2]]
    # an explicit argument still wins
    assert ca.find_ntuplets(3, minimum_level=1) == [[0, 1], [1, 2]]


def test_find_ntuplets_rejects_tiny_chains(line_doublets):
    ca = CellularAutomaton(line_doublets)
    with pytest.raises(ValueError):
        ca.find_ntuplets(1)


def test_triplets_do_not_touch_graph(line_doublets):
    ca = CellularAutomaton(line_doublets)
    assert ca.find_triplets() == [[0, 1], [1, 2]]
    assert ca.n_edges() == 0
    assert ca.find_triplets(n_workers=3) == [[0, 1], [1, 2]]


def test_tight_theta_cut_breaks_kink(line_doublets):
    hits = line_doublets.hits.copy()
    hits.loc[3, "z"] = 20.0
    d = HitDoublets(hits, line_doublets.inner_hits, line_doublets.outer_hits)
    ca = CellularAutomaton(d, CAParameters(theta_cut=0.002))
    ca.create_graph()
    assert [c.outer_neighbors for c in ca.cells] == [[1], [], []]


def test_graph_cannot_grow_twice(line_doublets):
    ca = CellularAutomaton(line_doublets)
    ca.create_graph()
    with pytest.raises(RuntimeError):
        ca.create_graph()
    ca.reset()
    assert ca.n_edges() == 0
    assert ca.create_graph() == 2


def test_evolve_respects_iteration_cap(line_doublets):
    ca = CellularAutomaton(line_doublets, CAParameters(max_iterations=1))
    ca.create_graph()
    assert ca.evolve() == 1
    assert ca.levels().tolist() == [1, 1, 0]
    assert ca.evolve(max_iterations=5) == 1
    assert ca.levels().tolist() == [2, 1, 0]


def test_parallel_growth_matches_serial(five_track_doublets):
    serial = CellularAutomaton(five_track_doublets)
    serial.create_graph(n_workers=1)
    threaded = CellularAutomaton(five_track_doublets)
    threaded.create_graph(n_workers=4)
    assert [c.outer_neighbors for c in threaded.cells] == [c.outer_neighbors for c in serial.cells]


def test_five_tracks_are_found(five_track_event, five_track_doublets):
    ca = CellularAutomaton(five_track_doublets)
    chains = ca.run()
    assert len(chains) == 5
    assert ca.run(n_workers=3) == chains

    chains_hits = [ca.ntuplet_hits(c) for c in chains]
    pid = five_track_event["particle_id"].to_numpy()
    summary = summarize_chains(chains_hits, pid, np.ones(len(pid), dtype=bool))
    assert summary["pure_fraction"] == 1.0
    assert summary["n_particles_found"] == 5.0
    assert summary["efficiency"] == 1.0


def test_statistics(line_doublets):
    ca = CellularAutomaton(line_doublets)
    ca.create_graph()
    ca.evolve()
    stats = ca.statistics()
    assert stats["n_cells"] == 3
    assert stats["n_edges"] == 2
    assert stats["max_level"] == 2
    assert stats["level_counts"] == {0: 1, 1: 1, 2: 1}
    assert stats["n_roots"] == 1


def test_to_networkx(line_doublets):
    ca = CellularAutomaton(line_doublets)
    ca.create_graph()
    ca.evolve()
    g = ca.to_networkx()
    assert isinstance(g, nx.DiGraph)
    assert sorted(g.edges()) == [(0, 1), (1, 2)]
    assert g.nodes[0]["ca_state"] == 2
    assert g.nodes[2]["outer_hit"] == 3
    assert nx.is_directed_acyclic_graph(g)


def test_empty_doublets(line_doublets):
    d = HitDoublets(line_doublets.hits, [], [])
    ca = CellularAutomaton(d)
    assert ca.run() == []
    assert ca.statistics()["n_cells"] == 0
