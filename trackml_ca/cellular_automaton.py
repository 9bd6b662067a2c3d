from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

import networkx as nx
import numpy as np

from trackml_ca.cell import MAX_CA_STATE, Cell, CellStatus
from trackml_ca.config import CAParameters
from trackml_ca.hit_doublets import HitDoublets

logger = logging.getLogger(__name__)

# deeper walks use Cell.find_ntuplets_iterative
RECURSION_SAFE_DEPTH = 256


class CellularAutomaton:
    r"""
    Driver of one cellular-automaton round over a set of hit doublets.

    The round has three stages:

    1. **Graph growth.** For every cell :math:`c`, the candidate predecessors are
       the cells whose outer hit is :math:`c`'s inner hit. Each compatible
       predecessor :math:`p` gets :math:`c` appended to its outer neighbours
       (:meth:`create_graph`). :meth:`find_triplets` runs the same tests but
       returns the compatible pairs instead of linking them.
    2. **Evolution.** Synchronous passes; each pass computes every cell's flag
       from the current levels, then advances every level:

       .. math::

           s_c^{(t+1)} = s_c^{(t)} + \mathbf{1}\!\left[\exists\, n\in N(c):
           s_n^{(t)} = s_c^{(t)}\right].

       Passes repeat until no level changes or ``max_iterations`` is reached.
    3. **Extraction.** From every root cell (:math:`s_c \ge` ``minimum_level``)
       all outward walks of ``min_hits - 1`` cells are enumerated.

    Parameters
    ----------
    doublets : HitDoublets
        Doublet store; cell ``i`` wraps doublet ``i``.
    params : CAParameters, optional
        Cuts and extraction settings; defaults to :class:`CAParameters()`.

    Attributes
    ----------
    cells : list of Cell
        Fixed-size, index-addressed cell list.
    status : list of CellStatus
        Automaton state, same indexing as ``cells``.

    Notes
    -----
    - **Threading.** With ``n_workers > 1`` growth runs on a
      :class:`concurrent.futures.ThreadPoolExecutor`. Workers never write to
      cells: each fills its own edge buffer through the push entry point and
      buffers are applied in cell order afterwards, so adjacency lists are
      identical to a serial run. The compatibility kernels are compiled with
      ``nogil=True``, so threads overlap inside them; the Python-level gather
      around each group still runs under the GIL. Extraction is split per
      root with one path buffer per root.
    - The graph is frozen after :meth:`create_graph`; call :meth:`reset`
      before growing it again.
    """

    def __init__(self, doublets: HitDoublets, params: Optional[CAParameters] = None) -> None:
        self.doublets = doublets
        self.params = params if params is not None else CAParameters()
        self.cells: List[Cell] = []
        self.status: List[CellStatus] = []
        self._graph_built = False
        self.reset()

        # Candidate predecessors: cells sorted by outer hit, sliced per inner hit.
        outer = doublets.outer_hits
        inner = doublets.inner_hits
        self._by_outer = np.argsort(outer, kind="mergesort")
        sorted_outer = outer[self._by_outer]
        self._cand_lo = np.searchsorted(sorted_outer, inner, side="left")
        self._cand_hi = np.searchsorted(sorted_outer, inner, side="right")

    def __len__(self) -> int:
        return len(self.cells)

    def reset(self) -> None:
        """Recreate cells and statuses (empty graph, all levels 0)."""
        self.cells = [Cell(self.doublets, i, i) for i in range(len(self.doublets))]
        self.status = [CellStatus() for _ in range(len(self.doublets))]
        self._graph_built = False

    def inner_candidates(self, cell_index: int) -> np.ndarray:
        """Cells whose outer hit is the inner hit of ``cell_index``, ascending."""
        return self._by_outer[self._cand_lo[cell_index]:self._cand_hi[cell_index]]

    # ------------------------------------------------------------------
    # Growth
    def _push_range(self, cell_indices: Sequence[int]) -> List[List[int]]:
        buffer: List[List[int]] = []
        cuts = self.params.cuts()
        cells = self.cells
        for i in cell_indices:
            cells[i].check_alignment_and_push_triplet(cells, self.inner_candidates(i), buffer, **cuts)
        return buffer

    def _push_all(self, n_workers: int) -> List[List[List[int]]]:
        n = len(self.cells)
        if n_workers <= 1 or n == 0:
            return [self._push_range(range(n))]
        chunks = [c for c in np.array_split(np.arange(n), n_workers * 4) if c.size]
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            return list(ex.map(self._push_range, chunks))

    def create_graph(self, n_workers: int = 1) -> int:
        r"""
        Grow the neighbour graph over all cells.

        Parameters
        ----------
        n_workers : int, optional
            Thread count; ``1`` links in place with the tag entry point.

        Returns
        -------
        int
            Number of edges added.

        Raises
        ------
        RuntimeError
            If the graph was already grown since the last :meth:`reset`.
        """
        if self._graph_built:
            raise RuntimeError("Neighbour graph already built; call reset() first.")
        t0 = time.perf_counter()
        cells = self.cells
        n_edges = 0
        if n_workers <= 1:
            cuts = self.params.cuts()
            for cell in cells:
                cell.check_alignment_and_tag(cells, self.inner_candidates(cell.index), **cuts)
            n_edges = sum(len(c.outer_neighbors) for c in cells)
        else:
            for buffer in self._push_all(n_workers):
                for predecessor, me in buffer:
                    cells[predecessor].tag_as_outer_neighbor(me)
                n_edges += len(buffer)
        self._graph_built = True
        logger.info(
            "Grew neighbour graph: %d cells, %d edges in %.3fs",
            len(cells), n_edges, time.perf_counter() - t0,
        )
        return n_edges

    def find_triplets(self, n_workers: int = 1) -> List[List[int]]:
        r"""
        Compatible ``[predecessor, cell]`` pairs, without touching the graph.

        Each pair spans three hits. Order is by cell, then by candidate.
        """
        found: List[List[int]] = []
        for buffer in self._push_all(n_workers):
            found.extend(buffer)
        logger.info("Found %d triplets", len(found))
        return found

    # ------------------------------------------------------------------
    # Evolution
    def evolve_once(self) -> int:
        """One synchronous pass; returns the number of cells whose level changed."""
        status = self.status
        for cell in self.cells:
            cell.evolve(cell.index, status)
        changed = 0
        for st in status:
            before = st.ca_state
            st.update_state()
            if st.ca_state != before:
                changed += 1
        return changed

    def evolve(self, max_iterations: Optional[int] = None) -> int:
        r"""
        Run passes until no level changes or the iteration cap.

        Parameters
        ----------
        max_iterations : int, optional
            Overrides ``params.max_iterations``. Without a cap the loop stops
            at the first pass with no change, which always happens because
            levels saturate at :data:`~trackml_ca.cell.MAX_CA_STATE`.

        Returns
        -------
        int
            Number of passes that changed at least one level.
        """
        limit = max_iterations if max_iterations is not None else self.params.max_iterations
        if limit is None:
            limit = MAX_CA_STATE + 1
        passes = 0
        for it in range(int(limit)):
            changed = self.evolve_once()
            logger.debug("Evolution pass %d: %d cells advanced", it + 1, changed)
            if changed == 0:
                break
            passes += 1
        logger.info("Evolution finished after %d active passes (max level %d)", passes, self.max_level())
        return passes

    def levels(self) -> np.ndarray:
        return np.fromiter((s.ca_state for s in self.status), dtype=np.int64, count=len(self.status))

    def max_level(self) -> int:
        return max((s.ca_state for s in self.status), default=0)

    # ------------------------------------------------------------------
    # Extraction
    def root_cells(self, minimum_level: int) -> List[int]:
        return [i for i, s in enumerate(self.status) if s.is_root_cell(minimum_level)]

    def _chains_from_root(self, root: int, min_hits: int) -> List[List[int]]:
        found: List[List[int]] = []
        tmp = [root]
        cell = self.cells[root]
        if min_hits > RECURSION_SAFE_DEPTH:
            cell.find_ntuplets_iterative(self.cells, found, tmp, min_hits)
        else:
            cell.find_ntuplets(self.cells, found, tmp, min_hits)
        return found

    def find_ntuplets(
        self,
        min_hits: Optional[int] = None,
        minimum_level: Optional[int] = None,
        roots: Optional[Iterable[int]] = None,
        n_workers: int = 1,
    ) -> List[List[int]]:
        r"""
        Enumerate fixed-length chains from the root cells.

        Parameters
        ----------
        min_hits : int, optional
            Hits per chain (``min_hits - 1`` cells); defaults to
            ``params.min_hits_per_ntuplet``.
        minimum_level : int, optional
            Seeding level; defaults to ``params.minimum_level`` when set,
            else ``min_hits - 2``.
        roots : iterable of int, optional
            Explicit root cells; overrides level-based selection.
        n_workers : int, optional
            Thread count; roots are processed independently.

        Returns
        -------
        list of list of int
            Chains of cell indices, inner to outer, grouped by root in root order.

        Raises
        ------
        ValueError
            If ``min_hits < 2``.
        """
        min_hits = int(min_hits if min_hits is not None else self.params.min_hits_per_ntuplet)
        if min_hits < 2:
            raise ValueError("min_hits must be >= 2.")
        if roots is None:
            if minimum_level is None:
                minimum_level = (
                    self.params.minimum_level if self.params.minimum_level is not None
                    else max(min_hits - 2, 0)
                )
            roots = self.root_cells(minimum_level)
        roots = [int(r) for r in roots]

        if n_workers <= 1:
            per_root = [self._chains_from_root(r, min_hits) for r in roots]
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as ex:
                per_root = list(ex.map(lambda r: self._chains_from_root(r, min_hits), roots))

        found = [chain for chains in per_root for chain in chains]
        logger.info("Extracted %d chains of %d hits from %d roots", len(found), min_hits, len(roots))
        return found

    def run(self, n_workers: int = 1) -> List[List[int]]:
        """Full round: reset, grow, evolve, extract with ``params``."""
        self.reset()
        self.create_graph(n_workers=n_workers)
        self.evolve()
        return self.find_ntuplets(n_workers=n_workers)

    # ------------------------------------------------------------------
    # Inspection
    def ntuplet_hits(self, chain: Sequence[int]) -> List[int]:
        r"""
        Hit rows spanned by a chain: the first cell's inner hit, then every outer hit.

        A chain of :math:`k` cells yields :math:`k+1` hits.
        """
        if not chain:
            return []
        cells = self.cells
        return [cells[chain[0]].inner_hit_index] + [cells[c].outer_hit_index for c in chain]

    def n_edges(self) -> int:
        return sum(len(c.outer_neighbors) for c in self.cells)

    def statistics(self) -> Dict[str, object]:
        r"""
        Summary of the current round.

        Returns
        -------
        dict
            ``n_cells``, ``n_edges``, ``max_level``, ``level_counts``
            (level -> number of cells) and ``n_roots`` at ``params.root_level``.
        """
        levels = self.levels()
        values, counts = np.unique(levels, return_counts=True) if levels.size else ([], [])
        return {
            "n_cells": len(self.cells),
            "n_edges": self.n_edges(),
            "max_level": int(levels.max()) if levels.size else 0,
            "level_counts": {int(v): int(c) for v, c in zip(values, counts)},
            "n_roots": int(np.count_nonzero(levels >= self.params.root_level)),
        }

    def to_networkx(self) -> nx.DiGraph:
        r"""
        The neighbour graph as a :class:`networkx.DiGraph`.

        Nodes are cell indices with attributes ``ca_state``, ``doublet``,
        ``inner_hit`` and ``outer_hit``; edges point outwards.
        """
        g = nx.DiGraph()
        for cell, st in zip(self.cells, self.status):
            g.add_node(
                cell.index,
                ca_state=st.ca_state,
                doublet=cell.doublet_id,
                inner_hit=cell.inner_hit_index,
                outer_hit=cell.outer_hit_index,
            )
        g.add_edges_from((cell.index, oc) for cell in self.cells for oc in cell.outer_neighbors)
        return g
