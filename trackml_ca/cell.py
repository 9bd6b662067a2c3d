from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, MutableSequence, Optional, Sequence

import numpy as np
import pandas as pd

from trackml_ca.ca_kernels import aligned_rz, aligned_rz_batch, similar_curvature, similar_curvature_batch
from trackml_ca.hit_doublets import HitDoublets, Side

__all__ = ["MAX_CA_STATE", "VECTOR_SIZE", "CellStatus", "Cell", "LinkMode"]

# ca_state is an unsigned char
MAX_CA_STATE = 255

# candidates per gather/compute/scatter group in check_alignment_and_act
VECTOR_SIZE = 16


@dataclass(slots=True)
class CellStatus:
    r"""
    Mutable automaton state of one cell, kept apart from the cell itself.

    Attributes
    ----------
    ca_state : int
        Automaton level, starts at 0 and saturates at :data:`MAX_CA_STATE`.
    has_same_state_neighbors : int
        ``1`` if, in the last read phase, at least one outer neighbour had the
        same ``ca_state``; ``0`` otherwise.

    Notes
    -----
    One pass of the automaton is a read phase (:meth:`Cell.evolve` on every
    cell) followed by a write phase (:meth:`update_state` on every status).
    Interleaving the two would make levels depend on the iteration order.
    """
    ca_state: int = 0
    has_same_state_neighbors: int = 0

    def get_ca_state(self) -> int:
        return self.ca_state

    def update_state(self) -> None:
        """Write phase: advance the level by the flag of the last read phase."""
        self.ca_state = min(self.ca_state + self.has_same_state_neighbors, MAX_CA_STATE)

    def is_root_cell(self, minimum_ca_state: int) -> bool:
        return self.ca_state >= minimum_ca_state


class LinkMode(Enum):
    """What :meth:`Cell.check_alignment_and_act` does with a compatible candidate."""
    TAG = "tag"    # grow the neighbour graph
    PUSH = "push"  # emit a two-cell chain, graph untouched


class Cell:
    r"""
    Node of the cellular automaton: one hit doublet plus its outer neighbours.

    Cells live in a list and refer to each other by **position** in that list.
    ``outer_neighbors`` holds the positions of the cells whose inner hit is this
    cell's outer hit and that passed both compatibility tests; it only grows
    during a growth pass.

    Parameters
    ----------
    doublets : HitDoublets
        Doublet store providing the geometry.
    doublet_id : int
        Index of the wrapped doublet in ``doublets``.
    index : int
        Position of this cell in the cell list.

    Notes
    -----
    The inner radius and inner :math:`z` are cached on the cell; they are read
    for every candidate pairing during graph growth.
    """

    __slots__ = ("doublets", "doublet_id", "index", "outer_neighbors", "_inner_r", "_inner_z")

    def __init__(self, doublets: HitDoublets, doublet_id: int, index: int) -> None:
        self.doublets = doublets
        self.doublet_id = int(doublet_id)
        self.index = int(index)
        self.outer_neighbors: List[int] = []
        self._inner_r = doublets.rv(self.doublet_id, Side.INNER)
        self._inner_z = doublets.z(self.doublet_id, Side.INNER)

    def __repr__(self) -> str:
        return (
            f"Cell(index={self.index}, doublet_id={self.doublet_id}, "
            f"outer_neighbors={len(self.outer_neighbors)})"
        )

    # ------------------------------------------------------------------
    # Geometry
    @property
    def inner_hit(self) -> pd.Series:
        return self.doublets.hit(self.doublet_id, Side.INNER)

    @property
    def outer_hit(self) -> pd.Series:
        return self.doublets.hit(self.doublet_id, Side.OUTER)

    @property
    def inner_hit_index(self) -> int:
        return self.doublets.hit_index(self.doublet_id, Side.INNER)

    @property
    def outer_hit_index(self) -> int:
        return self.doublets.hit_index(self.doublet_id, Side.OUTER)

    @property
    def inner_x(self) -> float:
        return self.doublets.x(self.doublet_id, Side.INNER)

    @property
    def outer_x(self) -> float:
        return self.doublets.x(self.doublet_id, Side.OUTER)

    @property
    def inner_y(self) -> float:
        return self.doublets.y(self.doublet_id, Side.INNER)

    @property
    def outer_y(self) -> float:
        return self.doublets.y(self.doublet_id, Side.OUTER)

    @property
    def inner_z(self) -> float:
        return self._inner_z

    @property
    def outer_z(self) -> float:
        return self.doublets.z(self.doublet_id, Side.OUTER)

    @property
    def inner_r(self) -> float:
        return self._inner_r

    @property
    def outer_r(self) -> float:
        return self.doublets.rv(self.doublet_id, Side.OUTER)

    @property
    def inner_phi(self) -> float:
        return self.doublets.phi(self.doublet_id, Side.INNER)

    @property
    def outer_phi(self) -> float:
        return self.doublets.phi(self.doublet_id, Side.OUTER)

    # ------------------------------------------------------------------
    # Automaton
    def evolve(self, me: int, all_status: Sequence[CellStatus]) -> None:
        r"""
        Read phase for cell ``me``: flag it if an outer neighbour is at the same level.

        Only ``all_status[me].has_same_state_neighbors`` is written; levels are
        read as left by the previous write phase.
        """
        status = all_status[me]
        status.has_same_state_neighbors = 0
        my_state = status.ca_state
        for oc in self.outer_neighbors:
            if all_status[oc].ca_state == my_state:
                status.has_same_state_neighbors = 1
                break

    # ------------------------------------------------------------------
    # Compatibility
    def are_aligned_rz(self, r1: float, z1: float, ro: float, zo: float, ptmin: float, theta_cut: float) -> bool:
        r"""
        r-z alignment of ``(r1, z1)`` -> this inner point -> ``(ro, zo)``.

        See :func:`trackml_ca.ca_kernels.aligned_rz` for the inequality.
        """
        return bool(aligned_rz(
            float(r1), float(z1), self._inner_r, self._inner_z,
            float(ro), float(zo), float(ptmin), float(theta_cut),
        ))

    def have_similar_curvature(
        self,
        other: "Cell",
        ptmin: float,
        region_origin_x: float,
        region_origin_y: float,
        region_origin_radius: float,
        phi_cut: float,
        hard_pt_cut: float,
    ) -> bool:
        r"""
        x-y curvature compatibility of ``other`` (predecessor) with this cell.

        The triple is ``other``'s inner hit, this inner hit and this outer hit;
        see :func:`trackml_ca.ca_kernels.similar_curvature`.
        """
        return bool(similar_curvature(
            other.inner_x, other.inner_y,
            self.inner_x, self.inner_y,
            self.outer_x, self.outer_y,
            float(ptmin),
            float(region_origin_x), float(region_origin_y), float(region_origin_radius),
            float(phi_cut), float(hard_pt_cut),
        ))

    def tag_as_outer_neighbor(self, other_cell: int) -> None:
        self.outer_neighbors.append(int(other_cell))

    # ------------------------------------------------------------------
    # Graph growth
    def check_alignment_and_act(
        self,
        all_cells: Sequence["Cell"],
        inner_cells: Sequence[int],
        mode: LinkMode,
        *,
        ptmin: float,
        region_origin_x: float,
        region_origin_y: float,
        region_origin_radius: float,
        theta_cut: float,
        phi_cut: float,
        hard_pt_cut: float,
        found_triplets: Optional[MutableSequence[List[int]]] = None,
    ) -> None:
        r"""
        Test every candidate predecessor in ``inner_cells`` and act on the compatible ones.

        Candidates are handled in groups of :data:`VECTOR_SIZE`: their inner
        points are gathered into arrays, the r-z and the x-y tests are
        evaluated for the whole group, and only then does the loop branch on
        the combined outcome.

        Parameters
        ----------
        all_cells : sequence of Cell
            The full cell list; candidates are positions in it.
        inner_cells : sequence of int
            Candidate predecessors, i.e. cells whose outer hit is this cell's inner hit.
        mode : LinkMode
            ``TAG``: append ``self.index`` to the candidate's ``outer_neighbors``.
            ``PUSH``: append ``[candidate, self.index]`` to ``found_triplets``.
        ptmin, region_origin_x, region_origin_y, region_origin_radius, theta_cut, phi_cut, hard_pt_cut : float
            Cuts, see :mod:`trackml_ca.ca_kernels`.
        found_triplets : list, optional
            Sink for ``PUSH`` mode.

        Raises
        ------
        ValueError
            If ``mode`` is ``PUSH`` and no sink is given.
        """
        if mode is LinkMode.PUSH and found_triplets is None:
            raise ValueError("LinkMode.PUSH requires a found_triplets sink.")

        ncells = len(inner_cells)
        if ncells == 0:
            return

        ro = self.outer_r
        zo = self.outer_z
        x2, y2 = self.inner_x, self.inner_y
        x3, y3 = self.outer_x, self.outer_y
        ptmin = float(ptmin)
        theta_cut = float(theta_cut)
        beam = (
            float(region_origin_x), float(region_origin_y), float(region_origin_radius),
            float(phi_cut), float(hard_pt_cut),
        )
        cell_id = self.index

        for start in range(0, ncells, VECTOR_SIZE):
            group = [int(k) for k in inner_cells[start:start + VECTOR_SIZE]]
            n = len(group)
            r1 = np.fromiter((all_cells[k].inner_r for k in group), dtype=np.float64, count=n)
            z1 = np.fromiter((all_cells[k].inner_z for k in group), dtype=np.float64, count=n)
            x1 = np.fromiter((all_cells[k].inner_x for k in group), dtype=np.float64, count=n)
            y1 = np.fromiter((all_cells[k].inner_y for k in group), dtype=np.float64, count=n)

            ok = aligned_rz_batch(r1, z1, self._inner_r, self._inner_z, ro, zo, ptmin, theta_cut)
            ok &= similar_curvature_batch(x1, y1, x2, y2, x3, y3, ptmin, *beam)

            for j in np.flatnonzero(ok):
                koc = group[j]
                if mode is LinkMode.PUSH:
                    found_triplets.append([koc, cell_id])
                else:
                    all_cells[koc].tag_as_outer_neighbor(cell_id)

    def check_alignment_and_tag(
        self,
        all_cells: Sequence["Cell"],
        inner_cells: Sequence[int],
        *,
        ptmin: float,
        region_origin_x: float,
        region_origin_y: float,
        region_origin_radius: float,
        theta_cut: float,
        phi_cut: float,
        hard_pt_cut: float,
    ) -> None:
        """Graph growth: link every compatible predecessor to this cell."""
        self.check_alignment_and_act(
            all_cells, inner_cells, LinkMode.TAG,
            ptmin=ptmin, region_origin_x=region_origin_x, region_origin_y=region_origin_y,
            region_origin_radius=region_origin_radius, theta_cut=theta_cut, phi_cut=phi_cut,
            hard_pt_cut=hard_pt_cut,
        )

    def check_alignment_and_push_triplet(
        self,
        all_cells: Sequence["Cell"],
        inner_cells: Sequence[int],
        found_triplets: MutableSequence[List[int]],
        *,
        ptmin: float,
        region_origin_x: float,
        region_origin_y: float,
        region_origin_radius: float,
        theta_cut: float,
        phi_cut: float,
        hard_pt_cut: float,
    ) -> None:
        """Direct emission: store ``[predecessor, self.index]`` for every compatible predecessor."""
        self.check_alignment_and_act(
            all_cells, inner_cells, LinkMode.PUSH,
            ptmin=ptmin, region_origin_x=region_origin_x, region_origin_y=region_origin_y,
            region_origin_radius=region_origin_radius, theta_cut=theta_cut, phi_cut=phi_cut,
            hard_pt_cut=hard_pt_cut, found_triplets=found_triplets,
        )

    # ------------------------------------------------------------------
    # Chain extraction
    def find_ntuplets(
        self,
        all_cells: Sequence["Cell"],
        found_ntuplets: MutableSequence[List[int]],
        tmp_ntuplet: List[int],
        min_hits_per_ntuplet: int,
    ) -> None:
        r"""
        Depth-first enumeration of all outward walks of fixed length.

        ``tmp_ntuplet`` holds cell positions and already contains this cell.
        When it reaches ``min_hits_per_ntuplet - 1`` cells (that many cells
        span ``min_hits_per_ntuplet`` hits) a copy is stored and the branch
        ends. Otherwise each outer neighbour is pushed, visited and popped, so
        ``tmp_ntuplet`` is back to its input state on return. Walks that run
        out of neighbours early produce nothing.
        """
        if len(tmp_ntuplet) == min_hits_per_ntuplet - 1:
            found_ntuplets.append(list(tmp_ntuplet))
            return
        for oc in self.outer_neighbors:
            tmp_ntuplet.append(oc)
            all_cells[oc].find_ntuplets(all_cells, found_ntuplets, tmp_ntuplet, min_hits_per_ntuplet)
            tmp_ntuplet.pop()

    def find_ntuplets_iterative(
        self,
        all_cells: Sequence["Cell"],
        found_ntuplets: MutableSequence[List[int]],
        tmp_ntuplet: List[int],
        min_hits_per_ntuplet: int,
    ) -> None:
        """Same walks, same order as :meth:`find_ntuplets`, with an explicit stack."""
        target = min_hits_per_ntuplet - 1
        if len(tmp_ntuplet) == target:
            found_ntuplets.append(list(tmp_ntuplet))
            return

        # (cell, position of the next neighbour to visit)
        stack = [(self, 0)]
        while stack:
            cell, pos = stack[-1]
            if pos < len(cell.outer_neighbors):
                stack[-1] = (cell, pos + 1)
                oc = cell.outer_neighbors[pos]
                tmp_ntuplet.append(oc)
                if len(tmp_ntuplet) == target:
                    found_ntuplets.append(list(tmp_ntuplet))
                    tmp_ntuplet.pop()
                else:
                    stack.append((all_cells[oc], 0))
            else:
                stack.pop()
                if stack:
                    tmp_ntuplet.pop()
