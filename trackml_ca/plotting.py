from __future__ import annotations

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib import colormaps
from matplotlib.collections import LineCollection

from trackml_ca.hit_doublets import HitDoublets, Side


def _show_and_close(fig, *, do_show: bool = True) -> None:
    r"""
    Show a figure (optionally) and always close it.

    Safe in headless mode where ``plt.show()`` may be patched to a no-op.
    """
    fig.tight_layout()
    if do_show:
        plt.show()
    plt.close(fig)


def plot_doublets_rz(doublets: HitDoublets, *, max_doublets: Optional[int] = None, show: bool = True) -> None:
    r"""
    Draw doublets as segments in :math:`(z, r)`.

    Parameters
    ----------
    doublets : HitDoublets
        Doublets to draw.
    max_doublets : int, optional
        Draw at most this many (in store order).
    show : bool, optional
        Call ``plt.show()`` before closing.
    """
    n = len(doublets) if max_doublets is None else min(len(doublets), int(max_doublets))
    if n == 0:
        return
    inner = doublets.positions(Side.INNER)[:n]
    outer = doublets.positions(Side.OUTER)[:n]
    r_in = np.hypot(inner[:, 0], inner[:, 1])
    r_out = np.hypot(outer[:, 0], outer[:, 1])
    segments = np.stack(
        (np.column_stack((inner[:, 2], r_in)), np.column_stack((outer[:, 2], r_out))),
        axis=1,
    )

    fig, ax = plt.subplots(figsize=(12, 6))
    ax.add_collection(LineCollection(segments, linewidths=0.4, alpha=0.4, colors="tab:blue"))
    ax.scatter(segments[:, :, 0].ravel(), segments[:, :, 1].ravel(), s=2, c="k")
    ax.autoscale()
    ax.set_xlabel("z (cm)")
    ax.set_ylabel("r (cm)")
    ax.set_title(f"{n} doublets (z vs r)")
    ax.grid(True, alpha=0.3)
    _show_and_close(fig, do_show=show)


def plot_chains_xy(
    hits_xyz: np.ndarray,
    chains_hits: Sequence[Sequence[int]],
    *,
    max_chains: Optional[int] = None,
    show: bool = True,
) -> None:
    r"""
    Draw extracted chains as polylines in the transverse plane.

    Parameters
    ----------
    hits_xyz : ndarray, shape (N_hits, 3)
        Hit positions (cm), indexed by hit row.
    chains_hits : sequence of sequence of int
        Hit rows per chain.
    max_chains : int, optional
        Draw at most this many chains.
    show : bool, optional
        Call ``plt.show()`` before closing.
    """
    chains = list(chains_hits)[: max_chains] if max_chains is not None else list(chains_hits)
    if not chains:
        return
    xyz = np.asarray(hits_xyz, dtype=np.float64)
    cmap = colormaps["tab20"]

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.scatter(xyz[:, 0], xyz[:, 1], s=1, c="0.7")
    for k, rows in enumerate(chains):
        pts = xyz[np.asarray(rows, dtype=np.int64)]
        ax.plot(pts[:, 0], pts[:, 1], "-o", ms=2, lw=0.8, color=cmap(k % cmap.N))
    ax.set_aspect("equal")
    ax.set_xlabel("x (cm)")
    ax.set_ylabel("y (cm)")
    ax.set_title(f"{len(chains)} chains (x vs y)")
    ax.grid(True, alpha=0.3)
    _show_and_close(fig, do_show=show)


def plot_level_histogram(levels: np.ndarray, *, show: bool = True) -> None:
    """Bar chart of the number of cells per automaton level."""
    levels = np.asarray(levels, dtype=np.int64)
    if levels.size == 0:
        return
    counts = np.bincount(levels)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.bar(np.arange(counts.size), counts, color="tab:green", alpha=0.8)
    ax.set_yscale("log")
    ax.set_xlabel("CA level")
    ax.set_ylabel("cells")
    ax.set_title("Cells per automaton level")
    ax.grid(True, axis="y", alpha=0.3)
    _show_and_close(fig, do_show=show)
