from __future__ import annotations

import logging
from enum import IntEnum
from itertools import chain
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)

LayerKey = Tuple[int, int]
LayerPair = Tuple[LayerKey, LayerKey]


class Side(IntEnum):
    """Which end of a doublet a query refers to."""
    INNER = 0
    OUTER = 1


class HitDoublets:
    r"""
    Read-only store of hit doublets with cached per-hit geometry.

    A doublet is a pair of hits on adjacent layers, identified by its position
    ``i`` in the store. The store keeps the original hit table untouched and
    materializes contiguous ``float64`` arrays once:

    .. math::

        r = \sqrt{x^2 + y^2},\qquad \phi = \operatorname{atan2}(y, x).

    Every accessor takes a doublet index and a :class:`Side` and returns a
    Python ``float``; nothing is recomputed on the query path.

    Parameters
    ----------
    hits : pandas.DataFrame
        Hit table with at least columns ``x, y, z`` (cm).
    inner_idx, outer_idx : array_like of int, shape (N,)
        Row positions (``iloc``) in ``hits`` of the inner and outer hit of each
        doublet.

    Raises
    ------
    KeyError
        If a coordinate column is missing.
    ValueError
        If the index arrays differ in length, are not 1-D, or point outside
        ``hits``.
    """

    __slots__ = ("hits", "_idx", "_x", "_y", "_z", "_r", "_phi")

    _FIELDS = {"x": "_x", "y": "_y", "z": "_z", "r": "_r", "phi": "_phi"}

    def __init__(self, hits: pd.DataFrame, inner_idx: Sequence[int], outer_idx: Sequence[int]) -> None:
        try:
            x = hits["x"].to_numpy(dtype=np.float64, copy=False)
            y = hits["y"].to_numpy(dtype=np.float64, copy=False)
            z = hits["z"].to_numpy(dtype=np.float64, copy=False)
        except KeyError as e:
            raise KeyError(f"Missing required column: {e.args[0]}") from e

        inner = np.asarray(inner_idx, dtype=np.int64)
        outer = np.asarray(outer_idx, dtype=np.int64)
        if inner.ndim != 1 or outer.ndim != 1 or inner.shape != outer.shape:
            raise ValueError("inner_idx and outer_idx must be 1D arrays of the same length.")
        n_hits = len(hits)
        if inner.size and (
            inner.min() < 0 or outer.min() < 0 or inner.max() >= n_hits or outer.max() >= n_hits
        ):
            raise ValueError(f"Doublet hit indices must lie in [0, {n_hits}).")

        self.hits = hits
        self._idx = np.ascontiguousarray(np.vstack((inner, outer)))
        self._x = np.ascontiguousarray(x)
        self._y = np.ascontiguousarray(y)
        self._z = np.ascontiguousarray(z)
        self._r = np.hypot(self._x, self._y)
        self._phi = np.arctan2(self._y, self._x)

    def __len__(self) -> int:
        return int(self._idx.shape[1])

    def __repr__(self) -> str:
        return f"HitDoublets(n_doublets={len(self)}, n_hits={len(self.hits)})"

    @property
    def inner_hits(self) -> np.ndarray:
        """Row positions of the inner hits, shape ``(N,)``."""
        return self._idx[Side.INNER]

    @property
    def outer_hits(self) -> np.ndarray:
        """Row positions of the outer hits, shape ``(N,)``."""
        return self._idx[Side.OUTER]

    def hit_index(self, i: int, side: Side) -> int:
        return int(self._idx[side, i])

    def hit(self, i: int, side: Side) -> pd.Series:
        """The raw hit row behind one end of doublet ``i``."""
        return self.hits.iloc[self.hit_index(i, side)]

    def x(self, i: int, side: Side) -> float:
        return float(self._x[self._idx[side, i]])

    def y(self, i: int, side: Side) -> float:
        return float(self._y[self._idx[side, i]])

    def z(self, i: int, side: Side) -> float:
        return float(self._z[self._idx[side, i]])

    def rv(self, i: int, side: Side) -> float:
        return float(self._r[self._idx[side, i]])

    def phi(self, i: int, side: Side) -> float:
        return float(self._phi[self._idx[side, i]])

    def coord(self, i: int, side: Side, field: str) -> float:
        r"""
        Generic accessor for one of ``{"x", "y", "z", "r", "phi"}``.

        Raises
        ------
        KeyError
            If ``field`` is not one of the cached quantities.
        """
        try:
            arr = getattr(self, self._FIELDS[field])
        except KeyError as e:
            raise KeyError(f"Unknown doublet field {field!r}; expected one of {sorted(self._FIELDS)}") from e
        return float(arr[self._idx[side, i]])

    def inner_coord(self, i: int, field: str) -> float:
        return self.coord(i, Side.INNER, field)

    def outer_coord(self, i: int, field: str) -> float:
        return self.coord(i, Side.OUTER, field)

    def positions(self, side: Side) -> np.ndarray:
        """``(N, 3)`` array of ``(x, y, z)`` for one end of every doublet."""
        rows = self._idx[side]
        return np.column_stack((self._x[rows], self._y[rows], self._z[rows]))


def layer_keys(hits: pd.DataFrame) -> List[LayerKey]:
    r"""
    Sorted unique ``(volume_id, layer_id)`` keys present in ``hits``.

    Raises
    ------
    KeyError
        If ``volume_id`` or ``layer_id`` is missing.
    """
    try:
        vol = hits["volume_id"].to_numpy(dtype=np.int64, copy=False)
        lay = hits["layer_id"].to_numpy(dtype=np.int64, copy=False)
    except KeyError as e:
        raise KeyError(f"Missing required column: {e.args[0]}") from e
    if vol.size == 0:
        return []
    pairs = np.unique(np.column_stack((vol, lay)), axis=0)
    return [(int(v), int(l)) for v, l in pairs]


def consecutive_layer_pairs(
    hits: pd.DataFrame,
    volumes: Optional[Iterable[int]] = None,
) -> List[LayerPair]:
    r"""
    Pair each layer with the next one outwards inside its volume.

    Layers of a volume are ordered by their mean transverse radius
    :math:`\bar r = \frac1N\sum_j \sqrt{x_j^2+y_j^2}`, which makes the pairing
    independent of the numbering convention of ``layer_id``.

    Parameters
    ----------
    hits : pandas.DataFrame
        Hit table with ``x, y, volume_id, layer_id``.
    volumes : iterable of int, optional
        Restrict to these volumes (e.g. ``(8,)`` for the TrackML pixel barrel).

    Returns
    -------
    list of ((vol, layer), (vol, layer))
        ``(inner_key, outer_key)`` pairs, ordered by volume then radius.
    """
    df = hits[["x", "y", "volume_id", "layer_id"]]
    if volumes is not None:
        df = df[df["volume_id"].isin(list(volumes))]
    if df.empty:
        return []

    r = np.hypot(df["x"].to_numpy(dtype=np.float64), df["y"].to_numpy(dtype=np.float64))
    mean_r = (
        pd.Series(r, index=df.index)
        .groupby([df["volume_id"], df["layer_id"]], sort=True)
        .mean()
    )

    pairs: List[LayerPair] = []
    for vol, per_layer in mean_r.groupby(level=0, sort=True):
        ordered = per_layer.sort_values(kind="mergesort")
        keys = [(int(v), int(l)) for v, l in ordered.index]
        pairs.extend(zip(keys[:-1], keys[1:]))
    return pairs


def _window_pairs(
    phi_a: np.ndarray,
    z_a: np.ndarray,
    phi_b: np.ndarray,
    z_b: np.ndarray,
    max_dphi: float,
    max_dz: float,
) -> Tuple[np.ndarray, np.ndarray]:
    r"""
    All ``(a, b)`` with :math:`|\Delta\phi| \le \Delta\phi_{\max}` (mod :math:`2\pi`)
    and :math:`|\Delta z| \le \Delta z_{\max}`.

    The outer points are tiled at :math:`\phi \pm 2\pi` and indexed by a
    :class:`scipy.spatial.cKDTree` in the scaled plane
    :math:`(\phi/\Delta\phi_{\max},\ z/\Delta z_{\max})`; a Chebyshev ball
    of radius one is then exactly the rectangular window.
    """
    n_b = phi_b.size
    tiled_phi = np.concatenate((phi_b, phi_b + 2.0 * np.pi, phi_b - 2.0 * np.pi))
    tiled_z = np.tile(z_b, 3)
    owner = np.tile(np.arange(n_b, dtype=np.int64), 3)

    pts = np.column_stack((tiled_phi / max_dphi, tiled_z / max_dz))
    tree = cKDTree(pts, balanced_tree=True, compact_nodes=True)
    query = np.column_stack((phi_a / max_dphi, z_a / max_dz))
    found = tree.query_ball_point(query, r=1.0, p=np.inf, return_sorted=True)

    counts = np.fromiter((len(f) for f in found), dtype=np.int64, count=len(found))
    total = int(counts.sum())
    if total == 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)
    ia = np.repeat(np.arange(phi_a.size, dtype=np.int64), counts)
    ib = owner[np.fromiter(chain.from_iterable(found), dtype=np.int64, count=total)]
    return ia, ib


def make_doublets(
    hits: pd.DataFrame,
    layer_pairs: Sequence[LayerPair],
    *,
    max_dphi: float,
    max_dz: float,
    max_z0: Optional[float] = None,
) -> HitDoublets:
    r"""
    Form doublets between the given layer pairs with simple window cuts.

    For an inner hit :math:`a` and outer hit :math:`b` the doublet is kept if

    .. math::

        |\phi_b - \phi_a|_{2\pi} \le \Delta\phi_{\max},\qquad
        |z_b - z_a| \le \Delta z_{\max},

    and, when ``max_z0`` is given, if the straight line through both hits
    reaches the beam axis at

    .. math::

        z_0 = z_a - r_a \frac{z_b - z_a}{r_b - r_a},\qquad |z_0| \le z_{0,\max},

    with :math:`r_b > r_a`.

    Parameters
    ----------
    hits : pandas.DataFrame
        Hit table with ``x, y, z, volume_id, layer_id`` (cm).
    layer_pairs : sequence of ((vol, layer), (vol, layer))
        Inner/outer layer keys, e.g. from :func:`consecutive_layer_pairs`.
    max_dphi : float
        Azimuthal window (rad), ``0 < max_dphi < pi``.
    max_dz : float
        Longitudinal window (cm), ``> 0``.
    max_z0 : float, optional
        Longitudinal beam-line compatibility window (cm).

    Returns
    -------
    HitDoublets
        Doublets ordered by layer pair, then inner hit row, then outer hit row.

    Raises
    ------
    ValueError
        On non-positive windows or ``max_dphi >= pi``.
    KeyError
        If a required column is missing.
    """
    if not (0.0 < max_dphi < np.pi):
        raise ValueError("max_dphi must be in (0, pi).")
    if max_dz <= 0.0:
        raise ValueError("max_dz must be > 0.")
    if max_z0 is not None and max_z0 < 0.0:
        raise ValueError("max_z0 must be >= 0.")

    try:
        x = hits["x"].to_numpy(dtype=np.float64, copy=False)
        y = hits["y"].to_numpy(dtype=np.float64, copy=False)
        z = hits["z"].to_numpy(dtype=np.float64, copy=False)
        vol = hits["volume_id"].to_numpy(dtype=np.int64, copy=False)
        lay = hits["layer_id"].to_numpy(dtype=np.int64, copy=False)
    except KeyError as e:
        raise KeyError(f"Missing required column: {e.args[0]}") from e

    r = np.hypot(x, y)
    phi = np.arctan2(y, x)

    # Row positions per layer, computed once
    rows_by_layer: Dict[LayerKey, np.ndarray] = {}
    for key in {k for pair in layer_pairs for k in pair}:
        rows_by_layer[key] = np.flatnonzero((vol == key[0]) & (lay == key[1]))

    inner_parts: List[np.ndarray] = []
    outer_parts: List[np.ndarray] = []
    for inner_key, outer_key in layer_pairs:
        a = rows_by_layer[inner_key]
        b = rows_by_layer[outer_key]
        if a.size == 0 or b.size == 0:
            logger.debug("Layer pair %s -> %s has an empty side; skipped.", inner_key, outer_key)
            continue

        ia, ib = _window_pairs(phi[a], z[a], phi[b], z[b], max_dphi, max_dz)
        ia, ib = a[ia], b[ib]

        if max_z0 is not None and ia.size:
            dr = r[ib] - r[ia]
            with np.errstate(divide="ignore", invalid="ignore"):
                z0 = z[ia] - r[ia] * (z[ib] - z[ia]) / dr
            keep = (dr > 0.0) & (np.abs(z0) <= max_z0)
            ia, ib = ia[keep], ib[keep]

        order = np.lexsort((ib, ia))
        inner_parts.append(ia[order])
        outer_parts.append(ib[order])
        logger.debug("Layer pair %s -> %s: %d doublets", inner_key, outer_key, ia.size)

    if inner_parts:
        inner = np.concatenate(inner_parts)
        outer = np.concatenate(outer_parts)
    else:
        inner = np.empty(0, dtype=np.int64)
        outer = np.empty(0, dtype=np.int64)

    logger.info("Built %d doublets over %d layer pairs", inner.size, len(layer_pairs))
    return HitDoublets(hits, inner, outer)
