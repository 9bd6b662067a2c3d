from __future__ import annotations

import logging
import warnings
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from trackml.dataset import load_dataset
from trackml.utils import add_momentum_quantities
from trackml.weights import weight_hits_phase1

# TrackML positions are in mm; the automaton works in cm
MM_TO_CM = 0.1


def _weight_hits_phase1_quiet(truth: pd.DataFrame, particles: pd.DataFrame) -> pd.DataFrame:
    r"""
    TrackML phase-1 hit weights with pandas Copy-on-Write switched off for the call.

    The upstream implementation relies on chained assignment; with CoW on it
    emits ``FutureWarning`` s and takes slow paths. The previous CoW setting is
    restored on exit.
    """
    prev = getattr(pd.options.mode, "copy_on_write", None)
    try:
        if prev is not None:
            pd.options.mode.copy_on_write = False
        with warnings.catch_warnings():
            warnings.filterwarnings(
                "ignore",
                message=r"A value is trying to be set on a copy.*",
                category=FutureWarning,
                module=r".*trackml\.weights",
            )
            return weight_hits_phase1(truth, particles)
    finally:
        if prev is not None:
            pd.options.mode.copy_on_write = prev


def load_event(
    event_zip: str,
    *,
    pt_threshold: float = 0.9,
    volumes: Optional[Iterable[int]] = None,
    prefer_weight_cols: Sequence[str] = ("weight", "weight_pt"),
) -> pd.DataFrame:
    r"""
    Load one TrackML event as a single hit table ready for doublet making.

    Pipeline
    --------
    1. Load ``hits``, ``truth`` and ``particles`` of the first event in
       ``event_zip``.
    2. Convert ``x, y, z`` from mm to cm (the curvature cut uses 87 cm/GeV).
    3. Attach ``particle_id`` and a per-hit ``weight`` (first available column
       of ``prefer_weight_cols``, else ``1.0``).
    4. Flag ``reconstructable`` hits: non-noise hits of particles with
       :math:`p_T \ge p_T^{\min}`.
    5. Optionally keep only the given detector volumes.

    Parameters
    ----------
    event_zip : str
        Path to a TrackML event archive readable by
        :func:`trackml.dataset.load_dataset`.
    pt_threshold : float, optional
        :math:`p_T^{\min}` (GeV) for the ``reconstructable`` flag.
    volumes : iterable of int, optional
        Volumes to keep (e.g. ``(8,)`` for the pixel barrel).
    prefer_weight_cols : sequence of str, optional
        Ordered preference of weight columns.

    Returns
    -------
    hits : pandas.DataFrame
        Columns ``hit_id, x, y, z, volume_id, layer_id, module_id,
        particle_id, weight, reconstructable``, positional index ``0..N-1``.
    """
    _, hits, truth, particles = next(
        load_dataset(event_zip, nevents=1, parts=["hits", "truth", "particles"])
    )

    hits = hits.astype({"x": "float64", "y": "float64", "z": "float64"}, copy=True)
    hits.loc[:, ["x", "y", "z"]] = hits[["x", "y", "z"]].to_numpy(dtype=np.float64) * MM_TO_CM

    particles = add_momentum_quantities(particles)

    pid = truth[["hit_id", "particle_id"]].drop_duplicates("hit_id").set_index("hit_id")["particle_id"]
    hits["particle_id"] = hits["hit_id"].map(pid).fillna(0).astype(np.int64)

    wdf = _weight_hits_phase1_quiet(truth, particles)
    weight_col = next((c for c in prefer_weight_cols if c in wdf.columns), None)
    if weight_col is None:
        hits["weight"] = 1.0
    else:
        wser = (
            wdf[["hit_id", weight_col]]
            .drop_duplicates("hit_id")
            .set_index("hit_id")[weight_col]
            .astype("float64", copy=False)
        )
        hits["weight"] = hits["hit_id"].map(wser).fillna(1.0).to_numpy()

    high_pt = set(particles.loc[particles["pt"] >= float(pt_threshold), "particle_id"].to_numpy().tolist())
    hits["reconstructable"] = hits["particle_id"].isin(high_pt) & (hits["particle_id"] != 0)

    if volumes is not None:
        hits = hits[hits["volume_id"].isin(list(volumes))]
    hits = hits.reset_index(drop=True)

    logging.info(
        "Loaded %d hits (%d reconstructable with pT>=%.2f, %d particles)",
        len(hits),
        int(hits["reconstructable"].sum()),
        pt_threshold,
        hits.loc[hits["reconstructable"], "particle_id"].nunique(),
    )
    return hits
