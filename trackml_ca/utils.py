from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd


def chains_to_frame(
    chains: Sequence[Sequence[int]],
    chains_hits: Sequence[Sequence[int]],
    hits: pd.DataFrame,
) -> pd.DataFrame:
    r"""
    Long-format table of chains, one row per hit.

    Parameters
    ----------
    chains : sequence of sequence of int
        Cell indices per chain.
    chains_hits : sequence of sequence of int
        Hit rows per chain, aligned with ``chains`` (one more entry than cells).
    hits : pandas.DataFrame
        Hit table the rows refer to; ``hit_id`` is carried over when present.

    Returns
    -------
    pandas.DataFrame
        Columns ``chain_id, position, hit_row, cell`` (``-1`` for the first
        hit, which only belongs to the first cell as its inner hit) and
        ``hit_id`` when available.

    Raises
    ------
    ValueError
        If ``chains`` and ``chains_hits`` are not aligned.
    """
    if len(chains) != len(chains_hits):
        raise ValueError("chains and chains_hits must have the same length.")

    chain_id, position, hit_row, cell = [], [], [], []
    for k, (cells, rows) in enumerate(zip(chains, chains_hits)):
        if len(rows) != len(cells) + 1:
            raise ValueError(f"Chain {k}: expected {len(cells) + 1} hits, got {len(rows)}.")
        for j, row in enumerate(rows):
            chain_id.append(k)
            position.append(j)
            hit_row.append(int(row))
            cell.append(int(cells[j - 1]) if j > 0 else -1)

    df = pd.DataFrame(
        {
            "chain_id": np.asarray(chain_id, dtype=np.int64),
            "position": np.asarray(position, dtype=np.int64),
            "hit_row": np.asarray(hit_row, dtype=np.int64),
            "cell": np.asarray(cell, dtype=np.int64),
        }
    )
    if "hit_id" in hits.columns:
        ids = hits["hit_id"].to_numpy(dtype=np.int64, copy=False)
        df["hit_id"] = ids[df["hit_row"].to_numpy()] if len(df) else np.empty(0, dtype=np.int64)
    return df


def make_submission(
    hits: pd.DataFrame,
    chains_hits: Sequence[Sequence[int]],
    *,
    renumber: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    r"""
    TrackML-style submission ``hit_id -> track_id`` from extracted chains.

    Chains claim hits greedily in order: a hit keeps the track of the first
    chain that contains it. Unclaimed hits get track ``0``. With
    ``renumber=True`` the used track labels are replaced by a random
    permutation of :math:`1..K`.

    Raises
    ------
    KeyError
        If ``hits`` has no ``hit_id`` column.
    """
    if "hit_id" not in hits.columns:
        raise KeyError("hits DataFrame must contain 'hit_id' column.")

    hit_ids = hits["hit_id"].to_numpy(dtype=np.int64, copy=False)
    track_ids = np.zeros(hit_ids.size, dtype=np.int64)
    for k, rows in enumerate(chains_hits, start=1):
        rows = np.asarray(rows, dtype=np.int64)
        free = rows[track_ids[rows] == 0]
        track_ids[free] = k

    if renumber:
        rng = np.random.default_rng() if rng is None else rng
        used = track_ids > 0
        unique_ids, inverse = np.unique(track_ids[used], return_inverse=True)
        perm = np.arange(1, unique_ids.size + 1, dtype=np.int64)
        rng.shuffle(perm)
        track_ids[used] = perm[inverse]

    return pd.DataFrame({"hit_id": hit_ids, "track_id": track_ids})
