from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np


def chain_majority(chain_hits: Sequence[int], particle_ids: np.ndarray) -> Tuple[int, float]:
    r"""
    Majority particle of one chain and its hit fraction.

    For hit rows :math:`h_1,\dots,h_n` with particle labels :math:`p(h_i)`,

    .. math::

        p^\star = \arg\max_p \#\{i : p(h_i) = p\},\qquad
        \text{purity} = \frac{\#\{i : p(h_i) = p^\star\}}{n}.

    Noise hits (label ``0``) never form a majority; a chain made only of noise
    has ``(0, 0.0)``.

    Parameters
    ----------
    chain_hits : sequence of int
        Hit row positions of the chain.
    particle_ids : ndarray, shape (N_hits,)
        Particle label per hit row.

    Returns
    -------
    (particle_id, purity) : (int, float)
    """
    if len(chain_hits) == 0:
        return 0, 0.0
    labels = np.asarray(particle_ids)[np.asarray(chain_hits, dtype=np.int64)]
    labels = labels[labels != 0]
    if labels.size == 0:
        return 0, 0.0
    values, counts = np.unique(labels, return_counts=True)
    k = int(np.argmax(counts))
    return int(values[k]), float(counts[k]) / float(len(chain_hits))


def chain_purity(chains_hits: Iterable[Sequence[int]], particle_ids: np.ndarray) -> np.ndarray:
    """Purity of every chain, shape ``(n_chains,)``."""
    return np.asarray([chain_majority(h, particle_ids)[1] for h in chains_hits], dtype=np.float64)


def summarize_chains(
    chains_hits: Sequence[Sequence[int]],
    particle_ids: np.ndarray,
    reconstructable: Optional[np.ndarray] = None,
) -> Dict[str, float]:
    r"""
    Truth-level summary of a set of chains.

    Parameters
    ----------
    chains_hits : sequence of sequence of int
        Hit rows per chain (see
        :meth:`trackml_ca.cellular_automaton.CellularAutomaton.ntuplet_hits`).
    particle_ids : ndarray, shape (N_hits,)
        Particle label per hit row (``0`` = noise).
    reconstructable : ndarray of bool, shape (N_hits,), optional
        Hits of particles that should be found. When given, efficiency is the
        fraction of those particles matched by at least one pure chain.

    Returns
    -------
    dict
        ``n_chains``, ``mean_purity``, ``pure_fraction`` (chains whose hits all
        come from one particle), ``n_particles_found`` (distinct particles with
        a pure chain) and, with ``reconstructable``, ``efficiency``.
    """
    particle_ids = np.asarray(particle_ids)
    majority = [chain_majority(h, particle_ids) for h in chains_hits]
    purities = np.asarray([p for _, p in majority], dtype=np.float64)
    found = {pid for pid, p in majority if pid != 0 and p >= 1.0}

    out: Dict[str, float] = {
        "n_chains": float(len(majority)),
        "mean_purity": float(purities.mean()) if purities.size else 0.0,
        "pure_fraction": float(np.mean(purities >= 1.0)) if purities.size else 0.0,
        "n_particles_found": float(len(found)),
    }
    if reconstructable is not None:
        mask = np.asarray(reconstructable, dtype=bool)
        targets = set(np.unique(particle_ids[mask & (particle_ids != 0)]).tolist())
        out["efficiency"] = (len(found & targets) / len(targets)) if targets else 0.0
    return out
