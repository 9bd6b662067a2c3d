#!/usr/bin/env python3
r"""
Cellular-automaton seeding runner for TrackML events (headless-safe).

This script loads a TrackML event, forms doublets between consecutive layers,
runs one cellular-automaton round (graph growth, evolution, chain extraction)
and reports chain statistics against truth, optionally with the official
TrackML score of a greedy submission built from the chains.

Units
-----
Positions are converted to cm on load; the x-y curvature cut converts a hard
:math:`p_T` cut to a radius with :math:`R = 87\,\text{cm/GeV} \cdot p_T`.

CLI overview
------------
See :func:`build_parser`. Typical usage:

.. code-block:: bash

   trackml-ca -f train_1.zip --config config.json --min-hits 4
   trackml-ca -f train_1.zip --triplets --workers 4 -v
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from trackml.score import score_event

import trackml_ca.data as ca_data
import trackml_ca.metrics as ca_metrics
from trackml_ca.cellular_automaton import CellularAutomaton
from trackml_ca.config import CAParameters, DoubletCuts, load_config, parameters_from_config
from trackml_ca.hit_doublets import consecutive_layer_pairs, make_doublets
from trackml_ca.utils import chains_to_frame, make_submission


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Notes
    -----
    Values given on the command line override the ``"ca_config"`` block of the
    JSON config; anything left unset falls back to the config, then to the
    :class:`~trackml_ca.config.CAParameters` defaults.
    """
    p = argparse.ArgumentParser(description="Run cellular-automaton seeding on a TrackML event.")
    p.add_argument("-f", "--file", type=str, default="train_1.zip",
                   help="Input TrackML .zip event (default: train_1.zip).")
    p.add_argument("--config", type=str, default="config.json",
                   help="Path to JSON config with 'ca_config' and 'doublet_config' blocks.")
    p.add_argument("-p", "--pt", type=float, default=0.9,
                   help="pT threshold in GeV for reconstructable particles (default: 0.9).")
    p.add_argument("--min-hits", type=int, default=None,
                   help="Hits per extracted chain (overrides config).")
    p.add_argument("--minimum-level", type=int, default=None,
                   help="CA level required for a root cell (overrides config).")
    p.add_argument("--ptmin", type=float, default=None, help="ptmin cut in GeV (overrides config).")
    p.add_argument("--theta-cut", type=float, default=None, help="r-z tolerance (overrides config).")
    p.add_argument("--phi-cut", type=float, default=None, help="x-y tolerance in cm (overrides config).")
    p.add_argument("--hard-pt-cut", type=float, default=None, help="Hard pT cut in GeV (overrides config).")
    p.add_argument("--max-iterations", type=int, default=None,
                   help="Cap on evolution passes (overrides config).")
    p.add_argument("--workers", type=int, default=1,
                   help="Threads for graph growth and extraction (default: 1).")
    p.add_argument("--triplets", action="store_true", default=False,
                   help="Only emit compatible doublet pairs (3-hit chains); skip the automaton.")
    p.add_argument("--score", action="store_true", default=False,
                   help="Compute the TrackML score of a greedy submission built from the chains.")
    p.add_argument("--out", type=str, default=None,
                   help="If set, write the chains (one row per hit) to this CSV.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show doublet/chain/level plots (default: False).")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Force the non-interactive ``Agg`` backend when plotting is disabled.

    Must run before :mod:`trackml_ca.plotting` is imported.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)


def resolve_parameters(args: argparse.Namespace) -> tuple[CAParameters, DoubletCuts]:
    """Config file (when present) + CLI overrides."""
    cfg_path = Path(args.config)
    if cfg_path.is_file():
        logging.info("Reading config from %s", cfg_path)
        params, cuts = parameters_from_config(load_config(cfg_path))
    else:
        logging.warning("Config %s not found; using defaults.", cfg_path)
        params, cuts = CAParameters(), DoubletCuts()
    params = params.with_overrides(
        ptmin=args.ptmin,
        theta_cut=args.theta_cut,
        phi_cut=args.phi_cut,
        hard_pt_cut=args.hard_pt_cut,
        min_hits_per_ntuplet=args.min_hits,
        minimum_level=args.minimum_level,
        max_iterations=args.max_iterations,
    )
    return params, cuts


def main(argv: Optional[Sequence[str]] = None) -> None:
    r"""
    End-to-end pipeline: **load -> doublets -> grow -> evolve -> extract -> evaluate**.

    1. Parse CLI and set up logging.
    2. Resolve :class:`CAParameters` / :class:`DoubletCuts` from config and flags.
    3. Load the event (:func:`trackml_ca.data.load_event`) in cm.
    4. Build consecutive-layer doublets (:func:`make_doublets`).
    5. Either emit triplets only (``--triplets``) or run the full round.
    6. Log truth-level chain statistics, optionally score and write CSV.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    apply_plotting_guard(args.plot)

    params, cuts = resolve_parameters(args)
    logging.info("CA parameters: %s", params)
    logging.info("Doublet cuts: %s", cuts)

    t0 = time.perf_counter()
    hits = ca_data.load_event(args.file, pt_threshold=args.pt, volumes=cuts.volumes)
    t_load = time.perf_counter()

    layer_pairs = consecutive_layer_pairs(hits, volumes=cuts.volumes)
    logging.info("Layer pairs: %s", layer_pairs)
    doublets = make_doublets(
        hits, layer_pairs, max_dphi=cuts.max_dphi, max_dz=cuts.max_dz, max_z0=cuts.max_z0,
    )
    t_doublets = time.perf_counter()

    ca = CellularAutomaton(doublets, params)
    if args.triplets:
        chains = ca.find_triplets(n_workers=args.workers)
    else:
        ca.create_graph(n_workers=args.workers)
        ca.evolve()
        chains = ca.find_ntuplets(n_workers=args.workers)
    t_ca = time.perf_counter()

    stats = ca.statistics()
    logging.info("Automaton statistics:")
    for k, v in stats.items():
        logging.info("  %s: %s", k, v)

    chains_hits = [ca.ntuplet_hits(c) for c in chains]
    particle_ids = hits["particle_id"].to_numpy(dtype=np.int64)
    summary = ca_metrics.summarize_chains(
        chains_hits, particle_ids, hits["reconstructable"].to_numpy(dtype=bool),
    )
    logging.info(
        "Chains: %d | mean purity %.3f | pure %.1f%% | particles found %d | efficiency %.1f%%",
        int(summary["n_chains"]), summary["mean_purity"], 100.0 * summary["pure_fraction"],
        int(summary["n_particles_found"]), 100.0 * summary.get("efficiency", 0.0),
    )

    if args.score:
        submission = make_submission(hits, chains_hits)
        score = score_event(hits[["hit_id", "particle_id", "weight"]], submission)
        logging.info("TrackML score: %.6f", score)

    if args.out:
        chains_to_frame(chains, chains_hits, hits).to_csv(args.out, index=False)
        logging.info("Wrote %d chains to %s", len(chains), args.out)

    logging.info(
        "Timing: load %.2fs | doublets %.2fs | automaton %.2fs",
        t_load - t0, t_doublets - t_load, t_ca - t_doublets,
    )

    if args.plot:
        import trackml_ca.plotting as ca_plot  # noqa: WPS433
        ca_plot.plot_doublets_rz(doublets, max_doublets=5000)
        ca_plot.plot_level_histogram(ca.levels())
        ca_plot.plot_chains_xy(hits[["x", "y", "z"]].to_numpy(), chains_hits, max_chains=200)


if __name__ == "__main__":
    main()
