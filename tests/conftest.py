import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root on path when tests are run from an installed wheel.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trackml_ca.hit_doublets import HitDoublets

LAYER_RADII = (4.0, 8.0, 12.0, 16.0)
LAYER_IDS = (2, 4, 6, 8)


def straight_track_hits(phi: float, cot_theta: float, particle_id: int) -> pd.DataFrame:
    """One hit per barrel layer on a straight line through the origin."""
    r = np.asarray(LAYER_RADII)
    return pd.DataFrame(
        {
            "x": r * np.cos(phi),
            "y": r * np.sin(phi),
            "z": r * cot_theta,
            "volume_id": 8,
            "layer_id": LAYER_IDS,
            "particle_id": particle_id,
        }
    )


def build_event(tracks) -> pd.DataFrame:
    frames = [straight_track_hits(phi, cot, pid) for phi, cot, pid in tracks]
    hits = pd.concat(frames, ignore_index=True)
    hits.insert(0, "hit_id", np.arange(1, len(hits) + 1, dtype=np.int64))
    return hits


@pytest.fixture
def line_doublets() -> HitDoublets:
    """Three doublets chaining four collinear hits, inner to outer."""
    hits = build_event([(0.3, 0.5, 7)])
    return HitDoublets(hits, [0, 1, 2], [1, 2, 3])


@pytest.fixture
def five_track_event() -> pd.DataFrame:
    return build_event(
        [
            (-2.5, -0.8, 11),
            (-1.2, 0.1, 12),
            (0.0, 0.6, 13),
            (1.1, -0.3, 14),
            (2.4, 0.9, 15),
        ]
    )


@pytest.fixture
def scratch_doublets() -> HitDoublets:
    """Ten arbitrary doublets over twenty hits, for graph-only tests."""
    rng = np.random.default_rng(3)
    hits = pd.DataFrame(
        {
            "x": rng.uniform(-10, 10, 20),
            "y": rng.uniform(-10, 10, 20),
            "z": rng.uniform(-10, 10, 20),
        }
    )
    return HitDoublets(hits, np.arange(0, 10), np.arange(10, 20))
