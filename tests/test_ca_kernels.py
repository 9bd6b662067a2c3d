import numpy as np

from trackml_ca.ca_kernels import (
    PT_TO_RADIUS_CM,
    aligned_rz,
    aligned_rz_batch,
    similar_curvature,
    similar_curvature_batch,
)

BEAM = dict(region_origin_x=0.0, region_origin_y=0.0, region_origin_radius=0.02, phi_cut=0.2)


def _on_circle(radius, center_angle, steps):
    """Points on a circle of ``radius`` passing through the origin."""
    cx, cy = radius * np.cos(center_angle), radius * np.sin(center_angle)
    start = center_angle + np.pi
    return [(cx + radius * np.cos(start + t), cy + radius * np.sin(start + t)) for t in steps]


def _curvature(p1, p2, p3, ptmin=0.9, hard_pt_cut=0.0, **beam):
    b = {**BEAM, **beam}
    return similar_curvature(
        p1[0], p1[1], p2[0], p2[1], p3[0], p3[1], ptmin,
        b["region_origin_x"], b["region_origin_y"], b["region_origin_radius"], b["phi_cut"], hard_pt_cut,
    )


def test_aligned_rz_accepts_straight_line():
    assert aligned_rz(4.0, 2.0, 8.0, 4.0, 12.0, 6.0, 0.9, 0.002)


def test_aligned_rz_rejects_kink():
    assert not aligned_rz(4.0, 2.0, 8.0, 10.0, 12.0, 6.0, 0.9, 0.002)


def test_aligned_rz_tolerance_scales_with_theta_cut():
    # small kink: rejected at tight tolerance, accepted at loose one
    args = (4.0, 2.0, 8.0, 4.1, 12.0, 6.0, 0.9)
    assert not aligned_rz(*args, 0.002)
    assert aligned_rz(*args, 0.5)


def test_aligned_rz_symmetric_under_relabeling():
    rng = np.random.default_rng(42)
    for _ in range(200):
        r1, r2, ro = np.sort(rng.uniform(2.0, 100.0, 3))
        z1, z2, zo = rng.uniform(-50.0, 50.0, 3)
        theta_cut = rng.uniform(1e-4, 1.0)
        forward = aligned_rz(r1, z1, r2, z2, ro, zo, 0.9, theta_cut)
        backward = aligned_rz(ro, zo, r2, z2, r1, z1, 0.9, theta_cut)
        assert forward == backward


def test_aligned_rz_batch_matches_scalar():
    r1 = np.array([4.0, 4.0, 5.0])
    z1 = np.array([2.0, -3.0, 2.5])
    ok = aligned_rz_batch(r1, z1, 8.0, 4.0, 12.0, 6.0, 0.9, 0.002)
    expected = [aligned_rz(a, b, 8.0, 4.0, 12.0, 6.0, 0.9, 0.002) for a, b in zip(r1, z1)]
    assert ok.dtype == np.bool_
    assert ok.tolist() == expected


def test_straight_branch_accepts_line_through_beam_region():
    pts = [(r * np.cos(0.7), r * np.sin(0.7)) for r in (4.0, 8.0, 12.0)]
    assert _curvature(*pts)


def test_straight_branch_rejects_line_missing_beam_region():
    # parallel to the x axis, 5 cm away from the origin
    pts = [(x, 5.0) for x in (4.0, 8.0, 12.0)]
    assert not _curvature(*pts)


def test_straight_branch_honours_phi_cut():
    pts = [(x, 0.15) for x in (4.0, 8.0, 12.0)]
    assert _curvature(*pts, phi_cut=0.2)
    assert not _curvature(*pts, phi_cut=0.1)


def test_curved_branch_hard_pt_bound():
    hard_pt_cut = 1.0
    bound = hard_pt_cut * PT_TO_RADIUS_CM

    above = _on_circle(bound + 13.0, 0.4, (0.1, 0.2, 0.3))
    assert _curvature(*above, hard_pt_cut=hard_pt_cut)

    below = _on_circle(bound - 7.0, 0.4, (0.1, 0.2, 0.3))
    assert not _curvature(*below, hard_pt_cut=hard_pt_cut)
    # the same circle passes once the hard cut is lowered
    assert _curvature(*below, hard_pt_cut=0.5)


def test_curved_branch_rejects_circle_missing_beam_region():
    cx, cy, radius = 150.0, 0.0, 100.0
    pts = [(cx + radius * np.cos(a), cy + radius * np.sin(a)) for a in (2.6, 2.8, 3.0)]
    assert not _curvature(*pts)


def test_degenerate_triple_is_rejected():
    # coincident first and last point: zero chord length
    assert not _curvature((3.0, 1.0), (5.0, 2.0), (3.0, 1.0))


def test_similar_curvature_batch_matches_scalar():
    p2, p3 = (8.0 * np.cos(0.7), 8.0 * np.sin(0.7)), (12.0 * np.cos(0.7), 12.0 * np.sin(0.7))
    x1 = np.array([4.0 * np.cos(0.7), 4.0, -4.0])
    y1 = np.array([4.0 * np.sin(0.7), 5.0, 1.0])
    ok = similar_curvature_batch(x1, y1, p2[0], p2[1], p3[0], p3[1], 0.9, 0.0, 0.0, 0.02, 0.2, 0.0)
    expected = [_curvature((a, b), p2, p3) for a, b in zip(x1, y1)]
    assert ok.tolist() == expected
    assert ok[0]


def test_kernels_release_the_gil():
    for kernel in (aligned_rz, aligned_rz_batch, similar_curvature, similar_curvature_batch):
        assert kernel.targetoptions.get("nogil") is True
