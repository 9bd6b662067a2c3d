from __future__ import annotations

import math

import numpy as np
from numba import njit

__all__ = [
    "PT_TO_RADIUS_CM",
    "STRAIGHT_LINE_TOLERANCE",
    "aligned_rz",
    "aligned_rz_batch",
    "similar_curvature",
    "similar_curvature_batch",
]

# 87 cm/GeV = 1 / (0.3 * 3.8 T)
PT_TO_RADIUS_CM = 87.0

# tan * ptmin below this fraction of the squared chord means "straight"
STRAIGHT_LINE_TOLERANCE = 1.0e-4


@njit(cache=True, nogil=True, error_model="numpy")
def aligned_rz(
    r1: float,
    z1: float,
    r2: float,
    z2: float,
    ro: float,
    zo: float,
    ptmin: float,
    theta_cut: float,
) -> bool:
    r"""
    Collinearity test of three points in the :math:`(r,z)` plane.

    Points are ordered inner to outer: :math:`(r_1,z_1)` is the inner point of
    the candidate predecessor, :math:`(r_2,z_2)` the shared point and
    :math:`(r_o,z_o)` the outer point of the current doublet. With

    .. math::

        \Delta r = |r_1 - r_o|,\qquad
        d_{13}^2 = \Delta r^2 + (z_1 - z_o)^2,\qquad
        t = |z_1 (r_2 - r_o) + z_2 (r_o - r_1) + z_o (r_1 - r_2)|,

    the pair is accepted iff

    .. math::

        t \, p_T^{\min} \, d_{13} \;\le\; \theta_\text{cut}\, d_{13}^2\, \Delta r .

    :math:`t` is twice the area of the triangle, i.e. :math:`\tan` of the
    opening angle scaled by :math:`d_{13}^2/2`, so no division or trigonometric
    call is needed.

    Parameters
    ----------
    r1, z1 : float
        Inner point of the predecessor doublet.
    r2, z2 : float
        Inner point of the current doublet.
    ro, zo : float
        Outer point of the current doublet.
    ptmin : float
        Minimum transverse momentum (GeV).
    theta_cut : float
        Angular tolerance.

    Returns
    -------
    bool
        ``True`` if the three points are compatible with one trajectory.

    Notes
    -----
    The test is symmetric under swapping :math:`(r_1,z_1)` and
    :math:`(r_o,z_o)`: :math:`t` only changes sign and :math:`\Delta r`,
    :math:`d_{13}` are unchanged.
    """
    radius_diff = abs(r1 - ro)
    distance_13_squared = radius_diff * radius_diff + (z1 - zo) * (z1 - zo)

    # divided by radius_diff on the right-hand side
    p_min = ptmin * math.sqrt(distance_13_squared)

    tan_12_13_half_mul_distance_13_squared = abs(
        z1 * (r2 - ro) + z2 * (ro - r1) + zo * (r1 - r2)
    )
    return tan_12_13_half_mul_distance_13_squared * p_min <= theta_cut * distance_13_squared * radius_diff


@njit(cache=True, nogil=True, error_model="numpy")
def aligned_rz_batch(
    r1: np.ndarray,
    z1: np.ndarray,
    r2: float,
    z2: float,
    ro: float,
    zo: float,
    ptmin: float,
    theta_cut: float,
) -> np.ndarray:
    r"""
    :func:`aligned_rz` over a group of predecessor inner points.

    Parameters
    ----------
    r1, z1 : ndarray, shape (m,)
        Inner points of the candidate predecessors.
    r2, z2, ro, zo : float
        Inner and outer point of the current doublet (shared by the group).
    ptmin, theta_cut : float
        See :func:`aligned_rz`.

    Returns
    -------
    ok : ndarray of bool, shape (m,)
    """
    m = r1.shape[0]
    ok = np.empty(m, dtype=np.bool_)
    for j in range(m):
        ok[j] = aligned_rz(r1[j], z1[j], r2, z2, ro, zo, ptmin, theta_cut)
    return ok


@njit(cache=True, nogil=True, error_model="numpy")
def similar_curvature(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    x3: float,
    y3: float,
    ptmin: float,
    region_origin_x: float,
    region_origin_y: float,
    region_origin_radius: float,
    phi_cut: float,
    hard_pt_cut: float,
) -> bool:
    r"""
    Curvature test of three points in the transverse :math:`(x,y)` plane
    against the beam region.

    Let :math:`P_1` be the inner point of the predecessor doublet and
    :math:`P_2, P_3` the inner and outer point of the current doublet. The
    beam region is a disk of centre :math:`O=(x_0,y_0)` and radius
    :math:`\rho`, inflated by :math:`\phi_\text{cut}` to
    :math:`R = \rho + \phi_\text{cut}`.

    **Straight branch.** With :math:`t = |y_1(x_2-x_3) + y_2(x_3-x_1) + y_3(x_1-x_2)|`
    and :math:`d_{13}^2 = |P_1 - P_3|^2`, if
    :math:`t\,p_T^{\min} \le 10^{-4}\, d_{13}^2` the triple is treated as a
    line and accepted iff the squared distance of :math:`O` from the line
    :math:`P_1P_3` is below :math:`R^2`.

    **Curved branch.** The circumcentre :math:`C` follows from the two chord
    bisectors,

    .. math::

        \det = (x_1-x_2)(y_2-y_3) - (x_2-x_3)(y_1-y_2),\\
        b = \tfrac12(|P_1|^2 - |P_2|^2),\qquad c = \tfrac12(|P_2|^2 - |P_3|^2),\\
        C_x = \frac{b(y_2-y_3) - c(y_1-y_2)}{\det},\qquad
        C_y = \frac{c(x_1-x_2) - b(x_2-x_3)}{\det},

    with radius :math:`r = |P_2 - C|`. Tracks with
    :math:`r < 87\,p_T^\text{hard}` (cm, 3.8 T) are rejected; otherwise the
    track circle must intersect or nest with the inflated beam circle:

    .. math::

        (r - R)^2 \;\le\; |C - O|^2 \;\le\; (r + R)^2 .

    Parameters
    ----------
    x1, y1 : float
        Inner point of the predecessor doublet.
    x2, y2, x3, y3 : float
        Inner and outer point of the current doublet.
    ptmin : float
        Minimum transverse momentum (GeV).
    region_origin_x, region_origin_y, region_origin_radius : float
        Beam region centre and radius (cm).
    phi_cut : float
        Tolerance added to the beam region radius (cm).
    hard_pt_cut : float
        Hard transverse momentum cut (GeV).

    Returns
    -------
    bool

    Notes
    -----
    Compiled with the numpy error model: a vanishing determinant or chord
    produces ``inf``/``nan`` and every comparison with ``nan`` is false, so
    degenerate triples come out rejected.
    """
    distance_13_squared = (x1 - x3) * (x1 - x3) + (y1 - y3) * (y1 - y3)
    tan_12_13_half_mul_distance_13_squared = abs(
        y1 * (x2 - x3) + y2 * (x3 - x1) + y3 * (x1 - x2)
    )

    # high pt: just straight
    if tan_12_13_half_mul_distance_13_squared * ptmin <= STRAIGHT_LINE_TOLERANCE * distance_13_squared:
        distance_3_beamspot_squared = (
            (x3 - region_origin_x) * (x3 - region_origin_x)
            + (y3 - region_origin_y) * (y3 - region_origin_y)
        )
        dot_bs3_13 = (x1 - x3) * (region_origin_x - x3) + (y1 - y3) * (region_origin_y - y3)
        proj_bs3_on_13_squared = dot_bs3_13 * dot_bs3_13 / distance_13_squared
        distance_13_beamspot_squared = distance_3_beamspot_squared - proj_bs3_on_13_squared
        tolerance = region_origin_radius + phi_cut
        return distance_13_beamspot_squared < tolerance * tolerance

    min_radius = hard_pt_cut * PT_TO_RADIUS_CM

    det = (x1 - x2) * (y2 - y3) - (x2 - x3) * (y1 - y2)
    offset = x2 * x2 + y2 * y2
    bc = (x1 * x1 + y1 * y1 - offset) * 0.5
    cd = (offset - x3 * x3 - y3 * y3) * 0.5
    idet = 1.0 / det

    x_center = (bc * (y2 - y3) - cd * (y1 - y2)) * idet
    y_center = (cd * (x1 - x2) - bc * (x2 - x3)) * idet
    radius = math.sqrt((x2 - x_center) * (x2 - x_center) + (y2 - y_center) * (y2 - y_center))

    # hard cut on pt
    if radius < min_radius:
        return False

    centers_distance_squared = (
        (x_center - region_origin_x) * (x_center - region_origin_x)
        + (y_center - region_origin_y) * (y_center - region_origin_y)
    )
    region_origin_radius_plus_tolerance = region_origin_radius + phi_cut
    minimum_of_intersection_range = (
        (radius - region_origin_radius_plus_tolerance) * (radius - region_origin_radius_plus_tolerance)
    )
    if centers_distance_squared >= minimum_of_intersection_range:
        maximum_of_intersection_range = (
            (radius + region_origin_radius_plus_tolerance) * (radius + region_origin_radius_plus_tolerance)
        )
        return centers_distance_squared <= maximum_of_intersection_range
    return False


@njit(cache=True, nogil=True, error_model="numpy")
def similar_curvature_batch(
    x1: np.ndarray,
    y1: np.ndarray,
    x2: float,
    y2: float,
    x3: float,
    y3: float,
    ptmin: float,
    region_origin_x: float,
    region_origin_y: float,
    region_origin_radius: float,
    phi_cut: float,
    hard_pt_cut: float,
) -> np.ndarray:
    r"""
    :func:`similar_curvature` over a group of predecessor inner points.

    Parameters
    ----------
    x1, y1 : ndarray, shape (m,)
        Inner points of the candidate predecessors.
    x2, y2, x3, y3 : float
        Inner and outer point of the current doublet.
    ptmin, region_origin_x, region_origin_y, region_origin_radius, phi_cut, hard_pt_cut : float
        See :func:`similar_curvature`.

    Returns
    -------
    ok : ndarray of bool, shape (m,)
    """
    m = x1.shape[0]
    ok = np.empty(m, dtype=np.bool_)
    for j in range(m):
        ok[j] = similar_curvature(
            x1[j], y1[j], x2, y2, x3, y3, ptmin,
            region_origin_x, region_origin_y, region_origin_radius, phi_cut, hard_pt_cut,
        )
    return ok
