from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

import orjson

__all__ = [
    "CAParameters",
    "DoubletCuts",
    "load_config",
    "parameters_from_config",
]


@dataclass(frozen=True, slots=True)
class CAParameters:
    r"""
    Tuning of one cellular-automaton round.

    Lengths are in cm and momenta in GeV, matching the 87 cm/GeV conversion
    used by the curvature test.

    Attributes
    ----------
    ptmin : float
        Minimum transverse momentum entering both compatibility tests.
    region_origin_x, region_origin_y : float
        Centre of the beam region in the transverse plane.
    region_origin_radius : float
        Radius of the beam region.
    theta_cut : float
        r-z angular tolerance.
    phi_cut : float
        Tolerance added to ``region_origin_radius`` in the x-y test.
    hard_pt_cut : float
        Hard :math:`p_T` cut; circles below ``87 * hard_pt_cut`` are rejected.
    min_hits_per_ntuplet : int
        Number of hits of an extracted chain (``min_hits_per_ntuplet - 1`` cells).
    minimum_level : int or None
        Level a cell needs to seed extraction; ``None`` means
        ``min_hits_per_ntuplet - 2``.
    max_iterations : int or None
        Cap on automaton passes; ``None`` runs until no level changes.

    Raises
    ------
    ValueError
        On negative tolerances, ``ptmin < 0`` or ``min_hits_per_ntuplet < 2``.
    """
    ptmin: float = 0.9
    region_origin_x: float = 0.0
    region_origin_y: float = 0.0
    region_origin_radius: float = 0.02
    theta_cut: float = 0.002
    phi_cut: float = 0.2
    hard_pt_cut: float = 0.0
    min_hits_per_ntuplet: int = 4
    minimum_level: Optional[int] = None
    max_iterations: Optional[int] = None

    def __post_init__(self) -> None:
        if self.ptmin < 0.0:
            raise ValueError("ptmin must be >= 0.")
        if self.region_origin_radius < 0.0:
            raise ValueError("region_origin_radius must be >= 0.")
        if self.theta_cut < 0.0 or self.phi_cut < 0.0:
            raise ValueError("theta_cut and phi_cut must be >= 0.")
        if self.hard_pt_cut < 0.0:
            raise ValueError("hard_pt_cut must be >= 0.")
        if self.min_hits_per_ntuplet < 2:
            raise ValueError("min_hits_per_ntuplet must be >= 2.")
        if self.minimum_level is not None and self.minimum_level < 0:
            raise ValueError("minimum_level must be >= 0.")
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError("max_iterations must be >= 0.")

    @property
    def root_level(self) -> int:
        """Effective seeding level."""
        if self.minimum_level is not None:
            return int(self.minimum_level)
        return self.min_hits_per_ntuplet - 2

    def cuts(self) -> Dict[str, float]:
        """Keyword arguments shared by the tag and push entry points of :class:`~trackml_ca.cell.Cell`."""
        return {
            "ptmin": float(self.ptmin),
            "region_origin_x": float(self.region_origin_x),
            "region_origin_y": float(self.region_origin_y),
            "region_origin_radius": float(self.region_origin_radius),
            "theta_cut": float(self.theta_cut),
            "phi_cut": float(self.phi_cut),
            "hard_pt_cut": float(self.hard_pt_cut),
        }

    def with_overrides(self, **overrides: Any) -> "CAParameters":
        """Copy with the non-``None`` overrides applied (CLI flags)."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **updates) if updates else self

    @classmethod
    def from_mapping(cls, block: Mapping[str, Any]) -> "CAParameters":
        r"""
        Build from a config block, rejecting unknown keys.

        Raises
        ------
        ValueError
            If ``block`` contains keys that are not fields of this class.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(block) - known)
        if unknown:
            raise ValueError(f"Unknown CA parameter(s): {', '.join(unknown)}")
        return cls(**dict(block))


@dataclass(frozen=True, slots=True)
class DoubletCuts:
    r"""
    Windows for :func:`trackml_ca.hit_doublets.make_doublets`.

    Attributes
    ----------
    max_dphi : float
        Azimuthal window (rad).
    max_dz : float
        Longitudinal window (cm).
    max_z0 : float or None
        Beam-line :math:`z_0` window (cm).
    volumes : tuple of int or None
        Volumes used to form consecutive layer pairs; ``None`` uses all.
    """
    max_dphi: float = 0.05
    max_dz: float = 30.0
    max_z0: Optional[float] = 20.0
    volumes: Optional[Tuple[int, ...]] = field(default=(8,))

    @classmethod
    def from_mapping(cls, block: Mapping[str, Any]) -> "DoubletCuts":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(block) - known)
        if unknown:
            raise ValueError(f"Unknown doublet parameter(s): {', '.join(unknown)}")
        data = dict(block)
        if data.get("volumes") is not None:
            data["volumes"] = tuple(int(v) for v in data["volumes"])
        return cls(**data)


def load_config(config_path: Path) -> MutableMapping[str, dict]:
    r"""
    Load a JSON configuration with :mod:`orjson`.

    Parameters
    ----------
    config_path : pathlib.Path
        Path to the JSON file.

    Returns
    -------
    dict
        Parsed configuration.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file cannot be parsed or is not a JSON object.
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        cfg = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ValueError(f"Top level of {path} must be a JSON object.")
    return cfg


def parameters_from_config(
    cfg: Mapping[str, Any],
    *,
    ca_key: str = "ca_config",
    doublet_key: str = "doublet_config",
) -> Tuple[CAParameters, DoubletCuts]:
    r"""
    Split a loaded configuration into automaton and doublet parameters.

    Missing blocks fall back to the defaults of :class:`CAParameters` and
    :class:`DoubletCuts`.
    """
    ca_block = cfg.get(ca_key) or {}
    doublet_block = cfg.get(doublet_key) or {}
    if not isinstance(ca_block, Mapping) or not isinstance(doublet_block, Mapping):
        raise ValueError(f"'{ca_key}' and '{doublet_key}' must be JSON objects.")
    return CAParameters.from_mapping(ca_block), DoubletCuts.from_mapping(doublet_block)
