"""YAML configuration loader for sampler settings with dotted overrides."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from clvslice.inference.slice import DEFAULT_MAX_ITER

# log S(tx) below which the tau posterior is treated as numerically flat
TAU_FLAT_THRESHOLD = -100.0


@dataclass(frozen=True)
class DrawSettings:
    """Step counts, safety ceiling, fallback threshold and quadrature tolerances."""

    pnbd_lambda_steps: int = 3
    pnbd_mu_steps: int = 6
    pcnbd_k_steps: int = 3
    pcnbd_lambda_steps: int = 3
    pcnbd_tau_steps: int = 6
    hyper_steps: int = 20
    hyper_width: float = 1.0
    max_iter: Optional[int] = DEFAULT_MAX_ITER
    tau_flat_threshold: float = TAU_FLAT_THRESHOLD
    palive_epsabs: float = 1e-4
    palive_epsrel: float = 1e-4
    palive_limit: int = 100

    def __post_init__(self):
        for f in fields(self):
            if f.name.endswith("_steps") and int(getattr(self, f.name)) < 0:
                raise ValueError(f"{f.name} must be non-negative")
        if self.hyper_width <= 0:
            raise ValueError("hyper_width must be > 0")
        if self.max_iter is not None and self.max_iter <= 0:
            raise ValueError("max_iter must be positive or None")
        if self.palive_epsabs <= 0 or self.palive_epsrel <= 0:
            raise ValueError("Quadrature tolerances must be > 0")
        if self.palive_limit <= 0:
            raise ValueError("palive_limit must be > 0")

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(path: Path) -> dict[str, Any]:
    """Load a YAML config file into a dictionary."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a YAML mapping at top-level.")
    return data


def merge_overrides(config: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Merge overrides into a nested config; dotted keys such as 'sampler.max_iter' descend."""
    merged = _deep_copy(config)
    for key, value in overrides.items():
        parts = str(key).split(".")
        cur = merged
        for seg in parts[:-1]:
            nxt = cur.setdefault(seg, {})
            if not isinstance(nxt, dict):
                raise ValueError(f"Key path conflict at '{key}'")
            cur = nxt
        cur[parts[-1]] = value
    return merged


def _deep_copy(d: Mapping[str, Any]) -> dict[str, Any]:
    return {k: _deep_copy(v) if isinstance(v, Mapping) else v for k, v in d.items()}


def settings_from_config(cfg: Mapping[str, Any]) -> DrawSettings:
    """Build DrawSettings from the `sampler` section of a config mapping."""
    section = cfg.get("sampler", {}) or {}
    if not isinstance(section, Mapping):
        raise ValueError("'sampler' section must be a mapping")
    known = {f.name for f in fields(DrawSettings)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown sampler settings: {', '.join(unknown)}")
    return replace(DrawSettings(), **dict(section))


def load_draw_settings(path: Optional[Path] = None,
                       overrides: Optional[Mapping[str, Any]] = None) -> DrawSettings:
    """Load settings from YAML (or defaults when path is None) and apply overrides."""
    cfg = load_config(path) if path is not None else {}
    if overrides:
        cfg = merge_overrides(cfg, overrides)
    return settings_from_config(cfg)
