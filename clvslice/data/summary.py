"""Per-customer recency/frequency summaries consumed by the CLV samplers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np

_ALIASES = {
    "x": ("x",),
    "tx": ("tx", "t.x", "t_x"),
    "Tcal": ("Tcal", "T.cal", "T_cal"),
    "litt": ("litt",),
}


@dataclass(frozen=True)
class CustomerData:
    """Calibration-period summary for N customers.

    x    : number of repeat transactions
    tx   : time of the last transaction (recency), 0 when x == 0
    Tcal : length of the calibration period
    litt : sum of log inter-transaction times (only used by Pareto/CNBD)
    """

    x: np.ndarray
    tx: np.ndarray
    Tcal: np.ndarray
    litt: Optional[np.ndarray] = None

    def __post_init__(self):
        x = np.atleast_1d(np.asarray(self.x, dtype=float))
        n = x.shape[0]
        tx = np.broadcast_to(np.asarray(self.tx, dtype=float), (n,)).copy()
        Tcal = np.broadcast_to(np.asarray(self.Tcal, dtype=float), (n,)).copy()
        litt = np.zeros(n) if self.litt is None else np.broadcast_to(np.asarray(self.litt, dtype=float), (n,)).copy()
        if x.ndim != 1:
            raise ValueError("x must be one-dimensional")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(tx)) and np.all(np.isfinite(Tcal))):
            raise ValueError("x, tx and Tcal must be finite")
        if np.any(x < 0):
            raise ValueError("x must be non-negative")
        if np.any(tx < 0) or np.any(tx > Tcal):
            raise ValueError("Require 0 <= tx <= Tcal for every customer")
        if not np.all(np.isfinite(litt)):
            raise ValueError("litt must be finite")
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "tx", tx)
        object.__setattr__(self, "Tcal", Tcal)
        object.__setattr__(self, "litt", litt)

    def __len__(self) -> int:
        return int(self.x.shape[0])

    @property
    def n(self) -> int:
        return len(self)

    def subset(self, idx) -> "CustomerData":
        return CustomerData(x=self.x[idx], tx=self.tx[idx], Tcal=self.Tcal[idx], litt=self.litt[idx])

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CustomerData":
        """Build from a column mapping, accepting 't.x' / 'T.cal' style names."""
        cols = {}
        for field_name, aliases in _ALIASES.items():
            for alias in aliases:
                if alias in data:
                    cols[field_name] = data[alias]
                    break
        missing = [k for k in ("x", "tx", "Tcal") if k not in cols]
        if missing:
            raise KeyError(f"Missing customer columns: {', '.join(missing)}")
        return cls(**cols)
