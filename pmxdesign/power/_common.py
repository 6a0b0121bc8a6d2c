"""Options and result types for Wald-test power evaluation."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class PowerOptions:
    """Recognised settings of a power evaluation.

    ``power`` is the target power in percent. ``extra`` holds options for
    the FIM, RSE and minimum-N collaborators; it is forwarded to them
    verbatim.
    """

    alpha: float = 0.05
    power: float = 80.0
    two_sided: bool = True
    find_min_n: bool = True
    extra: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not (0.0 < self.alpha < 1.0):
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if not (0.0 < self.power < 100.0):
            raise ValueError(f"power must be in (0, 100) percent, got {self.power}")
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def effective_alpha(self) -> float:
        """Per-tail significance level: alpha/2 for a two-sided test."""
        return self.alpha / 2.0 if self.two_sided else self.alpha


@dataclass(frozen=True)
class PowerTable:
    """Per-parameter power evaluation, one entry per requested index."""

    bpop_idx: NDArray[np.intp]
    labels: tuple[str, ...]
    value: NDArray[np.float64]  # true (point) value
    rse: NDArray[np.float64]  # predicted RSE (%)
    pred_power: NDArray[np.float64]  # predicted power (%), 1 decimal
    want_power: NDArray[np.float64]  # target power (%)
    need_rse: NDArray[np.float64]  # RSE (%) needed for the target power
    min_n: NDArray[np.int64] | None = None

    def __len__(self) -> int:
        return int(self.bpop_idx.shape[0])

    @property
    def finite_need_rse(self) -> bool:
        """False when the target power gives no finite RSE requirement."""
        return bool(np.all(np.isfinite(self.need_rse)))

    def summary(self) -> str:
        """Text table, one row per parameter."""
        header = f"{'parameter':<12s} {'value':>10s} {'RSE':>8s} {'predPower':>10s} {'wantPower':>10s} {'needRSE':>8s}"
        if self.min_n is not None:
            header += f" {'min_N':>7s}"
        lines = [header]
        for i in range(len(self)):
            row = (
                f"{self.labels[i]:<12s} {self.value[i]:>10.4g} {self.rse[i]:>8.3g} "
                f"{self.pred_power[i]:>10.1f} {self.want_power[i]:>10.4g} "
                f"{self.need_rse[i]:>8.4g}"
            )
            if self.min_n is not None:
                row += f" {self.min_n[i]:>7d}"
            lines.append(row)
        return "\n".join(lines)


@dataclass(frozen=True)
class PowerEvaluationResult:
    """Result of :func:`pmxdesign.power.evaluate_power`.

    ``fim`` is None only when a precomputed RSE vector was supplied, and
    ``ofv`` is None unless the FIM came from the FIM collaborator (or from
    a previous result carrying one).
    """

    fim: NDArray[np.float64] | None
    ofv: float | None
    rse: NDArray[np.float64]  # all free parameters
    power: PowerTable
    options: PowerOptions
    min_n_result: object | None = None

    def summary(self) -> str:
        """Human-readable summary."""
        opts = self.options
        sided = "two-sided" if opts.two_sided else "one-sided"
        lines = ["Wald test power for non-zero population parameters", ""]
        lines.append(f"          alpha = {opts.alpha} ({sided})")
        lines.append(f"   target power = {opts.power}%")
        if self.ofv is not None and math.isfinite(self.ofv):
            lines.append(f"            OFV = {self.ofv:.6g}")
        lines.append("")
        lines.append(self.power.summary())
        if not self.power.finite_need_rse:
            lines.append("")
            lines.append(
                "NOTE: target power is reached by any design at this alpha; "
                "needRSE is unbounded"
            )
        return "\n".join(lines)
