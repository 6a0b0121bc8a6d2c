"""Smallest number of subjects reaching a target RSE.

The current design's group proportions are kept fixed and only the total
number of subjects is varied. Information grows with the number of
subjects, so the RSE of every parameter decreases monotonically in ``n``
and the target can be bracketed and solved with Brent's method.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import brentq

from pmxdesign.design._common import DesignDatabase, bpop_free_positions
from pmxdesign.design._fim import calc_ofv_and_fim
from pmxdesign.design._rse import get_rse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MinNResult:
    """Result of a minimum sample size search."""

    n: int  # smallest integer total number of subjects
    n_continuous: float  # root of the continuous relaxation
    rse: NDArray[np.float64]  # RSE (%) of the selected parameters at n
    need_rse: float

    def summary(self) -> str:
        lines = ["Minimum number of subjects", ""]
        lines.append(f"              n = {self.n}")
        lines.append(f"   continuous n = {self.n_continuous:.4f}")
        lines.append(f"       need RSE = {self.need_rse:.4g}%")
        lines.append(f"    RSE at n    = {', '.join(f'{r:.4g}%' for r in self.rse)}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def optimize_n(
    design: DesignDatabase,
    bpop_idx: int | list[int] | NDArray[np.integer],
    need_rse: float,
    *,
    n_bounds: tuple[float, float] = (1.0, 1e6),
    fim_calculator: Callable[..., object] = calc_ofv_and_fim,
    rse_calculator: Callable[..., NDArray[np.floating]] = get_rse,
    **options: object,
) -> MinNResult:
    """Smallest total number of subjects for which the selected RSEs reach ``need_rse``.

    Parameters
    ----------
    design : DesignDatabase
        Current design; its group proportions are preserved.
    bpop_idx : int or sequence of int
        0-based indices of the fixed effects of interest. With several
        indices the largest of their RSEs must reach the target.
    need_rse : float
        Target RSE in percent. ``inf`` is met by any design.
    n_bounds : tuple of float
        ``(lower, upper)`` search range for the total number of subjects.
    fim_calculator, rse_calculator : callable
        Collaborators used to evaluate a rescaled design.
    **options
        Forwarded to both collaborators.

    Returns
    -------
    MinNResult

    Raises
    ------
    ValueError
        If ``need_rse`` is not positive, the bounds are invalid, the RSE is
        undefined (FIM not positive definite) or the target cannot be
        reached within ``n_bounds``.
    """
    if math.isnan(need_rse) or need_rse <= 0:
        raise ValueError(f"need_rse must be > 0, got {need_rse}")
    lo, hi = n_bounds
    if not (0 < lo < hi):
        raise ValueError(f"n_bounds must satisfy 0 < lower < upper, got {n_bounds}")

    positions = bpop_free_positions(design.notfixed_bpop, bpop_idx)

    def _selected_rse(n: float) -> NDArray[np.float64]:
        scaled = design.with_total_n(n)
        fim = fim_calculator(scaled, **options).fim
        rse = np.asarray(rse_calculator(fim, scaled, **options), dtype=np.float64)
        return rse[positions]

    def _max_rse(n: float) -> float:
        return float(np.max(_selected_rse(n)))

    n_lo = math.ceil(lo)
    if math.isinf(need_rse):
        return MinNResult(
            n=n_lo, n_continuous=float(lo), rse=_selected_rse(n_lo), need_rse=need_rse,
        )

    rse_lo = _max_rse(lo)
    rse_hi = _max_rse(hi)
    if math.isnan(rse_lo) or math.isnan(rse_hi):
        raise ValueError(
            f"RSE undefined for bpop indices {np.atleast_1d(bpop_idx).tolist()}; "
            f"the FIM is not positive definite"
        )
    if rse_lo <= need_rse:
        logger.debug("lower bound n=%g already reaches RSE %g%%", lo, need_rse)
        return MinNResult(
            n=n_lo, n_continuous=float(lo), rse=_selected_rse(n_lo), need_rse=need_rse,
        )
    if rse_hi > need_rse:
        raise ValueError(
            f"RSE {need_rse:.4g}% is not reached for bpop indices "
            f"{np.atleast_1d(bpop_idx).tolist()} with up to {hi:g} subjects"
        )

    raw_n = brentq(lambda x: _max_rse(x) - need_rse, float(lo), float(hi), xtol=1e-8)

    # brentq only locates the root to within xtol
    n = math.ceil(raw_n)
    while n - 1 >= lo and _max_rse(n - 1) <= need_rse:
        n -= 1
    while _max_rse(n) > need_rse and n < hi:
        n += 1
    logger.debug("minimum n=%d (continuous %.4f) for RSE %g%%", n, raw_n, need_rse)

    return MinNResult(n=n, n_continuous=raw_n, rse=_selected_rse(n), need_rse=need_rse)
