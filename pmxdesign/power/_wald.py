"""Power of the Wald test for a population parameter being non-zero.

For an estimate with relative standard error RSE (%), the Wald statistic
``theta_hat / SE`` is approximately normal with mean ``100 / RSE`` (the
inverse coefficient of variation). Its rejection probability at critical
value ``z`` is

    power = 1 - Phi(z - 100/RSE) + Phi(-z - 100/RSE)

and inverting the dominant term gives the RSE needed for a target power

    needRSE = 100 / (z - Phi^-1(1 - power))

References
----------
Retout, Comets, Samson & Mentre (2007). Design in nonlinear mixed effects
models: optimization using the Fedorov-Wynn algorithm and power of the Wald
test for binary covariates. *Statistics in Medicine* 26(28), 5162-5179.

Ueckert, Hennig, Nyberg, Karlsson & Hooker (2013). Optimizing disease
progression study designs for drug effect discrimination. *J Pharmacokinet
Pharmacodyn* 40(5), 587-596.

Validates against: R ``PopED::evaluate_power()``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping

import numpy as np
from numpy.typing import NDArray
from scipy.stats import norm

from pmxdesign.design._common import DesignDatabase, bpop_free_positions
from pmxdesign.design._fim import calc_ofv_and_fim
from pmxdesign.design._optimize_n import optimize_n
from pmxdesign.design._rse import get_rse
from pmxdesign.power._common import PowerEvaluationResult, PowerOptions, PowerTable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def _validate_bpop_idx(
    design: DesignDatabase,
    bpop_idx: int | list[int] | NDArray[np.integer] | None,
) -> NDArray[np.intp]:
    """Check the parameter selection and return it as an index array.

    Raises ``ValueError`` if the selection is missing or empty, names a
    fixed or out-of-range parameter, or a selected true value is zero.
    """
    if bpop_idx is None:
        raise ValueError("Population parameter index must be given in bpop_idx")
    idx = np.atleast_1d(np.asarray(bpop_idx))
    if idx.size == 0:
        raise ValueError("bpop_idx must select at least one population parameter")

    # raises for out-of-range or fixed parameters
    bpop_free_positions(design.notfixed_bpop, idx)
    idx = idx.astype(np.intp)

    zero = idx[design.bpop[idx] == 0]
    if zero.size:
        raise ValueError(
            f"Population parameter(s) {zero.tolist()} assumed to be zero; "
            f"there is 0% power in identifying a zero parameter as non-zero "
            f"assuming no bias in parameter estimation"
        )
    return idx


# ---------------------------------------------------------------------------
# Power and required RSE
# ---------------------------------------------------------------------------

def _critical_value(alpha: float) -> float:
    """``|Phi^-1(alpha)|`` for a per-tail level alpha."""
    return abs(float(norm.ppf(alpha)))


def wald_power(
    rse: float | NDArray[np.floating],
    alpha: float,
) -> float | NDArray[np.float64]:
    """Predicted power (%) of the Wald test for given RSE (%).

    Parameters
    ----------
    rse : float or array
        Relative standard error in percent.
    alpha : float
        Per-tail significance level (already halved for a two-sided test).

    Returns
    -------
    float or array
        Power in percent, rounded to one decimal. ``rse == 0`` gives 100;
        a nan or negative RSE gives nan.

    Examples
    --------
    >>> wald_power(20.0, 0.025)
    99.9
    """
    z = _critical_value(alpha)
    rse_arr = np.asarray(rse, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        # undefined (nan or negative) RSE gives undefined power
        ncp = np.where(rse_arr == 0, np.inf, 100.0 / rse_arr)
        ncp = np.where(rse_arr < 0, np.nan, ncp)
    pwr = 100.0 * (norm.sf(z - ncp) + norm.cdf(-z - ncp))
    pwr = np.round(pwr, 1)
    if pwr.ndim == 0:
        return float(pwr)
    return pwr


def wald_need_rse(power: float, alpha: float) -> float:
    """RSE (%) needed for the Wald test to reach ``power`` percent.

    Parameters
    ----------
    power : float
        Target power in percent, in (0, 100).
    alpha : float
        Per-tail significance level (already halved for a two-sided test).

    Returns
    -------
    float
        Required RSE in percent. ``inf`` when the target power is no larger
        than alpha, i.e. any design reaches it and no finite RSE bound
        exists.

    Examples
    --------
    >>> round(wald_need_rse(80, 0.025), 2)
    35.69
    """
    z = _critical_value(alpha)
    denom = z - float(norm.ppf(1.0 - power / 100.0))
    if denom <= 0:
        logger.warning(
            "target power %g%% does not exceed alpha=%g; required RSE is unbounded",
            power, alpha,
        )
        return math.inf
    return 100.0 / denom


# ---------------------------------------------------------------------------
# FIM and RSE resolution
# ---------------------------------------------------------------------------

def _bundle_get(out: object | None, key: str) -> object | None:
    """Read ``key`` from a previous result: attribute or mapping entry."""
    if out is None:
        return None
    if isinstance(out, Mapping):
        return out.get(key)
    return getattr(out, key, None)


def _resolve_fim(
    design: DesignDatabase,
    fim: NDArray[np.floating] | None,
    out: object | None,
    fim_calculator: Callable[..., object],
    options: dict[str, object],
) -> tuple[NDArray[np.float64], float | None]:
    """FIM precedence: explicit ``fim``, then ``out.fim``, then the calculator."""
    if fim is not None:
        logger.debug("using caller-supplied FIM")
        return np.asarray(fim, dtype=np.float64), None
    out_fim = _bundle_get(out, "fim")
    if out_fim is not None:
        logger.debug("using FIM from previous result")
        return np.asarray(out_fim, dtype=np.float64), _bundle_get(out, "ofv")
    logger.debug("computing FIM for design with %g subjects", design.total_n)
    res = fim_calculator(design, **options)
    return np.asarray(res.fim, dtype=np.float64), getattr(res, "ofv", None)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def evaluate_power(
    design: DesignDatabase,
    bpop_idx: int | list[int] | NDArray[np.integer] | None,
    *,
    fim: NDArray[np.floating] | None = None,
    out: object | None = None,
    rse: NDArray[np.floating] | None = None,
    alpha: float = 0.05,
    power: float = 80.0,
    two_sided: bool = True,
    find_min_n: bool = True,
    fim_calculator: Callable[..., object] = calc_ofv_and_fim,
    rse_calculator: Callable[..., NDArray[np.floating]] = get_rse,
    min_n_searcher: Callable[..., object] = optimize_n,
    **options: object,
) -> PowerEvaluationResult:
    """Power of a design to detect population parameters as non-zero.

    Uses the linear Wald test on the predicted RSE of each selected fixed
    effect, and reports the RSE (and optionally the number of subjects)
    needed to reach a target power.

    Parameters
    ----------
    design : DesignDatabase
        The design to evaluate. Read only.
    bpop_idx : int or sequence of int
        0-based indices of the non-fixed population parameters to test.
    fim : array or None
        FIM from a previous calculation. Takes precedence over ``out``.
    out : object, mapping or None
        Previous result (e.g. :class:`FIMResult`, or a mapping such as
        ``{"fim": F}``) whose ``fim`` is used when ``fim`` is not given.
    rse : array or None
        Precomputed RSE vector over all free parameters. Used only when no
        FIM is available from ``fim`` or ``out``; skips FIM computation.
    alpha : float
        Type I error (default 0.05).
    power : float
        Target power in percent (default 80).
    two_sided : bool
        Two-sided test (default True); alpha is split over both tails.
    find_min_n : bool
        Also search for the smallest number of subjects reaching the
        required RSE under the current design (default True).
    fim_calculator : callable
        ``fim_calculator(design, **options)`` returning an object with ``.fim``.
    rse_calculator : callable
        ``rse_calculator(fim, design, **options)`` returning one RSE (%) per
        free parameter.
    min_n_searcher : callable
        ``min_n_searcher(design, bpop_idx, need_rse, **options)`` returning
        an object with ``.n``. Receives ``fim_calculator`` and
        ``rse_calculator`` among its options.
    **options
        Collaborator options, forwarded verbatim.

    Returns
    -------
    PowerEvaluationResult

    Raises
    ------
    ValueError
        For a missing or invalid parameter selection, a zero true value,
        alpha or power out of range, or an RSE vector of the wrong length.
        Collaborator errors (including an infeasible minimum-N search)
        propagate unchanged.

    Examples
    --------
    >>> design = DesignDatabase(bpop=[1.0, 0.5], group_fims=[[[100.0, 0], [0, 4.0]]],
    ...                         groupsize=[10])
    >>> res = evaluate_power(design, 1, find_min_n=False)
    >>> round(float(res.power.rse[0]), 2), float(res.power.pred_power[0])
    (31.62, 88.5)
    """
    opts = PowerOptions(
        alpha=alpha, power=power, two_sided=two_sided, find_min_n=find_min_n,
        extra=options,
    )
    idx = _validate_bpop_idx(design, bpop_idx)
    eff_alpha = opts.effective_alpha
    collab_opts = dict(opts.extra)

    # --- FIM and RSE ---
    has_fim = fim is not None or _bundle_get(out, "fim") is not None
    if rse is not None and not has_fim:
        logger.debug("using caller-supplied RSE vector")
        fim_resolved, ofv = None, None
        rse_vec = np.asarray(rse, dtype=np.float64).ravel()
    else:
        fim_resolved, ofv = _resolve_fim(design, fim, out, fim_calculator, collab_opts)
        rse_vec = np.asarray(
            rse_calculator(fim_resolved, design, **collab_opts), dtype=np.float64,
        ).ravel()
    if rse_vec.shape[0] != design.n_free:
        raise ValueError(
            f"RSE vector must have one entry per free parameter "
            f"({design.n_free}), got {rse_vec.shape[0]}"
        )

    # --- Power per parameter ---
    positions = bpop_free_positions(design.notfixed_bpop, idx)
    value = design.bpop[idx]
    rse_sel = rse_vec[positions]  # percent
    pred_power = np.atleast_1d(wald_power(rse_sel, eff_alpha))
    if np.any(np.isnan(pred_power)):
        logger.warning(
            "RSE undefined for bpop indices %s (FIM not positive definite); "
            "power reported as nan",
            idx[np.isnan(pred_power)].tolist(),
        )
    need_rse = wald_need_rse(opts.power, eff_alpha)
    n_rows = idx.shape[0]

    # --- Minimum N ---
    min_n = None
    min_n_result = None
    if opts.find_min_n:
        min_n_result = min_n_searcher(
            design, idx, need_rse,
            fim_calculator=fim_calculator, rse_calculator=rse_calculator,
            **collab_opts,
        )
        min_n = np.full(n_rows, int(min_n_result.n), dtype=np.int64)

    table = PowerTable(
        bpop_idx=idx,
        labels=tuple(design.bpop_label(int(i)) for i in idx),
        value=value,
        rse=rse_sel,
        pred_power=pred_power,
        want_power=np.full(n_rows, float(opts.power)),
        need_rse=np.full(n_rows, need_rse),
        min_n=min_n,
    )
    logger.debug(
        "power at alpha=%g (%s): %s",
        opts.alpha, "two-sided" if opts.two_sided else "one-sided",
        pred_power.tolist(),
    )

    return PowerEvaluationResult(
        fim=fim_resolved,
        ofv=ofv,
        rse=rse_vec,
        power=table,
        options=opts,
        min_n_result=min_n_result,
    )
