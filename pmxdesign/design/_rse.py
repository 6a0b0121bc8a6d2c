"""Relative standard errors from a Fisher information matrix.

The inverse FIM approximates the covariance of the parameter estimates
(Cramer-Rao bound). RSE is the standard error expressed as a percentage of
the parameter's point value.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from pmxdesign.design._common import DesignDatabase

logger = logging.getLogger(__name__)


def get_rse(
    fim: NDArray[np.floating],
    design: DesignDatabase,
    **options: object,
) -> NDArray[np.float64]:
    """Predicted RSE (%) of every free parameter.

    Parameters
    ----------
    fim : array, shape (p, p)
        Population FIM over the free parameters.
    design : DesignDatabase
        Supplies the free-parameter point values.
    **options
        Options addressed to other collaborators; ignored here.

    Returns
    -------
    NDArray[float64]
        One RSE per free parameter, ordered bpop, d, sigma. Parameters whose
        value is zero get their absolute standard error instead.

    Raises
    ------
    ValueError
        If the FIM does not match the number of free parameters.
    numpy.linalg.LinAlgError
        If the FIM is singular.
    """
    fim = np.asarray(fim, dtype=np.float64)
    n_free = design.n_free
    if fim.shape != (n_free, n_free):
        raise ValueError(
            f"FIM must be {n_free}x{n_free} for this design, got {fim.shape}"
        )

    variances = np.diag(np.linalg.inv(fim))
    if np.any(variances < 0):
        logger.warning(
            "FIM is not positive definite; RSE undefined for free parameters %s",
            np.flatnonzero(variances < 0).tolist(),
        )
    with np.errstate(invalid="ignore"):
        se = np.sqrt(variances)

    values = design.free_values()
    zero = values == 0
    if np.any(zero):
        logger.warning(
            "free parameters %s have value zero; RSE undefined, SE reported instead",
            np.flatnonzero(zero).tolist(),
        )
    rse = se.copy()
    rse[~zero] = 100.0 * se[~zero] / np.abs(values[~zero])
    return rse
