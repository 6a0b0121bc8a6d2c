"""Population Fisher information matrix and design objective value.

Subjects within a group are exchangeable and independent, so the
population FIM is the groupsize-weighted sum of the per-subject group FIMs.
The objective value (OFV) summarises the FIM as a scalar design criterion.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pmxdesign.design._common import DesignDatabase

logger = logging.getLogger(__name__)

VALID_OFV_TYPES = ("D", "lnD", "A")


@dataclass(frozen=True)
class FIMResult:
    """Population FIM together with its design objective value."""

    fim: NDArray[np.float64]
    ofv: float
    ofv_calc_type: str

    def summary(self) -> str:
        """Human-readable summary."""
        lines = ["Population Fisher information", ""]
        lines.append(f"  free parameters = {self.fim.shape[0]}")
        lines.append(f"  OFV ({self.ofv_calc_type}) = {self.ofv:.6g}")
        return "\n".join(lines)


def _ofv(fim: NDArray[np.float64], ofv_calc_type: str) -> float:
    """Scalar design criterion of a FIM (larger is better)."""
    if ofv_calc_type == "D":
        return float(np.linalg.det(fim))
    if ofv_calc_type == "lnD":
        sign, logdet = np.linalg.slogdet(fim)
        # non-positive determinant: no information on some direction
        return float(logdet) if sign > 0 else -math.inf
    # A-optimality
    trace_inv = float(np.trace(np.linalg.inv(fim)))
    return 1.0 / trace_inv


def calc_ofv_and_fim(
    design: DesignDatabase,
    *,
    ofv_calc_type: str = "lnD",
    **options: object,
) -> FIMResult:
    """Compute the population FIM and objective value of a design.

    Parameters
    ----------
    design : DesignDatabase
        Must carry per-subject ``group_fims``.
    ofv_calc_type : str
        ``'D'`` (determinant), ``'lnD'`` (log determinant, default) or
        ``'A'`` (inverse trace of the covariance).
    **options
        Options addressed to other collaborators; ignored here.

    Returns
    -------
    FIMResult

    Raises
    ------
    ValueError
        If the design has no group FIMs or the criterion is unknown.
    numpy.linalg.LinAlgError
        For ``'A'`` when the FIM is singular.
    """
    if ofv_calc_type not in VALID_OFV_TYPES:
        raise ValueError(
            f"ofv_calc_type must be one of {VALID_OFV_TYPES}, got {ofv_calc_type!r}"
        )
    if design.group_fims is None:
        raise ValueError(
            "design has no group FIMs; supply a FIM directly or a design "
            "with per-subject group_fims"
        )

    fim = np.einsum("g,gij->ij", design.groupsize, design.group_fims)
    ofv = _ofv(fim, ofv_calc_type)
    logger.debug(
        "FIM over %d free parameters for %g subjects, OFV(%s)=%g",
        fim.shape[0], design.total_n, ofv_calc_type, ofv,
    )
    return FIMResult(fim=fim, ofv=ofv, ofv_calc_type=ofv_calc_type)
