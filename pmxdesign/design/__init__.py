"""
Population design database and the evaluation steps built on it.

A design is summarised by its Fisher information matrix (FIM). Inverting the
FIM gives the predicted relative standard errors (RSE) of the estimated
parameters, and rescaling the number of subjects gives the smallest study
reaching a target RSE.

Validates against: R package PopED (calc_ofv_and_fim, get_rse, optimize_n).
"""

from pmxdesign.design._common import DesignDatabase, bpop_free_positions
from pmxdesign.design._fim import FIMResult, calc_ofv_and_fim
from pmxdesign.design._rse import get_rse
from pmxdesign.design._optimize_n import MinNResult, optimize_n

__all__ = [
    "DesignDatabase",
    "bpop_free_positions",
    "FIMResult",
    "calc_ofv_and_fim",
    "get_rse",
    "MinNResult",
    "optimize_n",
]
