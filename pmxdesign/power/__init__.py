"""
Wald-test power for detecting population parameters as non-zero.

Given the predicted RSE of a fixed effect under a design, the linear Wald
test gives the probability of declaring the parameter non-zero, the RSE a
design must reach for a target power, and (via the design module) the
smallest number of subjects that gets there.

Validates against: R package PopED (evaluate_power).
"""

from pmxdesign.power._common import PowerEvaluationResult, PowerOptions, PowerTable
from pmxdesign.power._wald import evaluate_power, wald_need_rse, wald_power

__all__ = [
    "PowerEvaluationResult",
    "PowerOptions",
    "PowerTable",
    "evaluate_power",
    "wald_need_rse",
    "wald_power",
]
