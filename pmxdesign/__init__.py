"""
PmxDesign: power of population pharmacometric study designs.

Evaluates whether a population PK/PD design can detect a model parameter as
non-zero with the linear Wald test, which RSE a design needs for a target
power, and how many subjects reach it.

Usage:
    from pmxdesign import design, power
"""

import logging

__version__ = "0.1.0"

from pmxdesign import design
from pmxdesign import power

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "design",
    "power",
]
