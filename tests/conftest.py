"""Shared design fixtures."""

import numpy as np
import pytest

from pmxdesign.design import DesignDatabase


@pytest.fixture
def pk_design():
    """Two equal groups of 10 subjects with diagonal per-subject FIMs.

    bpop = [CL=1.0 (free), V=2.0 (fixed), KA=0.5 (free), EFF=0.0 (free)]
    d = [0.09], sigma = [0.01], all free -> 5 free parameters.

    Population FIM = 20 * diag(2, 4, 8, 50, 1000) = diag(40, 80, 160, 1000, 20000)
    RSE(CL)  = 100 * sqrt(1/40) / 1.0  = 15.811
    RSE(KA)  = 100 * sqrt(1/80) / 0.5  = 22.361
    SE(EFF)  = sqrt(1/160)             = 0.0791 (value zero, SE reported)
    RSE(d)   = 100 * sqrt(1/1000) / 0.09
    RSE(sig) = 100 * sqrt(1/20000) / 0.01
    """
    per_subject = np.diag([2.0, 4.0, 8.0, 50.0, 1000.0])
    return DesignDatabase(
        bpop=[1.0, 2.0, 0.5, 0.0],
        notfixed_bpop=[True, False, True, True],
        d=[0.09],
        sigma=[0.01],
        groupsize=[10, 10],
        group_fims=np.stack([per_subject, per_subject]),
        bpop_names=("CL", "V", "KA", "EFF"),
    )


@pytest.fixture
def pk_fim():
    """Population FIM of ``pk_design``."""
    return np.diag([40.0, 80.0, 160.0, 1000.0, 20000.0])
