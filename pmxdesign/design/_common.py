"""Design database and free-parameter bookkeeping.

A population design carries three parameter vectors (fixed effects ``bpop``,
between-subject variances ``d`` and residual variances ``sigma``), each with a
parallel flag vector marking which entries are estimated. The Fisher
information matrix and the RSE vector derived from it cover only the
estimated ("not fixed") parameters, ordered bpop, then d, then sigma.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray


def _read_only(values: NDArray, dtype: type) -> NDArray:
    """Private read-only copy, so caller arrays cannot change the design."""
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


def _as_flags(flags: NDArray | None, n: int, name: str) -> NDArray[np.bool_]:
    if flags is None:
        return _read_only(np.ones(n), bool)
    flags = _read_only(np.asarray(flags).ravel().astype(bool), bool)
    if flags.shape[0] != n:
        raise ValueError(
            f"{name} must have one flag per parameter, "
            f"got {flags.shape[0]} flags for {n} parameters"
        )
    return flags


@dataclass(frozen=True)
class DesignDatabase:
    """Read-only description of a population design.

    ``group_fims[g]`` is the Fisher information contributed by *one*
    subject of group ``g``, over the free parameters. The population FIM is
    the groupsize-weighted sum of these matrices.
    """

    bpop: NDArray[np.float64]
    notfixed_bpop: NDArray[np.bool_] | None = None
    d: NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    notfixed_d: NDArray[np.bool_] | None = None
    sigma: NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    notfixed_sigma: NDArray[np.bool_] | None = None
    groupsize: NDArray[np.float64] = field(default_factory=lambda: np.ones(1))
    group_fims: NDArray[np.float64] | None = None
    bpop_names: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        bpop = _read_only(np.ravel(self.bpop), np.float64)
        d = _read_only(np.ravel(self.d), np.float64)
        sigma = _read_only(np.ravel(self.sigma), np.float64)
        object.__setattr__(self, "bpop", bpop)
        object.__setattr__(self, "d", d)
        object.__setattr__(self, "sigma", sigma)
        object.__setattr__(
            self, "notfixed_bpop", _as_flags(self.notfixed_bpop, bpop.shape[0], "notfixed_bpop")
        )
        object.__setattr__(
            self, "notfixed_d", _as_flags(self.notfixed_d, d.shape[0], "notfixed_d")
        )
        object.__setattr__(
            self, "notfixed_sigma", _as_flags(self.notfixed_sigma, sigma.shape[0], "notfixed_sigma")
        )

        if bpop.shape[0] == 0:
            raise ValueError("bpop must contain at least one parameter")

        groupsize = _read_only(np.ravel(self.groupsize), np.float64)
        if groupsize.shape[0] == 0:
            raise ValueError("design must have at least one group")
        if np.any(groupsize < 0) or not np.all(np.isfinite(groupsize)):
            raise ValueError("groupsize values must be finite and non-negative")
        object.__setattr__(self, "groupsize", groupsize)

        if self.group_fims is not None:
            group_fims = np.asarray(self.group_fims, dtype=np.float64)
            if group_fims.ndim == 2:
                group_fims = group_fims[np.newaxis, :, :]
            group_fims = _read_only(group_fims, np.float64)
            if group_fims.ndim != 3 or group_fims.shape[1] != group_fims.shape[2]:
                raise ValueError(
                    f"group_fims must be square matrices, got shape {group_fims.shape}"
                )
            if group_fims.shape[0] != groupsize.shape[0]:
                raise ValueError(
                    f"need one group FIM per group, got {group_fims.shape[0]} "
                    f"FIMs for {groupsize.shape[0]} groups"
                )
            if group_fims.shape[1] != self.n_free:
                raise ValueError(
                    f"group FIMs must be {self.n_free}x{self.n_free} "
                    f"(one row per free parameter), got {group_fims.shape[1:]}"
                )
            object.__setattr__(self, "group_fims", group_fims)

        if self.bpop_names is not None:
            names = tuple(self.bpop_names)
            if len(names) != bpop.shape[0]:
                raise ValueError(
                    f"bpop_names must have {bpop.shape[0]} entries, got {len(names)}"
                )
            object.__setattr__(self, "bpop_names", names)

    @property
    def n_free(self) -> int:
        """Number of estimated parameters (length of the RSE vector)."""
        return int(
            self.notfixed_bpop.sum() + self.notfixed_d.sum() + self.notfixed_sigma.sum()
        )

    @property
    def total_n(self) -> float:
        return float(self.groupsize.sum())

    def free_values(self) -> NDArray[np.float64]:
        """Point values of the free parameters, ordered bpop, d, sigma."""
        return np.concatenate([
            self.bpop[self.notfixed_bpop],
            self.d[self.notfixed_d],
            self.sigma[self.notfixed_sigma],
        ])

    def free_bpop_indices(self) -> NDArray[np.intp]:
        """Full-vector indices of the estimated fixed effects."""
        return np.flatnonzero(self.notfixed_bpop)

    def with_total_n(self, n: float) -> DesignDatabase:
        """Copy of the design with group sizes rescaled to total ``n``.

        Group proportions are preserved; ``n`` may be non-integer.
        """
        if not n > 0:
            raise ValueError(f"n must be > 0, got {n}")
        total = self.total_n
        if total == 0:
            raise ValueError("cannot rescale a design with zero subjects")
        return DesignDatabase(
            bpop=self.bpop,
            notfixed_bpop=self.notfixed_bpop,
            d=self.d,
            notfixed_d=self.notfixed_d,
            sigma=self.sigma,
            notfixed_sigma=self.notfixed_sigma,
            groupsize=self.groupsize * (n / total),
            group_fims=self.group_fims,
            bpop_names=self.bpop_names,
        )

    def bpop_label(self, idx: int) -> str:
        if self.bpop_names is not None:
            return self.bpop_names[idx]
        return f"bpop[{idx}]"


# ---------------------------------------------------------------------------
# Full index -> free-subset position
# ---------------------------------------------------------------------------

def bpop_free_positions(
    notfixed_bpop: NDArray[np.bool_],
    bpop_idx: int | list[int] | NDArray[np.integer],
) -> NDArray[np.intp]:
    """Map full-vector bpop indices to positions in the free-parameter subset.

    Parameters
    ----------
    notfixed_bpop : array of bool
        Flag per fixed effect, True if it is estimated.
    bpop_idx : int or sequence of int
        0-based indices into the *full* bpop vector.

    Returns
    -------
    NDArray[intp]
        Position of each index among the free parameters. Free fixed effects
        come first in the free-parameter ordering, so these positions index
        the RSE vector directly.

    Raises
    ------
    ValueError
        If an index is out of range or names a fixed parameter.

    Examples
    --------
    >>> bpop_free_positions([True, False, True, True], [2, 3])
    array([1, 2])
    """
    flags = np.asarray(notfixed_bpop).ravel().astype(bool)
    idx = np.atleast_1d(np.asarray(bpop_idx))
    if idx.size and not np.issubdtype(idx.dtype, np.integer):
        raise ValueError(f"bpop indices must be integers, got {idx.tolist()}")
    idx = idx.astype(np.intp)

    n = flags.shape[0]
    out_of_range = idx[(idx < 0) | (idx >= n)]
    if out_of_range.size:
        raise ValueError(
            f"bpop indices {out_of_range.tolist()} out of range for {n} parameters"
        )
    fixed = idx[~flags[idx]]
    if fixed.size:
        raise ValueError(
            f"bpop indices {fixed.tolist()} refer to fixed parameters; "
            f"only non-fixed population parameters can be selected "
            f"(free indices: {np.flatnonzero(flags).tolist()})"
        )

    # position = number of free parameters strictly before the index
    free_rank = np.cumsum(flags) - 1
    return free_rank[idx]
