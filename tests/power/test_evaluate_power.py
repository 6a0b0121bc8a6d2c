"""Tests for evaluate_power."""

import logging
import math

import numpy as np
import pytest

from pmxdesign.design import DesignDatabase, FIMResult, MinNResult, calc_ofv_and_fim
from pmxdesign.power import PowerEvaluationResult, evaluate_power


def _must_not_call(*args, **kwargs):
    raise AssertionError("collaborator should not have been called")


class _Spy:
    """Records calls and delegates to a real collaborator."""

    def __init__(self, func):
        self.func = func
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return self.func(*args, **kwargs)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class TestValidation:
    """Usage errors abort before any computation."""

    def test_missing_index(self, pk_design):
        with pytest.raises(ValueError, match="must be given"):
            evaluate_power(pk_design, None)

    def test_empty_index(self, pk_design):
        with pytest.raises(ValueError, match="at least one"):
            evaluate_power(pk_design, [])

    def test_fixed_parameter(self, pk_design):
        """V (index 1) is fixed."""
        with pytest.raises(ValueError, match="fixed parameters"):
            evaluate_power(pk_design, [1], fim_calculator=_must_not_call)

    def test_out_of_range(self, pk_design):
        with pytest.raises(ValueError, match="out of range"):
            evaluate_power(pk_design, [7], fim_calculator=_must_not_call)

    def test_zero_true_value(self, pk_design):
        """EFF (index 3) is zero: 0% power, fail before FIM/RSE/search."""
        with pytest.raises(ValueError, match="0% power"):
            evaluate_power(
                pk_design, [3],
                fim_calculator=_must_not_call,
                rse_calculator=_must_not_call,
                min_n_searcher=_must_not_call,
            )

    def test_zero_among_several(self, pk_design):
        with pytest.raises(ValueError, match=r"\[3\]"):
            evaluate_power(pk_design, [0, 3], fim_calculator=_must_not_call)

    def test_invalid_alpha(self, pk_design):
        with pytest.raises(ValueError, match="alpha"):
            evaluate_power(pk_design, 0, alpha=1.5)

    def test_invalid_power(self, pk_design):
        with pytest.raises(ValueError, match="power"):
            evaluate_power(pk_design, 0, power=160.0)


# ---------------------------------------------------------------------------
# Power table
# ---------------------------------------------------------------------------

class TestPowerTable:
    """Predicted power and required RSE per parameter."""

    def test_returns_result(self, pk_design):
        res = evaluate_power(pk_design, [0, 2], find_min_n=False)
        assert isinstance(res, PowerEvaluationResult)
        assert len(res.power) == 2

    def test_values_and_rse(self, pk_design):
        res = evaluate_power(pk_design, [0, 2], find_min_n=False)
        np.testing.assert_allclose(res.power.value, [1.0, 0.5])
        np.testing.assert_allclose(
            res.power.rse, [100 * math.sqrt(1 / 40), 100 * math.sqrt(1 / 80) / 0.5],
        )

    def test_index_mapping_skips_fixed(self, pk_design):
        """KA is bpop[2] but free position 1: its RSE is not V's or EFF's."""
        res = evaluate_power(pk_design, 2, find_min_n=False)
        assert res.power.rse[0] == pytest.approx(res.rse[1])
        assert res.power.labels == ("KA",)

    def test_predicted_power(self, pk_design):
        res = evaluate_power(pk_design, [0, 2], find_min_n=False)
        assert res.power.pred_power[0] == 100.0
        assert res.power.pred_power[1] == pytest.approx(99.4, abs=0.1)

    def test_need_rse_and_want_power(self, pk_design):
        res = evaluate_power(pk_design, [0, 2], find_min_n=False)
        np.testing.assert_allclose(res.power.want_power, [80.0, 80.0])
        np.testing.assert_allclose(res.power.need_rse, [35.694, 35.694], atol=1e-3)
        assert res.power.finite_need_rse

    def test_full_rse_vector_kept(self, pk_design):
        res = evaluate_power(pk_design, 0, find_min_n=False)
        assert res.rse.shape == (5,)

    def test_ofv_from_calculator(self, pk_design, pk_fim):
        res = evaluate_power(pk_design, 0, find_min_n=False)
        np.testing.assert_allclose(res.fim, pk_fim)
        assert res.ofv == pytest.approx(np.log(np.linalg.det(pk_fim)))

    def test_scenario_rse20(self, pk_design):
        """alpha=0.05 two-sided, RSE=20% -> 99.9%, needRSE(80%) = 35.7%."""
        rse = np.array([20.0, 30.0, 1.0, 10.0, 10.0])
        res = evaluate_power(pk_design, 0, rse=rse, find_min_n=False)
        assert res.power.pred_power[0] == 99.9
        assert res.power.need_rse[0] == pytest.approx(35.7, abs=0.05)

    def test_two_sided_vs_one_sided(self, pk_design):
        """One-sided uses alpha, two-sided alpha/2: results differ."""
        two = evaluate_power(pk_design, 2, find_min_n=False, two_sided=True)
        one = evaluate_power(pk_design, 2, find_min_n=False, two_sided=False)
        assert one.power.need_rse[0] > two.power.need_rse[0]
        assert one.power.pred_power[0] >= two.power.pred_power[0]
        assert two.options.effective_alpha == 0.025
        assert one.options.effective_alpha == 0.05

    def test_higher_target_needs_lower_rse(self, pk_design):
        r80 = evaluate_power(pk_design, 2, power=80, find_min_n=False)
        r90 = evaluate_power(pk_design, 2, power=90, find_min_n=False)
        assert r90.power.need_rse[0] < r80.power.need_rse[0]

    def test_unbounded_need_rse(self, pk_design):
        """Target power below alpha is surfaced as inf, never negative."""
        res = evaluate_power(pk_design, 2, power=1.0, find_min_n=False)
        assert res.power.need_rse[0] == math.inf
        assert not res.power.finite_need_rse
        assert "NOTE" in res.summary()

    def test_summary(self, pk_design):
        text = evaluate_power(pk_design, [0, 2]).summary()
        assert "KA" in text
        assert "min_N" in text
        assert "two-sided" in text


# ---------------------------------------------------------------------------
# FIM / RSE resolution
# ---------------------------------------------------------------------------

class TestFimResolution:
    """Which FIM is used, and which collaborators run."""

    def test_supplied_fim_bypasses_calculator(self, pk_design, pk_fim):
        res = evaluate_power(
            pk_design, 0, fim=pk_fim, find_min_n=False, fim_calculator=_must_not_call,
        )
        np.testing.assert_allclose(res.fim, pk_fim)
        assert res.ofv is None

    def test_out_fim_bypasses_calculator(self, pk_design):
        out = calc_ofv_and_fim(pk_design)
        res = evaluate_power(
            pk_design, 0, out=out, find_min_n=False, fim_calculator=_must_not_call,
        )
        np.testing.assert_allclose(res.fim, out.fim)
        assert res.ofv == out.ofv

    def test_explicit_fim_wins_over_out(self, pk_design, pk_fim):
        """An explicit fim takes precedence over the FIM inside ``out``."""
        stale = FIMResult(fim=4.0 * pk_fim, ofv=123.0, ofv_calc_type="lnD")
        res = evaluate_power(
            pk_design, 0, fim=pk_fim, out=stale, find_min_n=False,
            fim_calculator=_must_not_call,
        )
        np.testing.assert_allclose(res.fim, pk_fim)
        assert res.ofv is None
        assert res.power.rse[0] == pytest.approx(100 * math.sqrt(1 / 40))

    def test_out_without_fim_computes(self, pk_design, pk_fim):
        class _Empty:
            fim = None

        spy = _Spy(calc_ofv_and_fim)
        res = evaluate_power(pk_design, 0, out=_Empty(), find_min_n=False, fim_calculator=spy)
        assert len(spy.calls) == 1
        np.testing.assert_allclose(res.fim, pk_fim)

    def test_previous_result_reused(self, pk_design):
        first = evaluate_power(pk_design, 0, find_min_n=False)
        second = evaluate_power(
            pk_design, 2, out=first, find_min_n=False, fim_calculator=_must_not_call,
        )
        np.testing.assert_allclose(second.fim, first.fim)

    def test_supplied_rse_skips_fim_and_rse(self, pk_design):
        rse = np.array([25.0, 30.0, 1.0, 10.0, 10.0])
        res = evaluate_power(
            pk_design, [0, 2], rse=rse, find_min_n=False,
            fim_calculator=_must_not_call, rse_calculator=_must_not_call,
        )
        assert res.fim is None
        np.testing.assert_allclose(res.power.rse, [25.0, 30.0])

    def test_fim_wins_over_supplied_rse(self, pk_design, pk_fim):
        rse = np.array([25.0, 30.0, 1.0, 10.0, 10.0])
        res = evaluate_power(pk_design, 0, fim=pk_fim, rse=rse, find_min_n=False)
        assert res.power.rse[0] == pytest.approx(100 * math.sqrt(1 / 40))

    def test_rse_length_mismatch(self, pk_design):
        with pytest.raises(ValueError, match="one entry per free parameter"):
            evaluate_power(pk_design, 0, rse=np.ones(3), find_min_n=False)

    def test_options_forwarded(self, pk_design):
        """Unrecognised keywords reach the collaborators verbatim."""
        fim_spy = _Spy(calc_ofv_and_fim)
        res = evaluate_power(
            pk_design, 0, find_min_n=False, fim_calculator=fim_spy, ofv_calc_type="D",
        )
        assert fim_spy.calls[0][1] == {"ofv_calc_type": "D"}
        assert res.options.extra["ofv_calc_type"] == "D"
        assert res.ofv == pytest.approx(np.linalg.det(res.fim))

    def test_collaborator_failure_propagates(self, pk_design):
        def broken(design, **options):
            raise np.linalg.LinAlgError("singular")

        with pytest.raises(np.linalg.LinAlgError):
            evaluate_power(pk_design, 0, fim_calculator=broken)

    def test_design_not_modified(self, pk_design):
        before = pk_design.groupsize.copy()
        evaluate_power(pk_design, [0, 2])
        np.testing.assert_array_equal(pk_design.groupsize, before)

    def test_mapping_out_fim_used(self, pk_design, pk_fim):
        """A plain dict bundle is read like a previous result."""
        res = evaluate_power(
            pk_design, 0, out={"fim": pk_fim, "ofv": 1.5}, find_min_n=False,
            fim_calculator=_must_not_call,
        )
        np.testing.assert_allclose(res.fim, pk_fim)
        assert res.ofv == 1.5

    def test_mapping_out_without_fim_computes(self, pk_design, pk_fim):
        spy = _Spy(calc_ofv_and_fim)
        res = evaluate_power(pk_design, 0, out={"ofv": 1.5}, find_min_n=False, fim_calculator=spy)
        assert len(spy.calls) == 1
        np.testing.assert_allclose(res.fim, pk_fim)

    def test_non_positive_definite_fim_gives_nan_power(self, caplog):
        """Negative variances in inv(FIM) must not be reported as full power."""
        design = DesignDatabase(bpop=[1.0, 1.0])
        bad = np.array([[1.0, 2.0], [2.0, 1.0]])
        with caplog.at_level(logging.WARNING, logger="pmxdesign"):
            res = evaluate_power(design, 0, fim=bad, find_min_n=False)
        assert math.isnan(res.power.rse[0])
        assert math.isnan(res.power.pred_power[0])
        assert "power reported as nan" in caplog.text

    def test_non_positive_definite_fim_min_n_raises(self):
        design = DesignDatabase(
            bpop=[1.0, 1.0], groupsize=[10], group_fims=[[[1.0, 2.0], [2.0, 1.0]]],
        )
        with pytest.raises(ValueError, match="not positive definite"):
            evaluate_power(design, 0)


# ---------------------------------------------------------------------------
# Minimum N
# ---------------------------------------------------------------------------

class TestMinN:
    """Optional minimum sample size search."""

    def test_min_n_attached(self, pk_design):
        res = evaluate_power(pk_design, 2)
        assert res.power.min_n is not None
        assert res.power.min_n[0] == 8
        assert isinstance(res.min_n_result, MinNResult)

    def test_min_n_same_for_every_row(self, pk_design):
        res = evaluate_power(pk_design, [0, 2])
        np.testing.assert_array_equal(res.power.min_n, [8, 8])

    def test_find_min_n_false(self, pk_design):
        res = evaluate_power(pk_design, [0, 2], find_min_n=False, min_n_searcher=_must_not_call)
        assert res.power.min_n is None
        assert res.min_n_result is None
        assert "min_N" not in res.power.summary()

    def test_searcher_receives_need_rse(self, pk_design):
        captured = {}

        def searcher(design, bpop_idx, need_rse, **options):
            captured.update(idx=list(bpop_idx), need_rse=need_rse, options=options)
            return MinNResult(n=42, n_continuous=41.5, rse=np.array([1.0]), need_rse=need_rse)

        res = evaluate_power(pk_design, [2], min_n_searcher=searcher, n_bounds=(1, 50))
        assert captured["idx"] == [2]
        assert captured["need_rse"] == pytest.approx(res.power.need_rse[0])
        assert captured["options"]["n_bounds"] == (1, 50)
        assert "fim_calculator" in captured["options"]
        assert res.power.min_n[0] == 42

    def test_infeasible_search_propagates(self, pk_design):
        """No default value is substituted when the search fails."""
        with pytest.raises(ValueError, match="not reached"):
            evaluate_power(pk_design, 2, n_bounds=(1.0, 5.0))

    def test_unbounded_need_rse_gives_lower_bound(self, pk_design):
        res = evaluate_power(pk_design, 2, power=1.0, n_bounds=(3.0, 100.0))
        assert res.power.min_n[0] == 3

    def test_min_n_reaches_target_power(self, pk_design):
        """The design rescaled to min_N has at least the target power."""
        res = evaluate_power(pk_design, 2, power=90)
        scaled = pk_design.with_total_n(res.power.min_n[0])
        check = evaluate_power(scaled, 2, power=90, find_min_n=False)
        assert check.power.pred_power[0] >= 90.0
