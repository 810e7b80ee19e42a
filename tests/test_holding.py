"""Tests for the holding calculation and its defaults-mode state machine.

Formulas:
  taxable portion = dividend × 0.05          (§ 8b Abs. 1, 5 KStG)
  KSt             = taxable portion × rate
  Soli            = KSt × soli rate
  GewSt           = 0 if exempt else taxable portion × rate
"""

import pytest

from app import HoldingState, LockedFieldError, calc_holding, holding_results


class TestCalcHolding:
    def test_average_values(self):
        r = calc_holding(200_000, 0.15, 0.055, 0.14, True)
        assert r["taxable_portion"] == pytest.approx(10_000)
        assert r["kst"] == pytest.approx(1_500)
        assert r["soli"] == pytest.approx(82.5)
        assert r["gewst"] == 0.0
        assert r["total_tax"] == pytest.approx(1_582.5)
        assert r["net_to_holding"] == pytest.approx(198_417.5)
        assert r["eff_tax_rate"] == pytest.approx(0.0079125)

    def test_trade_tax_when_not_exempt(self):
        r = calc_holding(200_000, 0.15, 0.055, 0.14, False)
        assert r["gewst"] == pytest.approx(1_400)
        assert r["total_tax"] == pytest.approx(2_982.5)

    @pytest.mark.parametrize("dividend,kst,soli,gewst,exempt", [
        (200_000, 0.15, 0.055, 0.14, False),
        (20_000, 0.15, 0.055, 0.14, True),
        (1_234_567, 0.2, 0.1, 0.3, False),
        (0, 1.0, 1.0, 1.0, False),
    ])
    def test_totals_are_exact_sums(self, dividend, kst, soli, gewst, exempt):
        r = calc_holding(dividend, kst, soli, gewst, exempt)
        assert r["total_tax"] == r["kst"] + r["soli"] + r["gewst"]
        assert r["net_to_holding"] == dividend - r["total_tax"]

    @pytest.mark.parametrize("exempt", [True, False])
    def test_zero_dividend_has_zero_effective_rate(self, exempt):
        r = calc_holding(0, 0.3, 0.1, 0.2, exempt)
        assert r["eff_tax_rate"] == 0.0


class TestHoldingState:
    def test_starts_in_defaults_mode(self, holding_defaults):
        state = HoldingState(holding_defaults)
        assert state.use_defaults is True
        assert state.dividend == 200_000
        assert state.kst_rate == 0.15
        assert state.soli_rate == 0.055
        assert state.trade_tax_exempt is True
        assert state.gewst_rate == 0.14

    def test_edits_rejected_in_defaults_mode(self, holding_defaults):
        state = HoldingState(holding_defaults)
        with pytest.raises(LockedFieldError):
            state.set_field("dividend", 1)
        with pytest.raises(LockedFieldError):
            state.set_field("trade_tax_exempt", False)
        assert state.dividend == 200_000
        assert state.trade_tax_exempt is True

    def test_leaving_defaults_mode_keeps_values(self, holding_defaults):
        state = HoldingState(holding_defaults)
        state.set_use_defaults(False)
        assert state.use_defaults is False
        assert state.dividend == 200_000
        assert state.gewst_rate == 0.14

    def test_custom_edits(self, holding_defaults):
        state = HoldingState(holding_defaults)
        state.set_use_defaults(False)
        state.set_field("dividend", 50_000)
        state.set_field("trade_tax_exempt", False)
        assert state.dividend == 50_000.0
        assert isinstance(state.dividend, float)
        assert state.trade_tax_exempt is False

    def test_entering_defaults_mode_resets_every_field(self, holding_defaults):
        state = HoldingState(holding_defaults)
        state.set_use_defaults(False)
        state.set_field("dividend", 1)
        state.set_field("kst_rate", 0.3)
        state.set_field("soli_rate", 0.0)
        state.set_field("trade_tax_exempt", False)
        state.set_field("gewst_rate", 0.2)

        state.set_use_defaults(True)

        assert (state.dividend, state.kst_rate, state.soli_rate,
                state.trade_tax_exempt, state.gewst_rate) == (200_000, 0.15, 0.055, True, 0.14)

    def test_unknown_field(self, holding_defaults):
        state = HoldingState(holding_defaults, use_defaults=False)
        with pytest.raises(KeyError):
            state.set_field("nonsense", 1)

    def test_locked_error_is_value_error(self):
        assert issubclass(LockedFieldError, ValueError)

    def test_results_follow_state(self, holding_defaults):
        state = HoldingState(holding_defaults)
        assert holding_results(state)["net_to_holding"] == pytest.approx(198_417.5)

        state.set_use_defaults(False)
        state.set_field("dividend", 0)
        r = holding_results(state)
        assert r["net_to_holding"] == 0.0
        assert r["eff_tax_rate"] == 0.0
