"""UI behaviour of both pages, driven through Streamlit's AppTest."""

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

ROOT = Path(__file__).resolve().parent.parent
NBSP = "\u00a0"


@pytest.fixture
def at():
    app_test = AppTest.from_file(str(ROOT / "app.py"), default_timeout=30)
    app_test.run()
    assert not app_test.exception
    return app_test


def _metric_values(app_test) -> list:
    return [m.value for m in app_test.metric]


class TestMainPage:
    def test_renders_both_calculators(self, at):
        values = _metric_values(at)
        assert f"10.000{NBSP}€" in values
        assert f"198.418{NBSP}€" in values
        assert "0.79 %" in values
        assert f"86.544{NBSP}€" in values
        assert f"114.090{NBSP}€" in values

    def test_defaults_mode_disables_every_input(self, at):
        for key in ["holding_dividend", "holding_kst_rate", "holding_soli_rate", "holding_gewst_rate",
                    "gf_gross_salary", "gf_dividend", "gf_personal_tax_rate",
                    "gf_church_tax_rate", "gf_employee_sv_rate"]:
            assert at.number_input(key=key).proto.disabled, key
        assert at.toggle(key="holding_trade_tax_exempt").proto.disabled
        assert at.toggle(key="gf_flat_tax").proto.disabled
        assert not at.toggle(key="holding_use_defaults").proto.disabled

    def test_leaving_defaults_mode_enables_inputs(self, at):
        at.toggle(key="holding_use_defaults").set_value(False).run()

        assert not at.number_input(key="holding_dividend").proto.disabled
        assert not at.toggle(key="holding_trade_tax_exempt").proto.disabled
        assert at.number_input(key="holding_dividend").value == 200_000.0
        # The other calculator is untouched
        assert at.number_input(key="gf_dividend").proto.disabled

    def test_edit_then_reenter_defaults_mode(self, at):
        at.toggle(key="holding_use_defaults").set_value(False).run()
        at.number_input(key="holding_dividend").set_value(100_000.0).run()
        assert at.session_state["holding_state"].dividend == 100_000.0
        assert f"5.000{NBSP}€" in _metric_values(at)

        at.toggle(key="holding_use_defaults").set_value(True).run()
        assert at.session_state["holding_state"].dividend == 200_000.0
        assert at.number_input(key="holding_dividend").value == 200_000.0

    def test_empty_input_is_stored_as_zero(self, at):
        at.toggle(key="gf_use_defaults").set_value(False).run()
        at.number_input(key="gf_dividend").set_value(None).run()

        assert not at.exception
        assert at.session_state["gf_state"].dividend == 0.0
        assert at.number_input(key="gf_dividend").value == 0.0

    def test_flat_tax_toggle(self, at):
        at.toggle(key="gf_use_defaults").set_value(False).run()
        at.toggle(key="gf_flat_tax").set_value(True).run()

        assert at.session_state["gf_state"].flat_tax is True
        assert f"107.250{NBSP}€" in _metric_values(at)


class TestRechenwegPage:
    @pytest.fixture
    def page(self):
        app_test = AppTest.from_file(str(ROOT / "pages" / "1_Rechenweg.py"), default_timeout=30)
        app_test.run()
        assert not app_test.exception
        return app_test

    def test_scenario_selection(self, page, rechenweg):
        page.selectbox(key="holding_scenario").set_value(rechenweg.HOLDING_SCENARIOS[1]["name"]).run()
        assert f"2.983{NBSP}€" in _metric_values(page)

    def test_batch_runner(self, page, rechenweg):
        page.button(key="holding_batch").click().run()
        assert not page.exception
        assert len(page.dataframe[0].value) == len(rechenweg.HOLDING_SCENARIOS)

    def test_gf_batch_runner(self, page, rechenweg):
        page.radio(key="calculator").set_value(rechenweg.GF).run()
        page.button(key="gf_batch").click().run()
        assert not page.exception
        assert len(page.dataframe[0].value) == len(rechenweg.GF_SCENARIOS)


class TestReconciliation:
    """Expected values typed into the "Abgleich" table of the Rechenweg page."""

    VERDICTS = {":green[OK]", ":orange[~]", ":red[DIFF]"}

    @pytest.fixture
    def page(self):
        app_test = AppTest.from_file(str(ROOT / "pages" / "1_Rechenweg.py"), default_timeout=30)
        app_test.run()
        assert not app_test.exception
        return app_test

    def _verdicts(self, app_test) -> list:
        return [m.value for m in app_test.markdown if m.value in self.VERDICTS]

    def _cells(self, app_test) -> list:
        return [m.value for m in app_test.markdown]

    def test_nothing_entered(self, page):
        assert self._verdicts(page) == []
        # Differenz and OK? stay blank for all six rows
        assert self._cells(page).count("—") == 12

    def test_exact_match(self, page, rechenweg):
        # KSt at the holding defaults: 200.000 x 5 % x 15 % = 1.500,00
        kst = rechenweg.run_holding(rechenweg.HOLDING_SCENARIOS[0]["params"])["kst"]
        assert kst == pytest.approx(1_500)

        page.number_input(key=f"h_{rechenweg.CUSTOM}_exp_kst").set_value(1_500.0).run()

        assert not page.exception
        assert self._verdicts(page) == [":green[OK]"]
        assert self._cells(page).count("—") == 10

    def test_close_value(self, page, rechenweg):
        page.number_input(key=f"h_{rechenweg.CUSTOM}_exp_kst").set_value(1_505.0).run()

        assert self._verdicts(page) == [":orange[~]"]
        assert "-5,00" in self._cells(page)

    def test_mismatch(self, page, rechenweg):
        page.number_input(key=f"h_{rechenweg.CUSTOM}_exp_net_to_holding").set_value(190_000.0).run()

        assert self._verdicts(page) == [":red[DIFF]"]
        assert "8.417,50" in self._cells(page)

    def test_gf_match(self, page, rechenweg):
        page.radio(key="calculator").set_value(rechenweg.GF).run()
        page.number_input(key=f"gf_{rechenweg.CUSTOM}_exp_distribution_net").set_value(114_090.0).run()

        assert self._verdicts(page) == [":green[OK]"]
