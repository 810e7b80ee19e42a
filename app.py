"""Digitale Steuer-Tools - Holding-Rechner & Geschäftsführer-Optimierung"""

import json
import math
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

import plotly.graph_objects as go
import streamlit as st

from logging_config import setup_logger

logger = setup_logger(__name__)

DATA_DIR = Path(__file__).parent / "data"

PAGE_TITLE = "Digitale Steuer-Tools"

# § 8b Abs. 1, 5 KStG: 95 % of the dividend is tax-free, 5 % counts as expenses
HOLDING_TAXABLE_SHARE = 0.05

# § 32d Abs. 1 EStG
ABGELTUNGSTEUER_RATE = 0.25

# § 3 Nr. 40 EStG
TEILEINKUENFTE_SHARE = 0.6

MODE_FLAT_TAX = "Abgeltungsteuer 25%"
MODE_PARTIAL_INCOME = "Teileinkünfteverfahren (60%)"


# ---------------------------------------------------------------------------
# Data loading
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HoldingDefaults:
    dividend: float
    kst_rate: float
    soli_rate: float
    trade_tax_exempt: bool
    gewst_rate: float


@dataclass(frozen=True)
class GfDefaults:
    gross_salary: float
    dividend: float
    personal_tax_rate: float
    church_tax_rate: float
    employee_sv_rate: float
    flat_tax: bool
    soli_rate: float


@dataclass(frozen=True)
class PageInfo:
    subtitle: str
    owner: str
    disclaimer: str


@st.cache_data(show_spinner=False)
def load_json(filename: str) -> dict:
    with open(DATA_DIR / filename, encoding="utf-8") as f:
        data = json.load(f)
    logger.info(f"Loaded {filename} ({len(data)} sections)")
    return data


def load_holding_defaults() -> HoldingDefaults:
    raw = load_json("defaults.json")["holding"]
    return HoldingDefaults(
        dividend=float(raw["dividend"]),
        kst_rate=float(raw["kst_rate"]),
        soli_rate=float(raw["soli_rate"]),
        trade_tax_exempt=bool(raw["trade_tax_exempt"]),
        gewst_rate=float(raw["gewst_rate"]),
    )


def load_gf_defaults() -> GfDefaults:
    raw = load_json("defaults.json")["geschaeftsfuehrer"]
    return GfDefaults(
        gross_salary=float(raw["gross_salary"]),
        dividend=float(raw["dividend"]),
        personal_tax_rate=float(raw["personal_tax_rate"]),
        church_tax_rate=float(raw["church_tax_rate"]),
        employee_sv_rate=float(raw["employee_sv_rate"]),
        flat_tax=bool(raw["flat_tax"]),
        soli_rate=float(raw["soli_rate"]),
    )


def load_page_info() -> PageInfo:
    raw = load_json("defaults.json")["page"]
    return PageInfo(subtitle=raw["subtitle"], owner=raw["owner"], disclaimer=raw["disclaimer"])


# ---------------------------------------------------------------------------
# Formatting & input parsing
# ---------------------------------------------------------------------------

_NUMBER_PREFIX = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def fmt(n) -> str:
    """Whole euros in German notation, e.g. ``198.418 €``. Non-finite input counts as 0."""
    try:
        value = float(n)
    except (TypeError, ValueError):
        value = 0.0
    if not math.isfinite(value):
        value = 0.0
    rounded = int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return f"{rounded:,}".replace(",", ".") + "\u00a0€"


def pct(n: float) -> str:
    return f"{n * 100:.2f} %"


def parse_number(raw) -> float:
    """Coerce raw widget input to a float.

    Empty, missing or malformed input becomes 0. Text is read like a
    browser's ``parseFloat``: the leading numeric prefix wins, so ``"12abc"``
    gives 12. A lone decimal comma is accepted (``"0,15"``).
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if "," in text and "." not in text:
            text = text.replace(",", ".", 1)
        match = _NUMBER_PREFIX.match(text)
        if match is None:
            return 0.0
        value = float(match.group(0))
    return value if math.isfinite(value) else 0.0


# ---------------------------------------------------------------------------
# Generic widgets
# ---------------------------------------------------------------------------

def _on_number_change(key: str, on_change) -> None:
    value = parse_number(st.session_state[key])
    logger.debug(f"{key} -> {value}")
    on_change(value)


def _on_toggle(on_change, value: bool) -> None:
    on_change(value)


def number_field(
    label: str,
    value: float,
    on_change,
    *,
    key: str,
    step: float = 1,
    min_value: float = 0,
    suffix: str = None,
    hint: str = None,
    disabled: bool = False,
    format: str = None,
) -> None:
    """Labeled numeric input bound to a caller-owned value.

    ``min_value`` and ``step`` only shape the control; the parsed number is
    handed to ``on_change`` and the caller decides what to store.
    """
    step = float(step)
    if format is None:
        format = "%.0f" if step >= 1 else "%.4f"
    if hint:
        label = f"{label} :gray[{hint}]"

    # Controlled widget: the caller's value wins on every rerun
    st.session_state[key] = parse_number(value)

    control, unit = st.columns([5, 1], vertical_alignment="bottom")
    control.number_input(
        label,
        value=None,
        min_value=float(min_value),
        step=step,
        format=format,
        key=key,
        disabled=disabled,
        on_change=_on_number_change,
        args=(key, on_change),
    )
    if suffix:
        unit.markdown(f":gray[{suffix}]")


def toggle(label: str, checked: bool, on_change, *, key: str, disabled: bool = False) -> None:
    """Labeled switch; activation calls ``on_change(not checked)``."""
    st.session_state[key] = bool(checked)
    st.toggle(
        label,
        key=key,
        disabled=disabled,
        on_change=_on_toggle,
        args=(on_change, not checked),
    )


@contextmanager
def section(title: str, subtitle: str = None, actions=None):
    """Bordered panel with a title row; ``actions`` renders into the right of it."""
    with st.container(border=True):
        head, slot = st.columns([3, 1])
        head.subheader(title)
        if subtitle:
            head.caption(subtitle)
        if actions is not None:
            with slot:
                actions()
        yield


def result_card(label: str, value: str, caption: str = None) -> None:
    with st.container(border=True):
        if caption:
            st.caption(caption)
        st.metric(label, value)


# ---------------------------------------------------------------------------
# Calculator state
# ---------------------------------------------------------------------------

class LockedFieldError(ValueError):
    """A field was edited while it is pinned (defaults mode or a fixed constant)."""


class DefaultsMode:
    """Two-state machine shared by both calculators.

    While ``use_defaults`` is set, every field in ``FIELDS`` mirrors
    ``self.defaults`` and rejects edits. Switching it on snaps the fields back
    to the defaults; switching it off leaves the current values in place.
    """

    NAME = "calculator"
    FIELDS: tuple = ()
    LOCKED: tuple = ()

    def __post_init__(self):
        if self.use_defaults:
            self.reset_to_defaults()

    def reset_to_defaults(self) -> None:
        for name in self.FIELDS:
            setattr(self, name, getattr(self.defaults, name))

    def set_use_defaults(self, value: bool) -> None:
        self.use_defaults = bool(value)
        if self.use_defaults:
            self.reset_to_defaults()
        logger.info(f"{self.NAME}: defaults mode {'on' if self.use_defaults else 'off'}")

    def set_field(self, name: str, value) -> None:
        if name in self.LOCKED:
            raise LockedFieldError(f"{self.NAME}.{name} is fixed")
        if name not in self.FIELDS:
            raise KeyError(name)
        if self.use_defaults:
            logger.warning(f"{self.NAME}: rejected edit of {name} in defaults mode")
            raise LockedFieldError(f"{self.NAME}.{name} is pinned to its default")

        if isinstance(getattr(self.defaults, name), bool):
            value = bool(value)
        else:
            value = float(value)
        setattr(self, name, value)
        logger.debug(f"{self.NAME}.{name} = {value}")


@dataclass
class HoldingState(DefaultsMode):
    defaults: HoldingDefaults = field(repr=False)
    use_defaults: bool = True
    dividend: float = 0.0
    kst_rate: float = 0.0
    soli_rate: float = 0.0
    trade_tax_exempt: bool = False
    gewst_rate: float = 0.0

    NAME = "holding"
    FIELDS = ("dividend", "kst_rate", "soli_rate", "trade_tax_exempt", "gewst_rate")


@dataclass
class GfState(DefaultsMode):
    defaults: GfDefaults = field(repr=False)
    use_defaults: bool = True
    gross_salary: float = 0.0
    dividend: float = 0.0
    personal_tax_rate: float = 0.0
    church_tax_rate: float = 0.0
    employee_sv_rate: float = 0.0
    flat_tax: bool = False
    soli_rate: float = 0.0

    NAME = "geschaeftsfuehrer"
    FIELDS = (
        "gross_salary", "dividend", "personal_tax_rate",
        "church_tax_rate", "employee_sv_rate", "flat_tax",
    )
    LOCKED = ("soli_rate",)

    def __post_init__(self):
        # Fixed constant, outside the reset set
        self.soli_rate = self.defaults.soli_rate
        super().__post_init__()


# ---------------------------------------------------------------------------
# Holding calculation
# ---------------------------------------------------------------------------

def calc_holding(
    dividend: float,
    kst_rate: float,
    soli_rate: float,
    gewst_rate: float,
    trade_tax_exempt: bool,
) -> dict:
    """Tax burden on a dividend received by a corporate holding (§ 8b KStG)."""
    taxable_portion = dividend * HOLDING_TAXABLE_SHARE
    kst = taxable_portion * kst_rate
    soli = kst * soli_rate
    gewst = 0.0 if trade_tax_exempt else taxable_portion * gewst_rate
    total_tax = kst + soli + gewst
    net_to_holding = dividend - total_tax
    eff_tax_rate = total_tax / dividend if dividend else 0.0

    return {
        "taxable_portion": taxable_portion,
        "kst": kst,
        "soli": soli,
        "gewst": gewst,
        "total_tax": total_tax,
        "net_to_holding": net_to_holding,
        "eff_tax_rate": eff_tax_rate,
    }


def holding_results(state: HoldingState) -> dict:
    return calc_holding(
        state.dividend, state.kst_rate, state.soli_rate,
        state.gewst_rate, state.trade_tax_exempt,
    )


# ---------------------------------------------------------------------------
# Managing-director calculation
# ---------------------------------------------------------------------------

def calc_salary_net(
    gross_salary: float,
    employee_sv_rate: float,
    personal_tax_rate: float,
    church_tax_rate: float,
    soli_rate: float,
) -> dict:
    """Net pay from a managing-director salary."""
    sv = gross_salary * employee_sv_rate
    taxable = max(0.0, gross_salary - sv)
    income_tax = taxable * personal_tax_rate
    soli = income_tax * soli_rate
    church = income_tax * church_tax_rate
    net = gross_salary - sv - income_tax - soli - church

    return {
        "sv": sv,
        "taxable": taxable,
        "income_tax": income_tax,
        "soli": soli,
        "church": church,
        "net": net,
    }


def calc_distribution_net(
    dividend: float,
    flat_tax: bool,
    personal_tax_rate: float,
    church_tax_rate: float,
    soli_rate: float,
) -> dict:
    """Net from a profit distribution, under flat tax or the partial-income method."""
    if flat_tax:
        withholding = dividend * ABGELTUNGSTEUER_RATE
        soli = withholding * soli_rate
        church = withholding * church_tax_rate
        net = dividend - withholding - soli - church
        return {
            "withholding": withholding,
            "soli": soli,
            "church": church,
            "net": net,
            "mode": MODE_FLAT_TAX,
        }

    taxable_base = dividend * TEILEINKUENFTE_SHARE
    income_tax = taxable_base * personal_tax_rate
    soli = income_tax * soli_rate
    church = income_tax * church_tax_rate
    net = dividend - income_tax - soli - church
    return {
        "taxable_base": taxable_base,
        "income_tax": income_tax,
        "soli": soli,
        "church": church,
        "net": net,
        "mode": MODE_PARTIAL_INCOME,
    }


def compare_net(salary: dict, distribution: dict) -> dict:
    """Pick the better route. A tie counts for the salary."""
    if distribution["net"] > salary["net"]:
        difference = distribution["net"] - salary["net"]
        return {
            "winner": "distribution",
            "difference": difference,
            "message": f"🔹 Ausschüttung bringt aktuell {fmt(difference)} mehr Netto",
        }
    difference = salary["net"] - distribution["net"]
    return {
        "winner": "salary",
        "difference": difference,
        "message": f"🔹 Gehalt bringt aktuell {fmt(difference)} mehr Netto",
    }


def gf_results(state: GfState) -> tuple:
    """Return ``(salary, distribution, comparison)`` for the current state."""
    salary = calc_salary_net(
        state.gross_salary, state.employee_sv_rate, state.personal_tax_rate,
        state.church_tax_rate, state.soli_rate,
    )
    distribution = calc_distribution_net(
        state.dividend, state.flat_tax, state.personal_tax_rate,
        state.church_tax_rate, state.soli_rate,
    )
    return salary, distribution, compare_net(salary, distribution)


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------

def holding_waterfall(dividend: float, results: dict) -> go.Figure:
    fig = go.Figure(
        go.Waterfall(
            orientation="v",
            measure=["absolute", "relative", "relative", "relative", "total"],
            x=["Dividende", "KSt", "Soli", "GewSt", "Netto"],
            y=[dividend, -results["kst"], -results["soli"], -results["gewst"], 0],
            connector={"line": {"color": "rgb(63, 63, 63)"}},
            decreasing={"marker": {"color": "#e74c3c"}},
            totals={"marker": {"color": "#3498db"}},
            textposition="outside",
            text=[
                fmt(dividend), fmt(-results["kst"]), fmt(-results["soli"]),
                fmt(-results["gewst"]), fmt(results["net_to_holding"]),
            ],
        )
    )
    fig.update_layout(
        title="Dividende → Nettozufluss",
        showlegend=False,
        height=380,
        yaxis_title="EUR",
    )
    return fig


def gf_comparison_chart(salary: dict, distribution: dict) -> go.Figure:
    routes = ["Gehalt", "Ausschüttung"]
    tax_label = "Abgeltungsteuer" if "withholding" in distribution else "Einkommensteuer"
    components = [
        ("Netto", salary["net"], distribution["net"], "#2ecc71"),
        ("Sozialabgaben", salary["sv"], 0.0, "#95a5a6"),
        (f"ESt / {tax_label}", salary["income_tax"],
         distribution.get("withholding", distribution.get("income_tax", 0.0)), "#e74c3c"),
        ("Soli", salary["soli"], distribution["soli"], "#e67e22"),
        ("Kirchensteuer", salary["church"], distribution["church"], "#9b59b6"),
    ]

    fig = go.Figure()
    for name, from_salary, from_distribution, color in components:
        fig.add_trace(go.Bar(name=name, x=routes, y=[from_salary, from_distribution], marker_color=color))
    fig.update_layout(
        barmode="stack",
        title="Zusammensetzung Brutto",
        height=380,
        yaxis_title="EUR",
    )
    return fig


# ---------------------------------------------------------------------------
# Streamlit UI
# ---------------------------------------------------------------------------

def _session_state(key: str, factory):
    if key not in st.session_state:
        st.session_state[key] = factory()
    return st.session_state[key]


def _setter(state: DefaultsMode, name: str):
    return lambda value: state.set_field(name, value)


def holding_calculator(defaults: HoldingDefaults) -> None:
    state = _session_state("holding_state", lambda: HoldingState(defaults))
    locked = state.use_defaults

    with section(
        "Holding-Struktur-Rechner",
        subtitle="Effektive Steuerbelastung gem. § 8b KStG (95 % steuerfrei). Durchschnittswerte/Näherungen.",
        actions=lambda: toggle(
            "Durchschnittswerte verwenden", state.use_defaults, state.set_use_defaults,
            key="holding_use_defaults",
        ),
    ):
        inputs, outputs = st.columns([1, 2], gap="large")

        with inputs:
            number_field("Dividende an die Holding", state.dividend, _setter(state, "dividend"),
                         key="holding_dividend", step=1000, suffix="€", hint="Durchschnitt", disabled=locked)
            number_field("Körperschaftsteuer (KSt)", state.kst_rate, _setter(state, "kst_rate"),
                         key="holding_kst_rate", step=0.005, suffix="Quote", hint="Ø 15%", disabled=locked)
            number_field("Soli auf KSt", state.soli_rate, _setter(state, "soli_rate"),
                         key="holding_soli_rate", step=0.001, suffix="Quote", hint="Ø 5,5%", disabled=locked)
            number_field("Gewerbesteuer (falls nicht befreit)", state.gewst_rate, _setter(state, "gewst_rate"),
                         key="holding_gewst_rate", step=0.005, suffix="Quote", hint="Ø 14%", disabled=locked)
            toggle("≥ 15% Beteiligung (GewSt-Befreiung)", state.trade_tax_exempt,
                   _setter(state, "trade_tax_exempt"), key="holding_trade_tax_exempt", disabled=locked)

        results = holding_results(state)

        with outputs:
            c1, c2 = st.columns(2)
            with c1:
                result_card("Steuerpflichtiger Anteil (5%)", fmt(results["taxable_portion"]))
                result_card("Gewerbesteuer (falls fällig)", fmt(results["gewst"]))
            with c2:
                result_card("KSt + Soli (auf 5%)", fmt(results["kst"] + results["soli"]))
                result_card("Effektive Steuerquote", pct(results["eff_tax_rate"]))
            result_card("Nettozufluss zur Holding", fmt(results["net_to_holding"]))
            st.caption("Hinweis: Vereinfachtes Modell. Keine Steuerberatung.")

            with st.expander("Grafik"):
                st.plotly_chart(holding_waterfall(state.dividend, results))


def gf_calculator(defaults: GfDefaults) -> None:
    state = _session_state("gf_state", lambda: GfState(defaults))
    locked = state.use_defaults

    with section(
        "Geschäftsführer-Optimierungs-Check",
        subtitle="Vergleich Netto aus Gehalt vs. Ausschüttung – Durchschnittswerte.",
        actions=lambda: toggle(
            "Durchschnittswerte verwenden", state.use_defaults, state.set_use_defaults,
            key="gf_use_defaults",
        ),
    ):
        inputs, outputs = st.columns([1, 2], gap="large")

        with inputs:
            number_field("Bruttogehalt p.a.", state.gross_salary, _setter(state, "gross_salary"),
                         key="gf_gross_salary", step=1000, suffix="€", disabled=locked)
            number_field("Dividende p.a.", state.dividend, _setter(state, "dividend"),
                         key="gf_dividend", step=1000, suffix="€", disabled=locked)
            number_field("Grenzsteuersatz (persönlich)", state.personal_tax_rate,
                         _setter(state, "personal_tax_rate"),
                         key="gf_personal_tax_rate", step=0.01, suffix="Quote", disabled=locked)
            number_field("Kirchensteuer", state.church_tax_rate, _setter(state, "church_tax_rate"),
                         key="gf_church_tax_rate", step=0.01, suffix="Quote", disabled=locked)
            number_field("AN-Sozialabgaben", state.employee_sv_rate, _setter(state, "employee_sv_rate"),
                         key="gf_employee_sv_rate", step=0.01, suffix="Quote", disabled=locked)
            toggle("Abgeltungsteuer (statt Teileinkünfte)", state.flat_tax, _setter(state, "flat_tax"),
                   key="gf_flat_tax", disabled=locked)
            st.caption(f"Soli fest: {pct(state.soli_rate)}")

        salary, distribution, comparison = gf_results(state)

        with outputs:
            c1, c2 = st.columns(2)
            with c1:
                result_card("Netto aus Gehalt", fmt(salary["net"]))
            with c2:
                result_card("Netto aus Ausschüttung", fmt(distribution["net"]), caption=distribution["mode"])
            with st.container(border=True):
                st.caption("Vergleich")
                st.markdown(f"#### {comparison['message']}")

            with st.expander("Grafik"):
                st.plotly_chart(gf_comparison_chart(salary, distribution))


def main():
    st.set_page_config(page_title=PAGE_TITLE, layout="wide")
    page = load_page_info()

    st.title(PAGE_TITLE)
    st.caption(page.subtitle)

    holding_calculator(load_holding_defaults())
    gf_calculator(load_gf_defaults())

    with section("Disclaimer", subtitle="Bitte sichtbar auf der Seite lassen"):
        st.write(page.disclaimer)

    st.caption(f"© {date.today().year} – {page.owner}")


if __name__ == "__main__":
    main()
