"""Rechenweg & Prüfung - step-by-step transparency for both calculators."""

import sys
from pathlib import Path

import streamlit as st

# Allow importing from parent directory
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import app  # noqa: E402
from logging_config import setup_logger  # noqa: E402

logger = setup_logger(__name__)

HOLDING = "Holding-Struktur-Rechner"
GF = "Geschäftsführer-Optimierungs-Check"
CUSTOM = "Eigene Eingaben"

# ---------------------------------------------------------------------------
# Pre-built test scenarios
# ---------------------------------------------------------------------------

HOLDING_SCENARIOS = [
    {
        "name": "1. Durchschnitt 200k – GewSt-befreit",
        "cat": "Standard",
        "desc": "Schachtelbeteiligung ≥ 15 %, Durchschnittswerte",
        "params": dict(dividend=200_000, kst_rate=0.15, soli_rate=0.055,
                       gewst_rate=0.14, trade_tax_exempt=True),
    },
    {
        "name": "2. Streubesitz 200k – GewSt-pflichtig",
        "cat": "Standard",
        "desc": "Beteiligung < 15 %, Hinzurechnung zur Gewerbesteuer",
        "params": dict(dividend=200_000, kst_rate=0.15, soli_rate=0.055,
                       gewst_rate=0.14, trade_tax_exempt=False),
    },
    {
        "name": "3. Kleine Holding 20k",
        "cat": "Standard",
        "desc": "Geringe Ausschüttung, GewSt-befreit",
        "params": dict(dividend=20_000, kst_rate=0.15, soli_rate=0.055,
                       gewst_rate=0.14, trade_tax_exempt=True),
    },
    {
        "name": "4. Hoher Hebesatz 500k",
        "cat": "Edge",
        "desc": "Hebesatz 490 % (17,15 % GewSt), nicht befreit",
        "params": dict(dividend=500_000, kst_rate=0.15, soli_rate=0.055,
                       gewst_rate=0.1715, trade_tax_exempt=False),
    },
    {
        "name": "5. Keine Dividende",
        "cat": "Edge",
        "desc": "Dividende 0 – effektive Steuerquote 0 statt Division durch 0",
        "params": dict(dividend=0, kst_rate=0.15, soli_rate=0.055,
                       gewst_rate=0.14, trade_tax_exempt=False),
    },
]

GF_SCENARIOS = [
    {
        "name": "1. Durchschnitt – Teileinkünfte",
        "cat": "Standard",
        "desc": "Durchschnittswerte, Teileinkünfteverfahren",
        "params": dict(gross_salary=180_000, dividend=150_000, personal_tax_rate=0.35,
                       church_tax_rate=0.085, employee_sv_rate=0.20, flat_tax=False),
    },
    {
        "name": "2. Durchschnitt – Abgeltungsteuer",
        "cat": "Standard",
        "desc": "Durchschnittswerte, Abgeltungsteuer 25 %",
        "params": dict(gross_salary=180_000, dividend=150_000, personal_tax_rate=0.35,
                       church_tax_rate=0.085, employee_sv_rate=0.20, flat_tax=True),
    },
    {
        "name": "3. Spitzensteuersatz 45 %",
        "cat": "Standard",
        "desc": "Ohne Kirchensteuer, Teileinkünfte",
        "params": dict(gross_salary=300_000, dividend=300_000, personal_tax_rate=0.45,
                       church_tax_rate=0.0, employee_sv_rate=0.10, flat_tax=False),
    },
    {
        "name": "4. Geringes Gehalt 60k",
        "cat": "Standard",
        "desc": "Niedriger Grenzsteuersatz, Abgeltungsteuer ungünstig",
        "params": dict(gross_salary=60_000, dividend=40_000, personal_tax_rate=0.25,
                       church_tax_rate=0.09, employee_sv_rate=0.20, flat_tax=True),
    },
    {
        "name": "5. Nullfall – Gleichstand",
        "cat": "Edge",
        "desc": "Gehalt und Dividende 0 – Gleichstand zählt für das Gehalt",
        "params": dict(gross_salary=0, dividend=0, personal_tax_rate=0.35,
                       church_tax_rate=0.085, employee_sv_rate=0.20, flat_tax=False),
    },
]


# ---------------------------------------------------------------------------
# Audit step builders
# ---------------------------------------------------------------------------

def _fmt(v: float) -> str:
    """Euro amount with two decimals in German notation."""
    return f"{v:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def _rate(v: float) -> str:
    return f"{v * 100:g} %".replace(".", ",")


def audit_holding(dividend, kst_rate, soli_rate, gewst_rate, trade_tax_exempt) -> list[tuple]:
    """Audit trail for the holding calculation."""
    r = app.calc_holding(dividend, kst_rate, soli_rate, gewst_rate, trade_tax_exempt)

    if trade_tax_exempt:
        gewst_step = ("Gewerbesteuer", "befreit (Beteiligung ≥ 15 %)", r["gewst"], "§ 9 Nr. 2a GewStG")
    else:
        gewst_step = ("Gewerbesteuer",
                      f"{_fmt(r['taxable_portion'])} x {_rate(gewst_rate)}",
                      r["gewst"], "§ 8 Nr. 5 GewStG")

    return [
        ("Steuerpflichtiger Anteil",
         f"{_fmt(dividend)} x {_rate(app.HOLDING_TAXABLE_SHARE)}",
         r["taxable_portion"], "§ 8b Abs. 1, 5 KStG"),
        ("Körperschaftsteuer",
         f"{_fmt(r['taxable_portion'])} x {_rate(kst_rate)}",
         r["kst"], "§ 23 Abs. 1 KStG"),
        ("Solidaritätszuschlag",
         f"{_fmt(r['kst'])} x {_rate(soli_rate)}",
         r["soli"], "§ 4 SolZG"),
        gewst_step,
        ("**Gesamtsteuer**",
         f"{_fmt(r['kst'])} + {_fmt(r['soli'])} + {_fmt(r['gewst'])}",
         r["total_tax"], ""),
        ("**Nettozufluss zur Holding**",
         f"{_fmt(dividend)} - {_fmt(r['total_tax'])}",
         r["net_to_holding"], ""),
        ("Effektive Steuerquote",
         f"{_fmt(r['total_tax'])} / {_fmt(dividend)}" if dividend else "Dividende 0 -> 0",
         app.pct(r["eff_tax_rate"]), ""),
    ]


def audit_salary(gross_salary, employee_sv_rate, personal_tax_rate, church_tax_rate, soli_rate) -> list[tuple]:
    """Audit trail for net pay from salary."""
    r = app.calc_salary_net(gross_salary, employee_sv_rate, personal_tax_rate, church_tax_rate, soli_rate)
    return [
        ("AN-Sozialabgaben",
         f"{_fmt(gross_salary)} x {_rate(employee_sv_rate)}",
         r["sv"], "SGB IV (pauschal)"),
        ("Zu versteuern",
         f"max(0, {_fmt(gross_salary)} - {_fmt(r['sv'])})",
         r["taxable"], ""),
        ("Einkommensteuer",
         f"{_fmt(r['taxable'])} x {_rate(personal_tax_rate)}",
         r["income_tax"], "§ 32a EStG (Grenzsteuersatz)"),
        ("Solidaritätszuschlag",
         f"{_fmt(r['income_tax'])} x {_rate(soli_rate)}",
         r["soli"], "§ 4 SolZG"),
        ("Kirchensteuer",
         f"{_fmt(r['income_tax'])} x {_rate(church_tax_rate)}",
         r["church"], "§ 51a EStG"),
        ("**Netto aus Gehalt**",
         f"{_fmt(gross_salary)} - {_fmt(r['sv'])} - {_fmt(r['income_tax'])} "
         f"- {_fmt(r['soli'])} - {_fmt(r['church'])}",
         r["net"], ""),
    ]


def audit_distribution(dividend, flat_tax, personal_tax_rate, church_tax_rate, soli_rate) -> list[tuple]:
    """Audit trail for net from a distribution."""
    r = app.calc_distribution_net(dividend, flat_tax, personal_tax_rate, church_tax_rate, soli_rate)

    if flat_tax:
        tax, steps = r["withholding"], [
            ("Abgeltungsteuer",
             f"{_fmt(dividend)} x {_rate(app.ABGELTUNGSTEUER_RATE)}",
             r["withholding"], "§ 32d Abs. 1 EStG"),
        ]
    else:
        tax, steps = r["income_tax"], [
            ("Steuerpflichtige Basis",
             f"{_fmt(dividend)} x {_rate(app.TEILEINKUENFTE_SHARE)}",
             r["taxable_base"], "§ 3 Nr. 40 EStG"),
            ("Einkommensteuer",
             f"{_fmt(r['taxable_base'])} x {_rate(personal_tax_rate)}",
             r["income_tax"], "§ 32d Abs. 2 Nr. 3 EStG"),
        ]

    return steps + [
        ("Solidaritätszuschlag", f"{_fmt(tax)} x {_rate(soli_rate)}", r["soli"], "§ 4 SolZG"),
        ("Kirchensteuer", f"{_fmt(tax)} x {_rate(church_tax_rate)}", r["church"], "§ 51a EStG"),
        (f"**Netto aus Ausschüttung** ({r['mode']})",
         f"{_fmt(dividend)} - {_fmt(tax)} - {_fmt(r['soli'])} - {_fmt(r['church'])}",
         r["net"], ""),
    ]


def run_holding(p: dict) -> dict:
    return app.calc_holding(
        p["dividend"], p["kst_rate"], p["soli_rate"], p["gewst_rate"], p["trade_tax_exempt"],
    )


def run_gf(p: dict, soli_rate: float) -> dict:
    """Run both routes and flatten the key results."""
    salary = app.calc_salary_net(
        p["gross_salary"], p["employee_sv_rate"], p["personal_tax_rate"],
        p["church_tax_rate"], soli_rate,
    )
    distribution = app.calc_distribution_net(
        p["dividend"], p["flat_tax"], p["personal_tax_rate"],
        p["church_tax_rate"], soli_rate,
    )
    comparison = app.compare_net(salary, distribution)
    return {
        "salary_net": salary["net"],
        "distribution_net": distribution["net"],
        "difference": comparison["difference"],
        "winner": comparison["winner"],
        "mode": distribution["mode"],
    }


def classify_difference(diff: float) -> str:
    """Reconciliation verdict: within 1 EUR, within 10 EUR, or off."""
    if abs(diff) <= 1:
        return "OK"
    if abs(diff) <= 10:
        return "~"
    return "DIFF"


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------

def render_steps(steps: list[tuple], title: str, expanded: bool = True):
    """Render audit steps as a markdown table inside an expander."""
    with st.expander(title, expanded=expanded):
        header = "| # | Schritt | Formel | Ergebnis (EUR) | Rechtsgrundlage |\n"
        header += "|--:|------|---------|-------------:|----------|\n"
        rows = ""
        for i, (step, formula, result, ref) in enumerate(steps, 1):
            res_str = _fmt(result) if isinstance(result, float) else str(result)
            formula_safe = formula.replace("|", "\\|")
            rows += f"| {i} | {step} | {formula_safe} | {res_str} | {ref} |\n"
        st.markdown(header + rows)


_VERDICT_MARKUP = {"OK": ":green[OK]", "~": ":orange[~]", "DIFF": ":red[DIFF]"}


def render_comparison(results: dict, comparison_keys: list[tuple], key_prefix: str = ""):
    """Render reconciliation table with expected value inputs."""
    st.subheader("Abgleich")
    st.caption("Erwartete Werte eintragen. Grün = Treffer (±1 €), Orange = nah (±10 €), Rot = Abweichung.")

    cols = st.columns([3, 2, 2, 2, 1])
    cols[0].markdown("**Wert**")
    cols[1].markdown("**Rechner**")
    cols[2].markdown("**Erwartet**")
    cols[3].markdown("**Differenz**")
    cols[4].markdown("**OK?**")

    for label, key in comparison_keys:
        engine_val = results.get(key, 0.0)
        cols = st.columns([3, 2, 2, 2, 1])
        cols[0].write(label)
        cols[1].write(f"**{_fmt(engine_val)}**")
        expected = cols[2].number_input(
            f"exp_{key}",
            value=0.0,
            step=1.0,
            format="%.2f",
            label_visibility="collapsed",
            key=f"{key_prefix}exp_{key}",
        )
        if expected != 0:
            diff = engine_val - expected
            cols[3].write(_fmt(diff))
            cols[4].markdown(_VERDICT_MARKUP[classify_difference(diff)])
        else:
            cols[3].write("—")
            cols[4].write("—")


# ---------------------------------------------------------------------------
# Main page
# ---------------------------------------------------------------------------

def _holding_custom_params(defaults: app.HoldingDefaults) -> dict:
    c1, c2, c3 = st.columns(3)
    with c1:
        dividend = st.number_input("Dividende (EUR)", 0.0, 100_000_000.0, defaults.dividend, 1_000.0, format="%.0f")
    with c2:
        kst_rate = st.number_input("KSt-Satz", 0.0, 1.0, defaults.kst_rate, 0.005, format="%.4f")
        soli_rate = st.number_input("Soli-Satz", 0.0, 1.0, defaults.soli_rate, 0.001, format="%.4f")
    with c3:
        gewst_rate = st.number_input("GewSt-Satz", 0.0, 1.0, defaults.gewst_rate, 0.005, format="%.4f")
        trade_tax_exempt = st.toggle("GewSt-befreit", defaults.trade_tax_exempt)
    return dict(dividend=dividend, kst_rate=kst_rate, soli_rate=soli_rate,
                gewst_rate=gewst_rate, trade_tax_exempt=trade_tax_exempt)


def _gf_custom_params(defaults: app.GfDefaults) -> dict:
    c1, c2, c3 = st.columns(3)
    with c1:
        gross_salary = st.number_input("Bruttogehalt (EUR)", 0.0, 100_000_000.0, defaults.gross_salary,
                                       1_000.0, format="%.0f")
        dividend = st.number_input("Dividende (EUR)", 0.0, 100_000_000.0, defaults.dividend,
                                   1_000.0, format="%.0f")
    with c2:
        personal_tax_rate = st.number_input("Grenzsteuersatz", 0.0, 1.0, defaults.personal_tax_rate,
                                            0.01, format="%.4f")
        church_tax_rate = st.number_input("Kirchensteuer", 0.0, 1.0, defaults.church_tax_rate,
                                          0.01, format="%.4f")
    with c3:
        employee_sv_rate = st.number_input("AN-Sozialabgaben", 0.0, 1.0, defaults.employee_sv_rate,
                                           0.01, format="%.4f")
        flat_tax = st.toggle("Abgeltungsteuer", defaults.flat_tax)
    return dict(gross_salary=gross_salary, dividend=dividend, personal_tax_rate=personal_tax_rate,
                church_tax_rate=church_tax_rate, employee_sv_rate=employee_sv_rate, flat_tax=flat_tax)


def _pick_params(scenarios: list[dict], custom, key: str) -> tuple:
    """Scenario selector; returns ``(chosen name, params)``."""
    chosen = st.selectbox("Szenario", [CUSTOM] + [s["name"] for s in scenarios], key=key)
    if chosen == CUSTOM:
        return chosen, custom()

    scenario = next(s for s in scenarios if s["name"] == chosen)
    st.info(f"**{scenario['cat']}** — {scenario['desc']}")
    return chosen, scenario["params"]


def holding_page(defaults: app.HoldingDefaults) -> None:
    chosen, p = _pick_params(HOLDING_SCENARIOS, lambda: _holding_custom_params(defaults), "holding_scenario")
    results = run_holding(p)

    st.divider()
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Steuerpflichtiger Anteil", app.fmt(results["taxable_portion"]))
    m2.metric("Gesamtsteuer", app.fmt(results["total_tax"]))
    m3.metric("Nettozufluss", app.fmt(results["net_to_holding"]))
    m4.metric("Effektive Steuerquote", app.pct(results["eff_tax_rate"]))

    st.divider()
    st.subheader("Rechenweg")
    render_steps(audit_holding(**p), "Holding – § 8b KStG, KSt, SolZ, GewSt")

    st.divider()
    render_comparison(
        results,
        [
            ("Steuerpflichtiger Anteil", "taxable_portion"),
            ("Körperschaftsteuer", "kst"),
            ("Solidaritätszuschlag", "soli"),
            ("Gewerbesteuer", "gewst"),
            ("Gesamtsteuer", "total_tax"),
            ("Nettozufluss zur Holding", "net_to_holding"),
        ],
        key_prefix=f"h_{chosen}_",
    )

    st.divider()
    st.subheader("Alle Szenarien")
    if st.button(f"Alle {len(HOLDING_SCENARIOS)} Szenarien berechnen", type="primary", key="holding_batch"):
        rows = []
        for s in HOLDING_SCENARIOS:
            r = run_holding(s["params"])
            rows.append({
                "Szenario": s["name"],
                "Kategorie": s["cat"],
                "Dividende": app.fmt(s["params"]["dividend"]),
                "KSt": app.fmt(r["kst"]),
                "Soli": app.fmt(r["soli"]),
                "GewSt": app.fmt(r["gewst"]),
                "Gesamtsteuer": app.fmt(r["total_tax"]),
                "Netto": app.fmt(r["net_to_holding"]),
                "Quote": app.pct(r["eff_tax_rate"]),
            })
        logger.info(f"Batch run: {len(rows)} holding scenarios")
        st.dataframe(rows, hide_index=True)
        st.success(f"Alle {len(HOLDING_SCENARIOS)} Szenarien berechnet.")


def gf_page(defaults: app.GfDefaults) -> None:
    chosen, p = _pick_params(GF_SCENARIOS, lambda: _gf_custom_params(defaults), "gf_scenario")
    soli_rate = defaults.soli_rate
    results = run_gf(p, soli_rate)

    st.divider()
    m1, m2, m3 = st.columns(3)
    m1.metric("Netto aus Gehalt", app.fmt(results["salary_net"]))
    m2.metric("Netto aus Ausschüttung", app.fmt(results["distribution_net"]))
    m3.metric("Vorteil " + ("Ausschüttung" if results["winner"] == "distribution" else "Gehalt"),
              app.fmt(results["difference"]))

    st.divider()
    st.subheader("Rechenweg")
    render_steps(
        audit_salary(p["gross_salary"], p["employee_sv_rate"], p["personal_tax_rate"],
                     p["church_tax_rate"], soli_rate),
        "1. Netto aus Gehalt – Sozialabgaben, ESt, SolZ, KiSt",
    )
    render_steps(
        audit_distribution(p["dividend"], p["flat_tax"], p["personal_tax_rate"],
                           p["church_tax_rate"], soli_rate),
        f"2. Netto aus Ausschüttung – {results['mode']}",
    )

    st.divider()
    render_comparison(
        results,
        [
            ("Netto aus Gehalt", "salary_net"),
            ("Netto aus Ausschüttung", "distribution_net"),
            ("Differenz", "difference"),
        ],
        key_prefix=f"gf_{chosen}_",
    )

    st.divider()
    st.subheader("Alle Szenarien")
    if st.button(f"Alle {len(GF_SCENARIOS)} Szenarien berechnen", type="primary", key="gf_batch"):
        rows = []
        for s in GF_SCENARIOS:
            r = run_gf(s["params"], soli_rate)
            rows.append({
                "Szenario": s["name"],
                "Kategorie": s["cat"],
                "Modus": r["mode"],
                "Netto Gehalt": app.fmt(r["salary_net"]),
                "Netto Ausschüttung": app.fmt(r["distribution_net"]),
                "Vorteil": "Ausschüttung" if r["winner"] == "distribution" else "Gehalt",
                "Differenz": app.fmt(r["difference"]),
            })
        logger.info(f"Batch run: {len(rows)} managing-director scenarios")
        st.dataframe(rows, hide_index=True)
        st.success(f"Alle {len(GF_SCENARIOS)} Szenarien berechnet.")


def main():
    st.set_page_config(page_title=f"Rechenweg – {app.PAGE_TITLE}", layout="wide")
    st.title("Rechenweg & Prüfung")
    st.caption("Schritt-für-Schritt-Nachvollziehbarkeit der beiden Rechner")

    calculator = st.radio("Rechner", [HOLDING, GF], horizontal=True, key="calculator")
    if calculator == HOLDING:
        holding_page(app.load_holding_defaults())
    else:
        gf_page(app.load_gf_defaults())


if __name__ == "__main__":
    main()
