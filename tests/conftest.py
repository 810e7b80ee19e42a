"""Shared pytest fixtures for the tax tools tests."""

import importlib.util
from pathlib import Path

import pytest

import app

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def holding_defaults():
    return app.HoldingDefaults(
        dividend=200_000.0,
        kst_rate=0.15,
        soli_rate=0.055,
        trade_tax_exempt=True,
        gewst_rate=0.14,
    )


@pytest.fixture
def gf_defaults():
    return app.GfDefaults(
        gross_salary=180_000.0,
        dividend=150_000.0,
        personal_tax_rate=0.35,
        church_tax_rate=0.085,
        employee_sv_rate=0.20,
        flat_tax=False,
        soli_rate=0.055,
    )


@pytest.fixture(scope="session")
def rechenweg():
    """The Rechenweg page module (its file name is not a valid identifier)."""
    spec = importlib.util.spec_from_file_location("rechenweg", ROOT / "pages" / "1_Rechenweg.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module
