"""
test_import_safety.py — Circular import checks.

Every rategen module must import on its own, from a cold sys.modules, without
raising ImportError. No network or external services are required.
"""

import importlib
import sys

import pytest

MODULES = [
    "rategen.config",
    "rategen.errors",
    "rategen.services.expression_evaluator",
    "rategen.models.breakdown_schema",
    "rategen.services.perf_monitor",
    "rategen.services.logging_config",
    "rategen.services.breakdown_resolver",
    "rategen.services.compute_engine",
    "rategen.cli",
]


@pytest.fixture
def cold_rategen():
    """Evict cached rategen modules, restoring them afterwards."""
    saved = {k: v for k, v in sys.modules.items() if k == "rategen" or k.startswith("rategen.")}
    for k in saved:
        del sys.modules[k]
    yield
    for k in [k for k in sys.modules if k == "rategen" or k.startswith("rategen.")]:
        del sys.modules[k]
    sys.modules.update(saved)


@pytest.mark.parametrize("name", MODULES)
def test_module_imports_cold(name, cold_rategen):
    module = importlib.import_module(name)
    assert module.__name__ == name


def test_evaluator_has_no_resolver_dependency(cold_rategen):
    importlib.import_module("rategen.services.expression_evaluator")
    assert "rategen.services.breakdown_resolver" not in sys.modules
