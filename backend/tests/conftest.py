"""
conftest.py — Shared pytest fixtures for the rate generator test suite.

No database or external service fixtures are defined here.  All tests in this
suite are pure unit tests that exercise the evaluator, resolver and compute
engine in isolation.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``rategen.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any rategen imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Evaluator / resolver fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def evaluator():
    """ExpressionEvaluator (stateless; the context is passed on every call)."""
    from rategen.services.expression_evaluator import ExpressionEvaluator
    return ExpressionEvaluator()


@pytest.fixture(scope="session")
def resolver():
    """BreakdownResolver with the default 6-round policy and tolerance."""
    from rategen.services.breakdown_resolver import BreakdownResolver
    return BreakdownResolver()


@pytest.fixture(autouse=True)
def _reset_tracker():
    """Resolution counters are module-level; start every test from zero."""
    from rategen.services.perf_monitor import tracker
    tracker.reset()
    yield
    tracker.reset()


# ---------------------------------------------------------------------------
# Shared sample breakdowns
# ---------------------------------------------------------------------------

@pytest.fixture
def cement_sand_lines():
    """
    Two-line blockwork breakdown in the stored camelCase shape.

    Cement is a literal (10 × 2500 = 25 000); Sand is priced at 1% of the net
    cost, so it feeds back into the aggregate it references.
    """
    return [
        {"componentName": "Cement", "quantity": 10, "unit": "bag", "unitPrice": "2500"},
        {"componentName": "Sand", "quantity": 5, "unit": "t", "unitPrice": "=NetCost*0.01"},
    ]


@pytest.fixture
def literal_lines():
    """Literal-only breakdown: 25 000 + 4 500 + 12 000 = 41 500 net."""
    return [
        {"componentName": "Cement", "quantity": "10", "unit": "bag", "unitPrice": "2,500"},
        {"componentName": "Sharp Sand", "quantity": 3, "unit": "t", "unitPrice": "1500"},
        {"componentName": "Mason", "quantity": 2, "unit": "day", "unitPrice": 6000},
    ]


# ---------------------------------------------------------------------------
# Compute engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def master_materials():
    """Raw master material records, deliberately unsorted."""
    return [
        {"MaterialName": "Sharp Sand", "MaterialUnit": "t", "MaterialPrice": 1500, "key": "sand"},
        {"MaterialName": "Cement", "MaterialUnit": "bag", "MaterialPrice": 2600, "key": "cement"},
        {"MaterialName": "Granite", "MaterialUnit": "t", "MaterialPrice": 9000, "enabled": False},
    ]


@pytest.fixture
def master_labours():
    return [
        {"LabourName": "Mason", "LabourUnit": "day", "LabourPrice": 7000},
        {"LabourName": "Labourer", "LabourUnit": "day", "LabourPrice": 4000},
    ]


@pytest.fixture
def price_library(master_materials, master_labours):
    """
    Library numbered per kind by name:
      material: 1 Cement (2600), 2 Granite (disabled), 3 Sharp Sand (1500)
      labour:   1 Labourer (4000), 2 Mason (7000)
    """
    from rategen.services.compute_engine import PriceLibrary
    return PriceLibrary.from_master_records(master_materials, master_labours)


@pytest.fixture
def blockwork_item():
    """Saved compute item for 1 m2 of 150 mm blockwork."""
    return {
        "section": "blockwork",
        "name": "150mm sandcrete blockwork",
        "outputUnit": "m2",
        "overheadPercentDefault": 10,
        "profitPercentDefault": 25,
        "lines": [
            {"kind": "material", "refSn": 1, "description": "Cement", "unit": "bag",
             "qtyPerUnit": 0.5, "factor": 1, "unitPriceAtBuild": 2500},
            {"kind": "material", "refKey": "SAND", "description": "Sand", "unit": "t",
             "qtyPerUnit": 0.1, "factor": 1.1, "unitPriceAtBuild": 1400},
            {"kind": "labour", "refName": "mason", "description": "Mason", "unit": "day",
             "qtyPerUnit": 0.05, "unitPriceAtBuild": 6500},
            {"kind": "material", "refName": "Unobtainium", "description": "Retired item",
             "unit": "nr", "qtyPerUnit": 2, "unitPriceAtBuild": 100},
            {"kind": "constant", "description": "Water", "unit": "sum",
             "qtyPerUnit": 1, "unitPriceAtBuild": 50},
        ],
    }
