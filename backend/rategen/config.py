"""
Rate generator configuration — single source of truth for convergence policy,
percentage defaults, aggregate aliases and logging settings.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os

# ── Convergence policy ────────────────────────────────────────────────────────
# Saved rates were produced with exactly this many rounds; changing it changes
# the stored values, so it is deliberately not read from the environment.
CONVERGENCE_ROUNDS: int = 6

# Relative change between the last two rounds above which a breakdown is
# reported as non-converged (diagnostic only, values are never altered).
CONVERGENCE_TOLERANCE: float = float(os.getenv("RATEGEN_CONVERGENCE_TOLERANCE", "1e-6"))


# ── Formula parser ────────────────────────────────────────────────────────────
# Deepest parenthesis nesting a formula may use; deeper input is eval_failed.
MAX_FORMULA_NESTING: int = 100


# ── Percentage defaults ───────────────────────────────────────────────────────
DEFAULT_OVERHEAD_PERCENT: float = 10.0
DEFAULT_PROFIT_PERCENT: float = 25.0


# ── Aggregate aliases ─────────────────────────────────────────────────────────
# Context name → aggregate field. Registered before line items every round.
AGGREGATE_ALIASES: dict[str, str] = {
    "Net Cost":       "net_cost",
    "NetCost":        "net_cost",
    "NETCOST":        "net_cost",
    "NET":            "net_cost",
    "Overhead":       "overhead_value",
    "Overhead Value": "overhead_value",
    "Profit":         "profit_value",
    "Profit Value":   "profit_value",
    "Total":          "total_cost",
    "Total Cost":     "total_cost",
    "Overhead %":     "overhead_percent",
    "Profit %":       "profit_percent",
}


# ── Compute engine ────────────────────────────────────────────────────────────
PRICE_MODES: tuple[str, ...] = ("current", "cached", "hybrid")
DEFAULT_PRICE_MODE: str = "hybrid"
LINE_KINDS: tuple[str, ...] = ("material", "labour", "constant")


# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"
