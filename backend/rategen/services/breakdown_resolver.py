"""
BreakdownResolver — fixed-point resolution of a rate breakdown.

Line item prices may be formulas that reference aggregates (net cost,
overhead, profit, total) or other line items by name. Those aggregates are
themselves sums of the line totals, so the resolver iterates:

  round 0   line_total = quantity × literal price (formulas count as 0)
  round k   aggregates(prev totals) → context → evaluate every line
  final     aggregates recomputed once from the last round's totals

The round count is fixed (config.CONVERGENCE_ROUNDS). There is no early exit
and no attempt to detect a true fixed point; a divergent formula graph simply
yields whatever values exist after the last round, with `converged=False`.
"""

import logging
import math
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from rategen import config
from rategen.errors import BreakdownValidationError, ErrorKind
from rategen.models.breakdown_schema import (
    Aggregates,
    BreakdownResult,
    LineItem,
    RateBreakdownLine,
    RatePayload,
)
from rategen.services.expression_evaluator import ExpressionEvaluator, literal_price
from rategen.services.perf_monitor import timed, tracker

logger = logging.getLogger("rategen.resolver")

LineInput = Union[LineItem, Mapping]

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def coerce_lines(lines: Iterable[LineInput]) -> List[LineItem]:
    """Validate caller input into LineItem models without touching the originals."""
    return [l if isinstance(l, LineItem) else LineItem.model_validate(l) for l in lines]


def compute_aggregates(
    line_totals: Sequence[float],
    manual_net_cost_fallback: float,
    overhead_percent: float,
    profit_percent: float,
) -> Aggregates:
    breakdown_net = sum(line_totals)
    net_cost = breakdown_net if breakdown_net > 0 else manual_net_cost_fallback
    overhead_value = net_cost * overhead_percent / 100
    profit_value = net_cost * profit_percent / 100
    return Aggregates(
        net_cost=net_cost,
        overhead_value=overhead_value,
        profit_value=profit_value,
        total_cost=net_cost + overhead_value + profit_value,
    )


def name_aliases(component_name: str) -> List[str]:
    """Raw, lowercase, lowercase-no-whitespace and lowercase_underscored keys."""
    raw = (component_name or "").strip()
    if not raw:
        return []
    lower = raw.lower()
    return [raw, lower, _WHITESPACE.sub("", lower), _WHITESPACE.sub("_", lower)]


def build_context(
    lines: Sequence[LineItem],
    line_totals: Sequence[float],
    aggregates: Aggregates,
    overhead_percent: float,
    profit_percent: float,
) -> Dict[str, float]:
    """
    Fresh evaluation context for one round.

    Aggregate aliases go in first, then line items in list order; any key
    written twice keeps the later value.
    """
    values = {
        "net_cost": aggregates.net_cost,
        "overhead_value": aggregates.overhead_value,
        "profit_value": aggregates.profit_value,
        "total_cost": aggregates.total_cost,
        "overhead_percent": overhead_percent,
        "profit_percent": profit_percent,
    }
    context: Dict[str, float] = {alias: values[field] for alias, field in config.AGGREGATE_ALIASES.items()}

    for line, total in zip(lines, line_totals):
        for alias in name_aliases(line.component_name):
            context.pop(alias, None)
            context[alias] = total
    return context


def _has_settled(previous: Sequence[float], current: Sequence[float], tolerance: float) -> bool:
    for before, after in zip(previous, current):
        if abs(after - before) > tolerance * max(1.0, abs(after)):
            return False
    return True


def _require_finite(label: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{label} must be a finite number; received {value}")
    return value


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class BreakdownResolver:
    """
    Resolves a list of line items into unit prices, totals and aggregates.

    Stateless between calls: every resolve() works on its own snapshot and
    returns a new BreakdownResult.
    """

    def __init__(
        self,
        evaluator: Optional[ExpressionEvaluator] = None,
        tolerance: float = config.CONVERGENCE_TOLERANCE,
    ) -> None:
        self.evaluator = evaluator or ExpressionEvaluator()
        self.rounds: int = config.CONVERGENCE_ROUNDS
        self.tolerance: float = float(tolerance)

    @timed
    def resolve(
        self,
        lines: Iterable[LineInput],
        manual_net_cost_fallback: float = 0.0,
        overhead_percent: float = config.DEFAULT_OVERHEAD_PERCENT,
        profit_percent: float = config.DEFAULT_PROFIT_PERCENT,
    ) -> BreakdownResult:
        items = coerce_lines(lines)
        fallback = _require_finite("manual_net_cost_fallback", manual_net_cost_fallback)
        overhead_percent = _require_finite("overhead_percent", overhead_percent)
        profit_percent = _require_finite("profit_percent", profit_percent)

        quantities = [item.quantity for item in items]
        unit_prices = [literal_price(item.price_expression) for item in items]
        line_totals = [q * p for q, p in zip(quantities, unit_prices)]
        errors: List[Optional[ErrorKind]] = [None] * len(items)
        previous_totals = list(line_totals)

        for _round in range(self.rounds):
            aggregates = compute_aggregates(line_totals, fallback, overhead_percent, profit_percent)
            context = build_context(items, line_totals, aggregates, overhead_percent, profit_percent)

            next_prices: List[float] = []
            next_errors: List[Optional[ErrorKind]] = []
            for item in items:
                result = self.evaluator.evaluate(item.price_expression, context)
                next_prices.append(result.value if result.error is None else 0.0)
                next_errors.append(result.error)

            previous_totals = line_totals
            unit_prices = next_prices
            errors = next_errors
            line_totals = [q * p for q, p in zip(quantities, unit_prices)]

        final = compute_aggregates(line_totals, fallback, overhead_percent, profit_percent)
        converged = _has_settled(previous_totals, line_totals, self.tolerance)

        if not converged:
            logger.warning(
                "Breakdown did not settle within %d rounds", self.rounds,
                extra={"rounds": self.rounds, "line_count": len(items), "net_cost": final.net_cost},
            )
        logger.info(
            "Breakdown resolved",
            extra={
                "line_count": len(items),
                "net_cost": final.net_cost,
                "total_cost": final.total_cost,
                "converged": converged,
            },
        )
        tracker.record_resolution(converged, errors)

        return BreakdownResult(
            unit_prices=unit_prices,
            line_totals=line_totals,
            errors_by_index=errors,
            net_cost=final.net_cost,
            overhead_value=final.overhead_value,
            profit_value=final.profit_value,
            total_cost=final.total_cost,
            rounds=self.rounds,
            converged=converged,
        )


# ---------------------------------------------------------------------------
# Persistence gate
# ---------------------------------------------------------------------------

def persistence_issues(result: BreakdownResult) -> List[str]:
    """Reasons a resolved breakdown must not be saved; empty when it may be."""
    issues = [
        f"line {i + 1}: {err.value}"
        for i, err in enumerate(result.errors_by_index)
        if err is not None
    ]
    if not result.net_cost > 0:
        issues.append("net cost must be > 0 (use breakdown or manual net cost)")
    return issues


def ensure_persistable(result: BreakdownResult) -> BreakdownResult:
    issues = persistence_issues(result)
    if issues:
        raise BreakdownValidationError(issues)
    return result


def build_rate_payload(
    lines: Iterable[LineInput],
    result: BreakdownResult,
    overhead_percent: float,
    profit_percent: float,
) -> RatePayload:
    """
    Persisted shape of a validated breakdown.

    Lines without a name, or with neither a positive quantity nor a positive
    unit price, are left out of the stored breakdown.
    """
    ensure_persistable(result)
    items = coerce_lines(lines)
    if len(items) != len(result.unit_prices):
        raise ValueError(
            f"Result has {len(result.unit_prices)} lines but {len(items)} line items were supplied"
        )

    breakdown: List[RateBreakdownLine] = []
    for item, unit_price in zip(items, result.unit_prices):
        name = item.component_name.strip()
        if not name or not (item.quantity > 0 or unit_price > 0):
            continue
        breakdown.append(RateBreakdownLine(
            component_name=name,
            quantity=item.quantity,
            unit=item.unit.strip(),
            unit_price=unit_price,
        ))

    return RatePayload(
        net_cost=result.net_cost,
        overhead_percent=overhead_percent,
        profit_percent=profit_percent,
        overhead_value=result.overhead_value,
        profit_value=result.profit_value,
        total_cost=result.total_cost,
        breakdown=breakdown,
    )
