"""
Pydantic models for rate breakdowns and compute items.

Input models accept both the snake_case field names and the camelCase keys
used by the stored rate documents (componentName, unitPrice, qtyPerUnit …).
"""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from rategen.errors import ErrorKind
from rategen.services.expression_evaluator import to_number


# ── Breakdown input ───────────────────────────────────────────────────────────

class LineItem(BaseModel):
    """One cost component (material or labour) in a rate breakdown."""
    model_config = ConfigDict(frozen=True)

    component_name: str = Field(
        "",
        validation_alias=AliasChoices("component_name", "componentName", "name"),
        description="Display name; also the key formulas use to reference this line",
    )
    quantity: float = Field(0.0, description="Multiplier; unparsable input becomes 0")
    unit: str = Field("", description="Free-text unit label (no computational role)")
    price_expression: str = Field(
        "",
        validation_alias=AliasChoices("price_expression", "priceExpression", "unitPrice"),
        description="Plain number or a formula starting with '='",
    )

    @field_validator("component_name", "unit", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _parse_quantity(cls, v):
        return to_number(v)

    @field_validator("price_expression", mode="before")
    @classmethod
    def _stringify_price(cls, v):
        return "" if v is None else str(v)


class BreakdownRequest(BaseModel):
    """A complete resolution request, as read by the CLI."""
    lines: List[LineItem] = Field(default_factory=list)
    manual_net_cost_fallback: float = Field(
        0.0, validation_alias=AliasChoices("manual_net_cost_fallback", "manualNetCost")
    )
    overhead_percent: float = Field(
        10.0, validation_alias=AliasChoices("overhead_percent", "overheadPercent")
    )
    profit_percent: float = Field(
        25.0, validation_alias=AliasChoices("profit_percent", "profitPercent")
    )

    @field_validator("manual_net_cost_fallback", "overhead_percent", "profit_percent", mode="before")
    @classmethod
    def _parse_number(cls, v):
        return to_number(v)


# ── Breakdown output ──────────────────────────────────────────────────────────

class Aggregates(BaseModel):
    model_config = ConfigDict(frozen=True)

    net_cost: float
    overhead_value: float
    profit_value: float
    total_cost: float


class BreakdownResult(BaseModel):
    """Final unit prices, totals, per-line errors and aggregates after resolution."""
    unit_prices: List[float]
    line_totals: List[float]
    errors_by_index: List[Optional[ErrorKind]]
    net_cost: float
    overhead_value: float
    profit_value: float
    total_cost: float
    rounds: int
    converged: bool = True

    @property
    def has_errors(self) -> bool:
        return any(e is not None for e in self.errors_by_index)

    @property
    def is_persistable(self) -> bool:
        return not self.has_errors and self.net_cost > 0


# ── Persistence payload ───────────────────────────────────────────────────────

class RateBreakdownLine(BaseModel):
    component_name: str
    quantity: float
    unit: str
    unit_price: float


class RatePayload(BaseModel):
    """Shape handed to the persistence layer for a validated breakdown."""
    net_cost: float
    overhead_percent: float
    profit_percent: float
    overhead_value: float
    profit_value: float
    total_cost: float
    breakdown: List[RateBreakdownLine]


# ── Compute items ─────────────────────────────────────────────────────────────

class ComputeLine(BaseModel):
    """A library-bound line of a saved compute item."""
    kind: Literal["material", "labour", "constant"]
    ref_sn: Optional[int] = Field(None, validation_alias=AliasChoices("ref_sn", "refSn"))
    ref_key: Optional[str] = Field(None, validation_alias=AliasChoices("ref_key", "refKey"))
    ref_name: Optional[str] = Field(None, validation_alias=AliasChoices("ref_name", "refName"))
    description: str = ""
    unit: str = ""
    qty_per_unit: float = Field(0.0, validation_alias=AliasChoices("qty_per_unit", "qtyPerUnit"))
    factor: float = 1.0
    unit_price_at_build: Optional[float] = Field(
        None, validation_alias=AliasChoices("unit_price_at_build", "unitPriceAtBuild")
    )

    @field_validator("qty_per_unit", mode="before")
    @classmethod
    def _default_qty(cls, v):
        return 0.0 if v is None else v

    @field_validator("factor", mode="before")
    @classmethod
    def _default_factor(cls, v):
        return 1.0 if v is None else v


class ComputeItem(BaseModel):
    section: str
    name: str
    output_unit: str = Field("m2", validation_alias=AliasChoices("output_unit", "outputUnit"))
    overhead_percent_default: float = Field(
        10.0, validation_alias=AliasChoices("overhead_percent_default", "overheadPercentDefault")
    )
    profit_percent_default: float = Field(
        25.0, validation_alias=AliasChoices("profit_percent_default", "profitPercentDefault")
    )
    enabled: bool = True
    lines: List[ComputeLine] = Field(default_factory=list)


class ComputedLine(BaseModel):
    kind: str
    ref_sn: Optional[int]
    ref_key: Optional[str]
    ref_name: Optional[str]
    description: str
    unit: str
    qty_per_unit: float
    factor: float
    qty_resolved: float
    unit_price_resolved: float
    price_resolved_from: Literal["current", "cached", "constant"]
    line_total: float
    unit_price_at_build: Optional[float]


class ComputedRate(BaseModel):
    section: str
    name: str
    output_unit: str
    overhead_percent: float
    profit_percent: float
    net_cost: float
    overhead_value: float
    profit_value: float
    total_cost: float
    lines: List[ComputedLine]
