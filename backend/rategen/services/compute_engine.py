"""
Compute engine — prices saved compute items against a master price library.

A compute item is a library-bound rate recipe: each line is a material,
labour or constant component with a quantity per output unit, a factor and
the unit price cached when the recipe was built. The price mode decides
whether the cached price or the library's current price is used:

  current  always the library price (0 when the binding no longer resolves)
  cached   always unit_price_at_build
  hybrid   library price when the binding resolves, otherwise the cached one

The library itself is an external data source; this module only consumes an
in-memory snapshot of it.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from rategen import config
from rategen.errors import ComputeItemNotFound
from rategen.models.breakdown_schema import ComputedLine, ComputedRate, ComputeItem
from rategen.services.expression_evaluator import to_number
from rategen.services.perf_monitor import timed

logger = logging.getLogger("rategen.compute")

_LIBRARY_COLUMNS = ["kind", "sn", "key", "name", "unit", "default_unit_price", "enabled"]

# Master collection field names per kind: (name, unit, price)
_MASTER_FIELDS = {
    "material": ("MaterialName", "MaterialUnit", "MaterialPrice"),
    "labour": ("LabourName", "LabourUnit", "LabourPrice"),
}


def round2(n) -> float:
    return round(to_number(n), 2)


def round4(n) -> float:
    return round(to_number(n), 4)


def _norm(s) -> str:
    if s is None or (not isinstance(s, str) and pd.isna(s)):
        return ""
    return str(s).strip().lower()


class PriceLibrary:
    """
    In-memory snapshot of the master materials / labour price library.

    Backed by a DataFrame with columns kind, sn, key, name, unit,
    default_unit_price and enabled.
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None) -> None:
        if frame is None:
            frame = pd.DataFrame(columns=_LIBRARY_COLUMNS)
        missing = [c for c in ("kind", "name", "default_unit_price") if c not in frame.columns]
        if missing:
            raise ValueError(f"Price library frame is missing columns: {missing}")

        df = frame.copy()
        for col, default in (("sn", None), ("key", None), ("unit", ""), ("enabled", True)):
            if col not in df.columns:
                df[col] = default
        df["enabled"] = df["enabled"].fillna(True).astype(bool)
        df["_name_norm"] = df["name"].map(_norm)
        df["_key_norm"] = df["key"].map(_norm)
        self.frame = df

    @classmethod
    def from_master_records(
        cls,
        materials: Iterable[Mapping[str, Any]] = (),
        labours: Iterable[Mapping[str, Any]] = (),
    ) -> "PriceLibrary":
        """
        Build a library from raw master records.

        Each kind is sorted by name and numbered sn = 1..n, matching the
        numbering the saved compute items were bound against.
        """
        rows: List[Dict[str, Any]] = []
        for kind, records in (("material", materials), ("labour", labours)):
            name_f, unit_f, price_f = _MASTER_FIELDS[kind]
            normalised = [
                {
                    "name": str(r.get(name_f) or r.get("description") or ""),
                    "unit": str(r.get(unit_f) or r.get("unit") or ""),
                    "default_unit_price": to_number(r.get(price_f, r.get("price"))),
                    "key": r.get("key"),
                    "enabled": r.get("enabled", True),
                }
                for r in records
            ]
            normalised.sort(key=lambda row: row["name"])
            for sn, row in enumerate(normalised, start=1):
                rows.append({"kind": kind, "sn": sn, **row})

        logger.debug("Price library built with %d entries", len(rows))
        return cls(pd.DataFrame(rows, columns=_LIBRARY_COLUMNS))

    def __len__(self) -> int:
        return len(self.frame)

    def lookup(
        self,
        kind: str,
        sn: Optional[int] = None,
        key: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Resolve a binding by sn, then key, then name (case-insensitive)."""
        df = self.frame
        candidates = df[(df["kind"] == kind) & df["enabled"]]
        if candidates.empty:
            return None

        for column, wanted in (("sn", sn), ("_key_norm", _norm(key) if key else None),
                               ("_name_norm", _norm(name) if name else None)):
            if wanted is None:
                continue
            hit = candidates[candidates[column] == wanted]
            if not hit.empty:
                row = hit.iloc[0]
                return {
                    "kind": row["kind"],
                    "sn": None if pd.isna(row["sn"]) else int(row["sn"]),
                    "key": None if pd.isna(row["key"]) else row["key"],
                    "name": row["name"],
                    "unit": row["unit"],
                    "default_unit_price": float(row["default_unit_price"]),
                }
        return None

    def suggest(self, name: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Unit/price suggestions for pre-filling a breakdown line.

        Exact (case-insensitive) name matches come first, then substring
        matches; disabled entries are skipped.
        """
        wanted = _norm(name)
        if not wanted:
            return []
        df = self.frame[self.frame["enabled"]]
        if df.empty:
            return []
        exact = df[df["_name_norm"] == wanted]
        partial = df[df["_name_norm"].str.contains(wanted, regex=False) & (df["_name_norm"] != wanted)]
        hits = pd.concat([exact, partial]).head(limit)
        return [
            {
                "kind": row.kind,
                "component_name": row.name,
                "unit": row.unit,
                "price_expression": str(float(row.default_unit_price)),
            }
            for row in hits.itertuples(index=False)
        ]


def _percent_or_default(value: Optional[float], default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return float(default)


@timed
def compute_rate(
    item: Union[ComputeItem, Mapping[str, Any]],
    library: PriceLibrary,
    overhead_percent: Optional[float] = None,
    profit_percent: Optional[float] = None,
    price_mode: str = config.DEFAULT_PRICE_MODE,
) -> ComputedRate:
    """Price a compute item; amounts rounded to 2 dp, quantities to 4 dp."""
    if not isinstance(item, ComputeItem):
        item = ComputeItem.model_validate(item)
    if not item.enabled:
        raise ComputeItemNotFound(f"Compute item not found: {item.section} / {item.name}")
    if price_mode not in config.PRICE_MODES:
        raise ValueError(f"price_mode must be one of {config.PRICE_MODES}; received {price_mode!r}")

    oh = _percent_or_default(overhead_percent, item.overhead_percent_default)
    pf = _percent_or_default(profit_percent, item.profit_percent_default)

    net = 0.0
    lines: List[ComputedLine] = []
    for line in item.lines:
        qty = line.qty_per_unit * line.factor
        cached = float(line.unit_price_at_build or 0.0)

        if line.kind == "constant":
            unit_price, source = cached, "constant"
        else:
            lib = library.lookup(line.kind, sn=line.ref_sn, key=line.ref_key, name=line.ref_name)
            current = lib["default_unit_price"] if lib else None
            if price_mode == "cached":
                unit_price, source = cached, "cached"
            elif price_mode == "current":
                unit_price, source = float(current or 0.0), "current"
            elif current is not None:
                unit_price, source = current, "current"
            else:
                unit_price, source = cached, "cached"

        line_total = qty * unit_price
        net += line_total
        lines.append(ComputedLine(
            kind=line.kind,
            ref_sn=line.ref_sn,
            ref_key=line.ref_key,
            ref_name=line.ref_name,
            description=line.description,
            unit=line.unit,
            qty_per_unit=line.qty_per_unit,
            factor=line.factor,
            qty_resolved=round4(qty),
            unit_price_resolved=round2(unit_price),
            price_resolved_from=source,
            line_total=round2(line_total),
            unit_price_at_build=line.unit_price_at_build,
        ))

    overhead_val = net * (oh / 100)
    profit_val = net * (pf / 100)
    total = net + overhead_val + profit_val

    logger.info(
        "Compute item priced: %s / %s", item.section, item.name,
        extra={"line_count": len(lines), "net_cost": round2(net), "total_cost": round2(total)},
    )

    return ComputedRate(
        section=item.section,
        name=item.name,
        output_unit=item.output_unit,
        overhead_percent=oh,
        profit_percent=pf,
        net_cost=round2(net),
        overhead_value=round2(overhead_val),
        profit_value=round2(profit_val),
        total_cost=round2(total),
        lines=lines,
    )
