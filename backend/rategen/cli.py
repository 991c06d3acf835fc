"""
Rate breakdown resolver — command-line entry point.

Reads a breakdown from a JSON file, resolves it and prints the unit prices,
line totals and aggregates.

Usage:
    rategen-resolve breakdown.json                  # Coloured table
    rategen-resolve breakdown.json --json           # Machine-readable output
    rategen-resolve breakdown.json --log-level DEBUG

Input JSON:
    {"lines": [{"componentName": "Cement", "quantity": 10, "unit": "bag",
                "unitPrice": "2500"}, ...],
     "manualNetCost": 0, "overheadPercent": 10, "profitPercent": 25}

Exit codes: 0 when the breakdown may be saved, 1 when it fails the
persistence gate, 2 when the input cannot be read.
"""

import json
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from rategen import config
from rategen.models.breakdown_schema import BreakdownRequest, BreakdownResult
from rategen.services.breakdown_resolver import BreakdownResolver, persistence_issues
from rategen.services.logging_config import setup_logging

# ANSI colors
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
CYAN = "\033[96m"
BOLD = "\033[1m"
RESET = "\033[0m"
DIM = "\033[2m"

USAGE = "Usage: rategen-resolve <breakdown.json> [--json] [--log-level LEVEL]"


def load_request(path: str) -> BreakdownRequest:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return BreakdownRequest.model_validate(data)


def result_to_dict(request: BreakdownRequest, result: BreakdownResult) -> dict:
    return {
        "lines": [
            {
                "componentName": line.component_name,
                "quantity": line.quantity,
                "unit": line.unit,
                "unitPrice": price,
                "lineTotal": total,
                "error": err.value if err is not None else None,
            }
            for line, price, total, err in zip(
                request.lines, result.unit_prices, result.line_totals, result.errors_by_index
            )
        ],
        "netCost": result.net_cost,
        "overheadPercent": request.overhead_percent,
        "overheadValue": result.overhead_value,
        "profitPercent": request.profit_percent,
        "profitValue": result.profit_value,
        "totalCost": result.total_cost,
        "rounds": result.rounds,
        "converged": result.converged,
        "issues": persistence_issues(result),
    }


def print_separator():
    print(f"{DIM}{'-' * 78}{RESET}")


def print_table(request: BreakdownRequest, result: BreakdownResult) -> None:
    print(f"\n{BOLD}{CYAN}RATE BREAKDOWN{RESET}  ({len(request.lines)} lines, {result.rounds} rounds)")
    print_separator()
    print(f"{BOLD}{'#':>3}  {'Component':<28}{'Qty':>10}  {'Unit':<6}{'Unit price':>14}{'Total':>15}{RESET}")
    print_separator()
    for i, (line, price, total, err) in enumerate(zip(
        request.lines, result.unit_prices, result.line_totals, result.errors_by_index
    ), start=1):
        row = f"{i:>3}  {line.component_name[:27]:<28}{line.quantity:>10.2f}  {line.unit[:5]:<6}{price:>14.2f}{total:>15.2f}"
        if err is not None:
            print(f"{RED}{row}  x {err.value}{RESET}")
        else:
            print(row)
    print_separator()
    print(f"  Net cost        {result.net_cost:>15.2f}")
    print(f"  Overhead ({request.overhead_percent:g}%) {result.overhead_value:>13.2f}")
    print(f"  Profit ({request.profit_percent:g}%)   {result.profit_value:>13.2f}")
    print(f"  {BOLD}Total cost      {result.total_cost:>15.2f}{RESET}")

    if not result.converged:
        print(f"\n{YELLOW}! Values were still changing after {result.rounds} rounds{RESET}")

    issues = persistence_issues(result)
    if issues:
        print(f"\n{RED}{BOLD}[FAIL] Cannot save this rate:{RESET}")
        for issue in issues:
            print(f"  {RED}x{RESET} {issue}")
    else:
        print(f"\n{GREEN}{BOLD}[OK] Breakdown can be saved{RESET}")


def main(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    load_dotenv()

    as_json = "--json" in args
    # .env may override what config read at import time
    level = os.getenv("LOG_LEVEL", config.LOG_LEVEL)
    json_logs = os.getenv("LOG_FORMAT", "json" if config.LOG_JSON else "text").lower() != "text"
    if "--log-level" in args:
        idx = args.index("--log-level")
        if idx + 1 < len(args):
            level = args[idx + 1]
            del args[idx:idx + 2]
        else:
            del args[idx]
    positional = [a for a in args if not a.startswith("--")]

    setup_logging(level=level, json_output=json_logs)

    if len(positional) != 1:
        print(USAGE, file=sys.stderr)
        return 2

    try:
        request = load_request(positional[0])
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"{RED}ERROR: cannot read breakdown {positional[0]}: {e}{RESET}", file=sys.stderr)
        return 2

    result = BreakdownResolver().resolve(
        request.lines,
        request.manual_net_cost_fallback,
        request.overhead_percent,
        request.profit_percent,
    )

    if as_json:
        print(json.dumps(result_to_dict(request, result), indent=2))
    else:
        print_table(request, result)

    return 0 if result.is_persistable else 1


if __name__ == "__main__":
    sys.exit(main())
