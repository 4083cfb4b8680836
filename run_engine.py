#!/usr/bin/env python3
"""
CLI for the Texas Electricity Plan Engine.

Usage:
    python run_engine.py zip 75201
    python run_engine.py route /electricity-plans/dallas-tx/12-month/fixed-rate
    python run_engine.py plans dallas-tx contract=12 type=fixed --usage 2000
    python run_engine.py esiid "1234 Main St" 75201
    python run_engine.py coverage --start 75000 --end 75999
    python run_engine.py export houston-tx --output houston_plans.xlsx
"""

import argparse
import json
import logging
import sys
import time
from collections import Counter

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from plan_engine.config import Config
from plan_engine.engine import PlanEngine
from plan_engine.exceptions import PlanEngineError
from plan_engine.plan_filter import FilterEngine, parse_filter_query

PLAN_COLUMNS = [
    "Plan ID", "Plan Name", "Provider", "Rate Type", "Term (months)",
    "Rate (¢/kWh)", "Total @500", "Total @1000", "Total @2000",
    "Monthly Fee", "ETF", "Green %", "Deposit Required", "Promotion",
]

FILL_HEADER = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
FONT_HEADER = Font(color="FFFFFF", bold=True, size=11)


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def parse_filter_args(tokens) -> dict:
    """Turn ["contract=12", "type=fixed"] into a filter query dict."""
    query = {}
    for token in tokens or []:
        key, sep, value = token.partition("=")
        if not sep:
            raise ValueError(f"Filter '{token}' must look like key=value")
        query[key.strip()] = value.strip()
    return query


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def cmd_zip(engine: PlanEngine, args):
    print_json(engine.validate_zip(args.zip_code))


def cmd_route(engine: PlanEngine, args):
    print_json(engine.faceted_search(args.path, require_plans=not args.no_plans))


def cmd_plans(engine: PlanEngine, args):
    city = engine.resolve_city(args.city)
    flt = parse_filter_query(parse_filter_args(args.filters), city.slug)
    result = FilterEngine(engine.city_plans(city.slug, args.usage)).apply_filters(flt)

    print(f"{result['filtered_count']} of {result['total_count']} plans for {city.name} "
          f"at {args.usage} kWh ({result['time_ms']:.0f}ms)")
    for p in result["plans"][:args.limit]:
        print(f"  {p.pricing.rate_per_kwh:6.1f}¢  {p.contract.length:>2}mo  {p.contract.type:<8}  "
              f"{p.provider.name} - {p.name}")


def cmd_esiid(engine: PlanEngine, args):
    print_json(engine.esiid_lookup(args.address, args.zip_code, args.usage))


def cmd_coverage(engine: PlanEngine, args):
    print_json(engine.coverage(args.start, args.end))


def _write_sheet_header(ws, columns):
    for col, title in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col, value=title)
        cell.fill = FILL_HEADER
        cell.font = FONT_HEADER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    ws.freeze_panes = "A2"


def export_plans(plans, city_name: str, output_path: str):
    """Write a Plans sheet and a Summary sheet for one city."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Plans"
    _write_sheet_header(ws, PLAN_COLUMNS)

    for i, p in enumerate(plans, 2):
        row = [
            p.id, p.name, p.provider.name, p.contract.type, p.contract.length,
            p.pricing.rate_per_kwh, p.pricing.total_500kwh, p.pricing.total_1000kwh,
            p.pricing.total_2000kwh, p.pricing.monthly_fee,
            p.contract.early_termination_fee, p.features.green_energy,
            "Yes" if p.features.deposit_required else "No", p.promotion or "",
        ]
        for col, value in enumerate(row, 1):
            ws.cell(row=i, column=col, value=value)

    for col in range(1, len(PLAN_COLUMNS) + 1):
        width = max(len(str(ws.cell(row=r, column=col).value or "")) for r in range(1, ws.max_row + 1))
        ws.column_dimensions[get_column_letter(col)].width = min(max(width + 2, 10), 50)
    ws.auto_filter.ref = f"A1:{get_column_letter(len(PLAN_COLUMNS))}{max(ws.max_row, 1)}"

    # Summary sheet
    ss = wb.create_sheet("Summary")
    _write_sheet_header(ss, ["Metric", "Value"])
    rates = [p.pricing.rate_per_kwh for p in plans]
    summary = [
        ("City", city_name),
        ("Total plans", len(plans)),
        ("Providers", len({p.provider.name for p in plans})),
        ("Lowest rate (¢/kWh)", min(rates) if rates else ""),
        ("Highest rate (¢/kWh)", max(rates) if rates else ""),
        ("Average rate (¢/kWh)", round(sum(rates) / len(rates), 2) if rates else ""),
        ("", ""),
    ]
    for rate_type, count in sorted(Counter(p.contract.type for p in plans).items()):
        summary.append((f"{rate_type.title()} rate plans", count))
    for length, count in sorted(Counter(p.contract.length for p in plans).items()):
        summary.append((f"{length}-month plans", count))

    for i, (metric, value) in enumerate(summary, 2):
        ss.cell(row=i, column=1, value=metric)
        ss.cell(row=i, column=2, value=value)
    ss.column_dimensions["A"].width = 28
    ss.column_dimensions["B"].width = 20

    wb.save(output_path)


def cmd_export(engine: PlanEngine, args):
    city = engine.resolve_city(args.city)
    plans = engine.city_plans(city.slug, args.usage)
    export_plans(plans, city.name, args.output)
    print(f"Wrote {len(plans)} plans to {args.output}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Texas Electricity Plan Engine")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument("--env-file", default=None, help="Load settings from this .env file")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("zip", help="Validate a ZIP code and show its city/TDSP")
    p.add_argument("zip_code")
    p.set_defaults(func=cmd_zip)

    p = sub.add_parser("route", help="Validate a faceted URL path")
    p.add_argument("path")
    p.add_argument("--no-plans", action="store_true", help="Skip the plan availability check")
    p.set_defaults(func=cmd_route)

    p = sub.add_parser("plans", help="List a city's plans with filters (key=value)")
    p.add_argument("city")
    p.add_argument("filters", nargs="*", help="e.g. contract=12 type=fixed green=100 sort=price")
    p.add_argument("--usage", type=int, default=1000, choices=(500, 1000, 2000))
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_plans)

    p = sub.add_parser("esiid", help="Resolve an address to its TDSP through ERCOT")
    p.add_argument("address")
    p.add_argument("zip_code")
    p.add_argument("--usage", type=int, default=1000)
    p.set_defaults(func=cmd_esiid)

    p = sub.add_parser("coverage", help="ZIP mapping coverage over a range")
    p.add_argument("--start", type=int, default=None)
    p.add_argument("--end", type=int, default=None)
    p.set_defaults(func=cmd_coverage)

    p = sub.add_parser("export", help="Export a city's plans to Excel")
    p.add_argument("city")
    p.add_argument("--output", default="plans.xlsx")
    p.add_argument("--usage", type=int, default=1000, choices=(500, 1000, 2000))
    p.set_defaults(func=cmd_export)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    print("Loading engine...")
    t0 = time.time()
    engine = PlanEngine(Config.from_env(args.env_file))
    print(f"Engine ready in {time.time() - t0:.1f}s")

    try:
        args.func(engine, args)
    except (PlanEngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
