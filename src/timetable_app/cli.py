"""
Command-line interface for the weekly timetable engine.

Usage examples:
    python -m timetable_app.cli --config data/school.json
    python -m timetable_app.cli --config data/school.json --out result.json
    python -m timetable_app.cli --config data/school.json --mode best-effort
    python -m timetable_app.cli --config data/school.json --mode edit \\
        --block 12 --target 3,2 --scope free

Exit codes:
    0  schedule produced (OPTIMAL or FEASIBLE) or edit applied
    1  bad arguments, unreadable config, or structural infeasibility
    2  solver returned INFEASIBLE / MODEL_INVALID / TIMEOUT, or edit failed
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Tuple

from timetable_app.errors import StructuralInfeasibility
from timetable_app.io_json import ConfigError, load_config, save_result
from timetable_app.logger import configure_logging
from timetable_app.models import OperationMode, RetentionMode
from timetable_app.solver.api import edit, solve
from timetable_app.solver.precheck import precheck

logger = logging.getLogger(__name__)


def _slot(text: str) -> Tuple[int, int]:
    try:
        day, hour = (int(x) for x in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected DAY,HOUR, got {text!r}") from None
    return day, hour


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Weekly school timetable engine — command-line mode",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  timetable-cli --config school.json\n"
            "  timetable-cli --config school.json --mode best-effort --out result.json\n"
            "  timetable-cli --config school.json --mode edit --block 12 --target 3,2\n"
        ),
    )
    parser.add_argument("--config", required=True, metavar="FILE",
                        help="path to the snapshot JSON")
    parser.add_argument("--out",    default=None,  metavar="FILE",
                        help="write result JSON to this path (optional)")
    parser.add_argument("--mode", default=None,
                        choices=[m.value for m in OperationMode],
                        help="operation mode (default: params.mode from the config)")
    parser.add_argument("--retention", default=None,
                        choices=[r.value for r in RetentionMode],
                        help="placement retention for rebuild / best-effort")
    parser.add_argument("--time-limit", type=float, default=None, metavar="SECONDS",
                        help="per-attempt time budget")
    parser.add_argument("--block", type=int, default=None, help="block id to move (edit mode)")
    parser.add_argument("--target", type=_slot, default=None, metavar="DAY,HOUR",
                        help="target slot (edit mode)")
    parser.add_argument("--scope", default="focused", choices=["focused", "free", "greedy"],
                        help="edit strategy (default: focused)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, metavar="FILE")
    args = parser.parse_args()

    configure_logging(args.log_level, args.log_file)

    # ── 1. load config ────────────────────────────────────────────────────────
    try:
        cfg = load_config(args.config)
    except FileNotFoundError:
        print(f"[ERROR] File not found: {args.config}", file=sys.stderr)
        sys.exit(1)
    except (ConfigError, ValueError) as e:
        print(f"[ERROR] Could not load config: {e}", file=sys.stderr)
        sys.exit(1)

    params = cfg.params
    if args.mode:
        params.mode = OperationMode(args.mode)
    if args.retention:
        params.retention = RetentionMode(args.retention)
    if args.time_limit:
        params.solver.max_time_in_seconds = args.time_limit

    # ── 2. edit mode ──────────────────────────────────────────────────────────
    if params.mode is OperationMode.EDIT:
        if args.block is None or args.target is None:
            parser.error("edit mode needs --block and --target")
        day, hour = args.target
        result = edit(cfg.state, args.block, day, hour, args.scope, params)
        print(f"\n{'OK' if result.success else 'FAILED'}: {result.message}")
        for c in result.changes:
            print(f"  {c.description}")
        if args.out:
            save_result(result, args.out)
            print(f"\nResult written to: {args.out}")
        sys.exit(0 if result.success else 2)

    # ── 3. precheck: show warnings before handing over to the solver ─────────
    report = precheck(cfg.state)
    for w in report.warnings:
        print(f"[WARNING] {w}")

    # ── 4. solve ──────────────────────────────────────────────────────────────
    print(f"Running solver ({params.mode.value}, {params.retention.value})…")
    try:
        result = solve(cfg.state, params)
    except StructuralInfeasibility as e:
        errors = e.report.errors if e.report else [str(e)]
        print(
            f"\n[ERROR] {len(errors)} structural problem(s) found — "
            "schedule cannot be produced until these are fixed:\n",
            file=sys.stderr,
        )
        for i, err in enumerate(errors, 1):
            print(f"  {i}. {err}", file=sys.stderr)
        sys.exit(1)

    # ── 5. print summary ──────────────────────────────────────────────────────
    print(f"\nStatus    : {result.status}")
    if result.objective_value is not None:
        print(f"Objective : {result.objective_value}")
    for k, v in result.stats.items():
        print(f"  {k}: {v}")
    for d in result.diagnostics:
        print(f"[DIAG] {d}")

    lessons = {b.id: b for b in cfg.state.blocks}
    classes = {c.id: c.name for c in cfg.state.classes}
    print(f"\nSchedule ({len(result.entries)} placed, {len(result.unplaced)} unplaced):")
    for e in sorted(result.entries, key=lambda e: (e.day, e.hour, e.class_id)):
        b = lessons[e.block_id]
        print(f"  [d{e.day} h{e.hour}-{e.hour + b.duration - 1}]  "
              f"{classes.get(e.class_id, e.class_id)}  {e.lesson_code}  ({e.provenance})")
    for u in result.unplaced:
        print(f"  [unplaced]  {classes.get(u.class_id, u.class_id)}  {u.lesson_code}  {u.reason}")

    # ── 6. write output file (optional) ──────────────────────────────────────
    if args.out:
        save_result(result, args.out)
        print(f"\nResult written to: {args.out}")

    sys.exit(0 if result.ok else 2)


if __name__ == "__main__":
    main()
