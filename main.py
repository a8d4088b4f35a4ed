"""
Operator CLI for the decision pipeline.

Commands:
    evaluate  Run one Facts + Intent pair through decision and execution
    confirm   Re-run the Executor for a stored recommendation with confirmation
    audit     Print the audit trail of a recommendation

Exit codes:
    0 - Command completed (including rejections, which are normal outcomes)
    1 - Fatal error (bad input, configuration or storage failure)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from config.constants import OperatingMode
from config.logging_config import cleanup_logs, setup_logging
from config.settings import Settings, load_settings
from core.domain.facts import TradeFacts
from core.domain.intent import TradeIntent
from core.exceptions import TradingError
from execution.context import SystemContextAdapter
from execution.decision import DecisionEngine
from execution.executor import ExecutionControls, Executor
from execution.lifecycle_manager import LifecycleManager
from execution.lifecycle_store import SQLiteRecommendationStore
from execution.orchestrator import Orchestrator
from observability.audit_log import SQLiteAuditLog

logger = logging.getLogger(__name__)


class StaticContextProvider:
    """Context provider that serves one snapshot read from the input file."""

    def __init__(self, snapshot: Optional[dict[str, Any]]):
        self._snapshot = snapshot

    def snapshot(self) -> Optional[dict[str, Any]]:
        return self._snapshot


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Trade recommendation decision pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py evaluate signal.json                         # Advisory mode (settings default)
  python main.py evaluate signal.json --mode semi_automated   # Stops at pending_confirmation
  python main.py confirm rec_0123abcd --mode semi_automated --dry-run
  python main.py audit rec_0123abcd

Input file for evaluate:
  {"facts": {...}, "intent": {...}, "context": {...}, "quantity": 10}
        """,
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--json-logs", action="store_true", help="JSON console logs")
    parser.add_argument(
        "--log-dir", default=None, help="Also write JSON log files here; old files are pruned"
    )
    parser.add_argument("--audit-db", default=None, help="Override the audit database path")
    parser.add_argument("--store-db", default=None, help="Override the recommendation database path")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_controls(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--mode",
            choices=[m.value for m in OperatingMode],
            default=None,
            help="Operating mode for this call (default: from settings)",
        )
        p.add_argument("--kill-switch", action="store_true", help="Activate the kill switch for this call")
        p.add_argument("--dry-run", action="store_true", help="Run all gates without calling a venue")

    evaluate = sub.add_parser("evaluate", help="Evaluate one recommendation")
    evaluate.add_argument("input", type=Path, help="JSON file with facts, intent and optional context")
    evaluate.add_argument("--confirm", action="store_true", help="Confirm for semi-automated mode")
    evaluate.add_argument("--risk-pct", type=float, default=None, help="Risk per trade in percent of equity")
    add_controls(evaluate)

    confirm = sub.add_parser("confirm", help="Confirm a stored recommendation")
    confirm.add_argument("recommendation_id")
    add_controls(confirm)

    audit = sub.add_parser("audit", help="Print audit entries")
    audit.add_argument("recommendation_id", nargs="?", default=None, help="Omit to list ids")

    return parser.parse_args(argv)


def controls_from_args(args: argparse.Namespace, settings: Settings) -> ExecutionControls:
    defaults = ExecutionControls.from_settings(settings)
    return ExecutionControls(
        kill_switch_active=defaults.kill_switch_active or args.kill_switch,
        mode=OperatingMode(args.mode) if args.mode else defaults.mode,
    )


def build_pipeline(
    settings: Settings,
    context: Optional[dict[str, Any]] = None,
    audit_db: Optional[str] = None,
    store_db: Optional[str] = None,
) -> Orchestrator:
    """Wire the pipeline against the SQLite stores."""
    store = SQLiteRecommendationStore(store_db or settings.storage.recommendation_db_path)
    audit_log = SQLiteAuditLog(audit_db or settings.storage.audit_db_path)
    manager = LifecycleManager(store, audit_log)
    engine = DecisionEngine(settings)
    return Orchestrator(
        engine,
        manager,
        Executor(manager, venue=None, settings=settings),
        context_adapter=SystemContextAdapter(StaticContextProvider(context)),
        settings=settings,
    )


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_evaluate(args: argparse.Namespace, settings: Settings) -> int:
    raw = json.loads(args.input.read_text())
    facts = TradeFacts.model_validate(raw["facts"])
    intent = TradeIntent.model_validate(raw["intent"])

    pipeline = build_pipeline(settings, raw.get("context"), args.audit_db, args.store_db)
    try:
        result = await pipeline.process(
            facts,
            intent,
            controls_from_args(args, settings),
            confirmed=args.confirm,
            dry_run=args.dry_run,
            quantity=raw.get("quantity"),
            risk_per_trade_pct=args.risk_pct,
        )
    finally:
        pipeline.manager.store.close()
        pipeline.manager.audit_log.close()

    _print(
        {
            "recommendation_id": result.recommendation.recommendation_id,
            "stage": result.stage.value,
            "approved": result.decision.approved,
            "reason": result.decision.reason,
            "decision_path": [o.to_dict() for o in result.decision.decision_path],
            "execution": (
                result.execution.model_dump(mode="json", exclude={"recommendation"}) if result.execution else None
            ),
            "lifecycle_state": (
                result.execution.recommendation.lifecycle_state.value
                if result.execution and result.execution.recommendation
                else result.recommendation.lifecycle_state.value
            ),
        }
    )
    return 0


async def run_confirm(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = build_pipeline(settings, None, args.audit_db, args.store_db)
    try:
        outcome = await pipeline.confirm(
            args.recommendation_id, controls_from_args(args, settings), dry_run=args.dry_run
        )
    finally:
        pipeline.manager.store.close()
        pipeline.manager.audit_log.close()
    _print(outcome.model_dump(mode="json", exclude={"recommendation"}))
    return 0


def run_audit(args: argparse.Namespace, settings: Settings) -> int:
    audit_log = SQLiteAuditLog(args.audit_db or settings.storage.audit_db_path)
    try:
        if args.recommendation_id is None:
            _print(audit_log.recommendation_ids())
        else:
            _print([entry.to_dict() for entry in audit_log.entries(args.recommendation_id)])
    finally:
        audit_log.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(
        level=args.log_level,
        json_format=args.json_logs,
        script_name="decision_pipeline" if args.log_dir else None,
        log_dir=args.log_dir,
    )

    try:
        settings = load_settings()
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.log_dir:
        deleted = cleanup_logs(args.log_dir, retention_days=settings.storage.log_retention_days)
        if deleted > 0:
            logger.info(f"Deleted {deleted} old log files from {args.log_dir}")

    try:
        if args.command == "evaluate":
            return asyncio.run(run_evaluate(args, settings))
        if args.command == "confirm":
            return asyncio.run(run_confirm(args, settings))
        return run_audit(args, settings)
    except (OSError, KeyError, json.JSONDecodeError, ValidationError, TradingError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
