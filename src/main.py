"""
Payment Reconciliation Core - Command Line Runner

Reconciles one tenant's payment batch against its invoice batch from JSON
files and writes the structured report. Handles CLI arguments, logging setup
and settings; the matching itself lives in reconciliation_engine.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, List, Optional

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from metrics import MetricsCollector
from models import MatcherConfig, ReconciliationReport, Settings
from reconciliation_engine import ReconciliationEngine, ReconciliationInputError
from report_generator import ReportGenerator


logger = structlog.get_logger()


class ReconciliationRunner:
    """
    Coordinates one reconciliation run from files.

    Loads the payment and invoice batches, runs the engine, builds the report
    and writes it as JSON. Input problems are logged and reported as failure
    rather than raised, so a scheduler sees a clean exit status.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.engine = ReconciliationEngine()
        self.report_generator = ReportGenerator()
        self.metrics = MetricsCollector(port=settings.METRICS_PORT)

    @staticmethod
    def _load_batch(path: Path) -> List[Any]:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON array of records")
        return data

    def _output_path(self, report: ReconciliationReport, output: Optional[Path]) -> Path:
        if output is not None:
            return output
        tenant = report.tenant_id or "empty"
        filename = f"reconciliation_{tenant}_{report.run_at.date().isoformat()}.json"
        return self.settings.REPORT_OUTPUT_DIR / filename

    def run(
        self,
        payments_path: Path,
        invoices_path: Path,
        as_of: Optional[date] = None,
        tolerance: Optional[int] = None,
        output: Optional[Path] = None,
    ) -> Optional[Path]:
        """Run reconciliation; return the report path, or None if the run failed."""
        if self.settings.METRICS_ENABLED:
            self.metrics.start_metrics_server()

        clock = None
        if as_of is not None:
            fixed = datetime.combine(as_of, time.min, tzinfo=timezone.utc)
            clock = lambda: fixed  # noqa: E731
        try:
            config = MatcherConfig.from_settings(
                self.settings, tolerance_minor_units=tolerance, clock=clock
            )
        except ValidationError as e:
            logger.error("Invalid matcher options", error=str(e))
            return None

        try:
            payments = self._load_batch(payments_path)
            invoices = self._load_batch(invoices_path)
        except (OSError, ValueError) as e:
            logger.error("Could not read input batch", error=str(e))
            return None
        logger.info("Batches loaded", payments=len(payments), invoices=len(invoices))

        try:
            result = self.engine.reconcile(payments, invoices, config)
        except ReconciliationInputError as e:
            logger.error("Reconciliation aborted", problems=e.problems, error=str(e).splitlines()[0])
            return None

        report = self.report_generator.generate(result)
        report_path = self._output_path(report, output)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report.to_json(), encoding="utf-8")
        logger.info(
            "Report written",
            path=str(report_path.as_posix()),
            review_status=report.summary.review_status,
            exceptions=report.summary.total_exceptions,
        )
        return report_path


def setup_logging(level: str = "INFO") -> None:
    """
    Configure structured JSON logging for production observability.

    Sets up structlog with:
    - Timestamp formatting
    - Log level inclusion
    - Stack trace rendering
    - Exception info formatting
    - JSON output for log aggregation
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stdout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Payment reconciliation: match payments against open invoices.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --payments payments.json --invoices invoices.json
  python main.py --payments p.json --invoices i.json --as-of 2026-10-01 --output report.json
        """,
    )
    parser.add_argument("--payments", type=Path, required=True, help="JSON array of payments.")
    parser.add_argument("--invoices", type=Path, required=True, help="JSON array of invoices.")
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference date for the past-due rule (YYYY-MM-DD). Defaults to now.",
    )
    parser.add_argument(
        "--tolerance",
        type=int,
        default=None,
        help="Amount delta in minor units below which over/underpayment is not flagged.",
    )
    parser.add_argument(
        "--output", type=Path, default=None, help="Report path. Defaults to REPORT_OUTPUT_DIR."
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    try:
        settings = Settings()
    except Exception as e:
        logger.error(
            "Failed to load environment settings. Check your .env file.", error=str(e)
        )
        return 1

    setup_logging(settings.LOG_LEVEL)
    args = build_parser().parse_args(argv)

    runner = ReconciliationRunner(settings)
    report_path = runner.run(
        args.payments,
        args.invoices,
        as_of=args.as_of,
        tolerance=args.tolerance,
        output=args.output,
    )
    return 0 if report_path is not None else 1


if __name__ == "__main__":
    sys.exit(main())
