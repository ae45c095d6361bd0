"""Batch entry point: reconcile a run config and print the report as JSON."""
import argparse
import asyncio
import logging
import sys

from .client import make_gateway
from .config import EpicSettings, load_run_config
from .errors import ConfigurationError
from .export import rows_for_report, write_schedule_csv
from .orchestrator import reconcile_schedules

logger = logging.getLogger(__name__)


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile Epic provider schedules into bookable appointments")
    parser.add_argument("config", help="Run config JSON (date range and providers)")
    parser.add_argument("--csv", dest="csv_file", help="Also write raw schedule slots to this CSV file")
    parser.add_argument("--allow-partial", action="store_true", help="Exit 0 even if some units failed")
    parser.add_argument("--timeout", type=float, default=None, help="Abort the run after this many seconds")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


async def _run(args) -> int:
    settings = EpicSettings.from_env()
    config = load_run_config(args.config)
    gateway = make_gateway(settings)

    report = await reconcile_schedules(
        config.providers, config.start_date, config.end_date,
        settings=settings, gateway=gateway, timeout=args.timeout,
    )
    print(report.model_dump_json(indent=2))

    csv_file = args.csv_file or config.destination_csv_file
    if csv_file:
        with open(csv_file, "w", encoding="utf-8", newline="") as stream:
            count = write_schedule_csv(rows_for_report(report), stream)
        logger.info("Wrote %d schedule slot(s) to %s", count, csv_file)

    if report.succeeded or args.allow_partial:
        return 0
    return 1


def main(argv=None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
