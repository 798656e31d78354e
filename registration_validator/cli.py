from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from .agent.browser import BrowserLaunchError
from .agent.capture import CaptureManager
from .agent.orchestrator import ValidationMetrics, run_registration_validation
from .config import settings
from .handoff.supervisor import ClaimHandoffSupervisor
from .storage.minio_store import get_storage
from .store import ValidationStore

EXIT_OK = 0
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registration-validator",
        description="Validate a registered account id in a headless browser and hand off to the claim workflow.",
    )
    parser.add_argument("identifier", help="Account id to validate (numeric)")
    parser.add_argument("display_name", help="Display name registered with the id")
    return parser


async def run(identifier: str, display_name: str) -> int:
    try:
        store = ValidationStore.from_url(settings.database_url)
        store.ping()
    except SQLAlchemyError as exc:
        logging.error("store_unreachable reason=%s", exc)
        return EXIT_FATAL
    logging.info("connected to store")

    metrics = ValidationMetrics()
    try:
        result = await run_registration_validation(
            identifier,
            display_name,
            store=store,
            supervisor=ClaimHandoffSupervisor(),
            capture_manager=CaptureManager(get_storage()),
            metrics=metrics,
        )
    except BrowserLaunchError as exc:
        logging.error("fatal_startup_failure reason=%s", exc)
        return EXIT_FATAL
    finally:
        store.engine.dispose()

    logging.info("validation_summary %s", metrics.summary())
    if result.handoff is not None:
        logging.info("claim running detached pid=%s stdout=%s", result.handoff.pid, result.handoff.stdout_path)

    # Let the detached child settle before this process disappears.
    await asyncio.sleep(settings.exit_grace_s)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if not args.identifier.isdigit():
        logging.warning("identifier_not_numeric identifier=%s continuing", args.identifier)
    return asyncio.run(run(args.identifier, args.display_name))


if __name__ == "__main__":
    sys.exit(main())
