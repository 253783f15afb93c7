"""Connectivity check for the configured data backend.

Reads one row per category and reports whether each collection answered.

    python -m app.scripts.check_store            # settings.DATA_BACKEND
    python -m app.scripts.check_store --backend firestore
"""
from __future__ import annotations
import argparse
import asyncio
import sys

from app.domain import pet_report_schema as schema
from app.scripts.logging_config import get_logger, setup_logging
from app.services import firebase_app
from app.services.data_service import RemoteDataService, build_data_service
from app.services.errors import NetworkError
from config import settings

logger = get_logger("check_store")


async def check(service: RemoteDataService) -> bool:
    ok = True
    for category in schema.CATEGORIES:
        try:
            rows = await service.select_all(category)
        except NetworkError as e:
            logger.error("%s query failed: %s", schema.COLLECTIONS[category], e)
            ok = False
            continue
        sample = rows[0] if rows else None
        logger.info("%s query successful rows=%d sample=%s", schema.COLLECTIONS[category], len(rows), sample)
    await service.close()
    return ok


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check the pet report data backend")
    parser.add_argument("--backend", choices=["auto", "firestore", "memory"], default=None)
    parser.add_argument("--json-logs", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(json_fmt=args.json_logs or settings.LOG_JSON, level=settings.LOG_LEVEL)
    firebase_app.init_firebase()
    service = build_data_service(args.backend)
    logger.info("Testing %s connection...", service.name)
    return 0 if asyncio.run(check(service)) else 1


if __name__ == "__main__":
    sys.exit(main())
