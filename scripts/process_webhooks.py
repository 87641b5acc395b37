"""Run the webhook processor once, e.g. from an external cron.

Exits 0 when the run succeeded (or was skipped), 1 otherwise.
"""
import asyncio
import json
import sys

from webhook_ingest.config import get_settings
from webhook_ingest.core.logging import setup_logging
from webhook_ingest.db import close_engine, init_engine
from webhook_ingest.services.webhook_processor import run_process_webhooks


def main() -> int:
    setup_logging(get_settings().LOG_LEVEL)
    init_engine()
    try:
        result = asyncio.run(run_process_webhooks())
    finally:
        close_engine()

    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
