"""Triage worker entry point: runs the risk.flagged subscription loop.

Started by the host process, e.g. `python -m sukoon.services.triage_service.worker`.
SIGTERM and SIGINT stop the loop after in-flight deliveries settle.
"""
import logging
import os
import signal

from sukoon.shared.utils import configure_pii_salt
from .config import TriageServiceConfig
from .history_repository import PostgresRiskHistoryStore
from .runtime import build_subscriber

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    configure_pii_salt(os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars"))

    config = TriageServiceConfig.from_env()
    subscriber = build_subscriber(config)

    if isinstance(subscriber.store, PostgresRiskHistoryStore):
        subscriber.store.create_schema()

    def _shutdown(signum, _frame):
        logger.info("TRIAGE_WORKER_SHUTDOWN_REQUESTED", extra={"signal": signum})
        subscriber.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    subscriber.run()


if __name__ == "__main__":
    main()
