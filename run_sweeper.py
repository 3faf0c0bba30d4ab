"""Run the expired refresh token sweep as a standalone process."""

import logging
import time

from authcore.config import settings
from authcore.core.database import SessionLocal, get_engine
from authcore.services.refresh_ledger import RefreshTokenLedger
from authcore.services.revocation_cache import RevocationCache
from authcore.services.token_sweeper import TokenSweeper


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    get_engine()
    ledger = RefreshTokenLedger.from_settings(settings, RevocationCache.from_settings(settings))
    sweeper = TokenSweeper(ledger, SessionLocal, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)
    sweeper.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        sweeper.stop()


if __name__ == "__main__":
    main()
