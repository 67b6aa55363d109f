from __future__ import annotations

import logging

from docqa.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Root logging setup; every module logs through logging.getLogger(__name__)."""
    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # The OpenAI SDK logs every request at INFO through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
