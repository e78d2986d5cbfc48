"""
Main entrypoint: TaxBot FastAPI server under uvicorn.

Env: SOLANA_RPC_URL (or HELIUS_API_KEY), SOLANA_NETWORK, API_HOST, PORT / API_PORT,
CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT. See backend_taxbot.config.settings.

Equivalent: uvicorn backend_taxbot.api_server.app:app --host 0.0.0.0 --port 3001
"""

import os
import sys

# Configure structured JSON logging before other imports that may log
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Load settings, then run the FastAPI server in the main thread."""
    from backend_taxbot.config import get_settings

    try:
        settings = get_settings()
    except ValueError as e:
        logger.error("main_config_error", error=str(e))
        sys.exit(1)

    from backend_taxbot.api_server.server import create_app
    import uvicorn

    app = create_app(settings)
    logger.info(
        "main_server_starting",
        host=settings.api_host,
        port=settings.api_port,
        environment=settings.environment,
    )
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
