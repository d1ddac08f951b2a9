"""Main application entry point."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from rentbook.api.app import app  # noqa: E402
from rentbook.config import settings  # noqa: E402
from rentbook.services.logging import configure_logging, uvicorn_log_level  # noqa: E402

configure_logging()
logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API server."""
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting rentbook API on {host}:{port} (database: {settings.database_url})")
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level())


if __name__ == "__main__":
    main()
