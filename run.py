"""Entry point for the Library Loan API.

This script serves the FastAPI application with Uvicorn.  It is
intended to be executed from the project root, for example under
Docker, where you only specify a single Python file to run.

Configuration such as DATABASE_URL, LOG_LEVEL, API_HOST and API_PORT is
read from the environment; see ``library_loan_api/app/core/config.py``
for the full list.

Usage:
    python run.py
"""
import asyncio

from uvicorn import Config, Server

from library_loan_api.app.core.config import settings
from library_loan_api.app.main import app


async def run_api() -> None:
    """Start the API server on ``API_HOST:API_PORT``."""
    config = Config(
        app=app,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
    server = Server(config)
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(run_api())
    except (KeyboardInterrupt, SystemExit):
        pass
