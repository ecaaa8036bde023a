"""
Main entrypoint for the Library Loan API.

This module assembles the FastAPI application, sets up logging,
registers the error handlers and includes the API router under
``/api``.  The ``create_app`` function builds and configures the app,
which is then instantiated at module import time as ``app``.  Importing
the app here makes it easy to run with uvicorn, e.g.::

    uvicorn library_loan_api.app.main:app --reload

Interactive documentation is served at ``/api-docs``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.router import router as api_router
from .core.config import settings
from .core.db import Database
from .core.errors import Forbidden, LibraryError
from .core.logging_config import setup_logging


logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {"status": False, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    if isinstance(exc, Forbidden) and exc.penalty_until is not None:
        return error_response(
            exc.status_code,
            exc.message,
            data={"penalty_until": exc.penalty_until.isoformat()},
        )
    return error_response(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        # loc starts with "body"; keep the field path after it.
        loc = [str(part) for part in err.get("loc", ())][1:]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "")})
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        errors=errors,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Parameters
    ----------
    database : Optional[Database]
        Database handle used by every request.  Defaults to the file
        named by ``settings.database_url``.  Tests pass a handle on a
        temporary file.

    Returns
    -------
    FastAPI
        A configured FastAPI application instance.
    """
    # Initialise logging before anything else so that the startup
    # sequence below can log.
    setup_logging(settings.log_level, settings.log_file)

    db = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create the database file if needed and apply migrations.
        db.init_db(seed=settings.seed_demo_data)
        logger.info("%s %s using database %s", settings.project_name, settings.api_version, db.path)
        yield

    app = FastAPI(
        title=settings.project_name,
        version=settings.api_version,
        description="Library loan management API: books, members and loans.",
        debug=settings.debug,
        docs_url="/api-docs",
        lifespan=lifespan,
    )
    app.state.database = db

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router, prefix="/api")

    return app


# Create the application instance at import time so that tools such as
# uvicorn can discover it without calling create_app manually.
app = create_app()
