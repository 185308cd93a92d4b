from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mediacache.config import setup_logging
from mediacache.dependencies import get_container

from mediacache.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting Media Cache...")

    container = get_container()
    try:
        logger.info("Hydrating content listing cache...")
        await container.startup()
        logger.info("Content listing cache hydrated (%s entries)", len(container.content_cache))
    except Exception as e:
        logger.error(f"Failed to hydrate content listing cache: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down Media Cache...")

    try:
        await container.shutdown()
        logger.info("Pending cache writes flushed and store closed")
    except Exception as e:
        logger.error(f"Error during cache shutdown: {e}", exc_info=True)

    logger.info("Media Cache stopped")


app = FastAPI(
    title="Media Cache",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details"""
    logger.warning(f"Validation error for {request.method} {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        errors.append({
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100]
        })

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors
        }
    )
