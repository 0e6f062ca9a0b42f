from pathlib import Path
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import config
from logger_config import setup_logger
from app.exceptions import StorageError, StorageValidationError, NotFoundError
from app.routes.storage_routes import router
from app.services.storage_manager import StorageManager

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create and initialize storage manager
    app.state.storage_manager = StorageManager(Path(config.UPLOAD_DIR).absolute())
    await app.state.storage_manager.initialize()
    yield


app = FastAPI(
    title="Storage Bucket API",
    description="S3-like storage bucket service",
    version="1.0",
    openapi_tags=[{"name": "storage"}],
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """Map storage errors to a status code and a short message."""
    if isinstance(exc, StorageValidationError):
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
        detail = exc.message
    elif isinstance(exc, NotFoundError):
        logger.info(f"Not found {request.method} {request.url.path}: {exc.message} [{exc.kind.value}]")
        detail = exc.public_message
    else:
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.message} [{exc.kind.value}]")
        detail = exc.public_message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


app.include_router(router)


if __name__ == "__main__":
    logger.info("Starting Storage Bucket service...")
    logger.info(f"Environment: {config.APP_ENV}")
    logger.info(f"Upload directory: {Path(config.UPLOAD_DIR).absolute()}")
    logger.info(f"Maximum file size: {config.MAX_FILE_SIZE / (1024*1024):.2f} MB")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
