import os
import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from verity import config, __version__
from verity.core.database import create_block_store
from verity.core.exceptions import (
    InvalidInput, LedgerError, LinkageMismatch, SealTimeout, StorageFailure, TamperDetected
)
from verity.models.evidence import (
    BlockRecord, ChainValidationResponse, ErrorResponse, HealthResponse, SubmitResponse, VerifyResponse
)
from verity.services.evidence import EvidenceService

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

ERROR_STATUS = {
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    LinkageMismatch: status.HTTP_409_CONFLICT,
    SealTimeout: status.HTTP_503_SERVICE_UNAVAILABLE,
    TamperDetected: status.HTTP_500_INTERNAL_SERVER_ERROR,
    StorageFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def build_service_from_config() -> EvidenceService:
    """Create the block store and evidence service from environment configuration."""
    store = create_block_store(
        config.BLOCK_STORE,
        dsn=config.DB_DSN,
        min_connections=config.DB_MIN_CONNECTIONS,
        max_connections=config.DB_MAX_CONNECTIONS,
    )
    return EvidenceService.open(store, difficulty=config.DIFFICULTY, max_nonce=config.MAX_NONCE)


def get_service(request: Request) -> EvidenceService:
    return request.app.state.evidence_service


async def read_media(image: Optional[UploadFile]) -> bytes:
    """Read the uploaded media, enforcing presence and size limits."""
    if image is None:
        raise InvalidInput("missing image file")

    media_bytes = await image.read()
    if len(media_bytes) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {config.MAX_UPLOAD_SIZE} bytes"
        )
    if not media_bytes:
        raise InvalidInput("image file is empty")
    return media_bytes


def error_status(exc: LedgerError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(service: Optional[EvidenceService] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        service: Pre-built evidence service; when None one is created from
            configuration at startup and its block store closed at shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown events."""
        logger.info("Starting Verity evidence ledger API")
        owned = service is None
        try:
            app.state.evidence_service = build_service_from_config() if owned else service
        except Exception as e:
            logger.error("Failed to initialize application", error=str(e))
            raise

        yield

        logger.info("Shutting down Verity evidence ledger API")
        if owned:
            app.state.evidence_service.store.close()

    app = FastAPI(
        title="Verity Evidence Ledger API",
        description="Hash-chain ledger recording media fingerprints bound to capture location and time",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid Input"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
        }
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError):
        code = error_status(exc)
        if isinstance(exc, InvalidInput):
            message = "Invalid evidence input"
        elif request.url.path.endswith("/upload"):
            message = "Evidence submission failed"
        else:
            message = "Ledger operation failed"
        logger.warning("Ledger error",
                       url=str(request.url), error_type=type(exc).__name__,
                       status_code=code, error=str(exc))
        return JSONResponse(
            status_code=code,
            content=ErrorResponse(error=message, cause=str(exc)).model_dump(exclude_none=True)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception",
                     url=str(request.url), method=request.method, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="An unexpected error occurred", cause=str(exc)).model_dump(exclude_none=True)
        )

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Verity Evidence Ledger API",
            "version": __version__,
            "description": "Append-only proof-of-work ledger of media evidence fingerprints",
            "docs_url": "/docs",
            "health_url": "/health",
        }

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint with ledger and block store status."""
        evidence_service = get_service(request)
        try:
            store_healthy = await run_in_threadpool(evidence_service.store.check_connection)
            ledger_valid = await run_in_threadpool(evidence_service.validate)

            components = {
                "block_store": "healthy" if store_healthy else "unhealthy",
                "ledger": "healthy" if ledger_valid else "tampered",
            }
            overall_status = "healthy" if all(s == "healthy" for s in components.values()) else "degraded"

            return HealthResponse(
                status=overall_status,
                version=__version__,
                components={
                    **components,
                    "backend": evidence_service.store.backend,
                    "length": len(evidence_service.ledger),
                }
            )
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return HealthResponse(
                status="unhealthy",
                version=__version__,
                components={"error": str(e)}
            )

    @app.post("/api/evidence/upload", response_model=SubmitResponse, response_model_by_alias=True)
    async def upload_evidence(
        request: Request,
        image: Optional[UploadFile] = File(None, description="Normalized image or video frame"),
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        timestamp: Optional[str] = Form(None),
    ):
        """
        Record evidence: fingerprint the media with its capture metadata and
        append a sealed block to the ledger.
        """
        evidence_service = get_service(request)
        media_bytes = await read_media(image)
        metadata = {"latitude": latitude, "longitude": longitude, "timestamp": timestamp}

        start_time = time.time()
        # Sealing is CPU bound; keep it off the event loop
        result = await run_in_threadpool(evidence_service.submit, media_bytes, metadata)

        logger.info("Evidence upload processed",
                    block_index=result.index,
                    processing_time_ms=(time.time() - start_time) * 1000)
        return SubmitResponse(success=True, block_index=result.index, hash=result.fingerprint)

    @app.post("/api/evidence/verify", response_model=VerifyResponse,
              response_model_by_alias=True, response_model_exclude_none=True)
    async def verify_evidence(
        request: Request,
        image: Optional[UploadFile] = File(None, description="Normalized image or video frame"),
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        timestamp: Optional[str] = Form(None),
    ):
        """Check whether the presented media and metadata were previously recorded."""
        evidence_service = get_service(request)
        media_bytes = await read_media(image)
        metadata = {"latitude": latitude, "longitude": longitude, "timestamp": timestamp}

        result = await run_in_threadpool(evidence_service.verify, media_bytes, metadata)
        if not result.verified:
            return VerifyResponse(verified=False)
        return VerifyResponse(verified=True, block_index=result.index, timestamp=result.recorded_at)

    @app.get("/api/chain/validate", response_model=ChainValidationResponse, response_model_by_alias=True)
    async def validate_chain(request: Request):
        """Walk the full ledger checking block hashes and linkage."""
        evidence_service = get_service(request)
        valid = await run_in_threadpool(evidence_service.validate)
        tip = evidence_service.tip()
        return ChainValidationResponse(valid=valid, length=tip.index + 1, tip_hash=tip.hash)

    @app.get("/api/blocks/{index}", response_model=BlockRecord, response_model_by_alias=True)
    async def get_block(index: int, request: Request):
        """Get a stored block by index."""
        block = await run_in_threadpool(get_service(request).get_block, index)
        if block is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content=ErrorResponse(error=f"Block {index} not found").model_dump(exclude_none=True)
            )
        return BlockRecord(**block.to_record())

    @app.get("/stats", response_model=dict)
    async def get_system_stats(request: Request):
        """Get ledger and block store statistics."""
        stats = await run_in_threadpool(get_service(request).stats)
        return {
            **stats,
            "api_version": __version__,
            "timestamp": time.time()
        }

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "verity.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("DEBUG", "false").lower() == "true",
        log_config=None,  # We handle logging with structlog
    )
