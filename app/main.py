"""
app/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Wires the connection registry, engines and dispatcher onto app.state
- Registers API routes and the WebSocket endpoint
- Manages application lifecycle (startup/shutdown, liveness sweep)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from app.core.config import settings, validate_settings
from app.core.errors import add_exception_handlers
from app.core.logging import setup_logging, get_logger
from app.db.mongo import connect_to_mongo, close_mongo_connection, check_database_health
from app.db.indexes import create_indexes
from app.realtime.dispatcher import EventDispatcher
from app.realtime.registry import ConnectionRegistry
from app.services.chat_service import ChatService
from app.services.matching_service import MatchingService
from app.services.user_service import set_presence
from app.api import cash_requests, connections, messages, realtime

# Initialize logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("🚀 Starting CashMate realtime backend...")

    try:
        logger.info("Validating configuration...")
        validate_settings()
        logger.info("✅ Configuration validated")

        logger.info("Connecting to MongoDB...")
        await connect_to_mongo()
        logger.info("✅ MongoDB connected")

        logger.info("Creating database indexes...")
        await create_indexes()
        logger.info("✅ Database indexes created")

        app.state.registry.start_sweeper()

        logger.info("🎉 CashMate started successfully!")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.DEBUG}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    logger.info("🛑 Shutting down CashMate...")

    try:
        await app.state.registry.stop_sweeper()

        await close_mongo_connection()
        logger.info("✅ MongoDB connection closed")

        logger.info("👋 CashMate shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


def build_realtime(app: FastAPI):
    """
    Creates the process-wide registry and the components that share it.
    Everything downstream receives the registry explicitly.
    """
    registry = ConnectionRegistry(
        sweep_interval=settings.PRESENCE_SWEEP_INTERVAL_SECONDS,
        on_presence_change=set_presence,
    )
    chat_service = ChatService(registry)

    app.state.registry = registry
    app.state.chat_service = chat_service
    app.state.matching_service = MatchingService(registry)
    app.state.dispatcher = EventDispatcher(registry, chat_service)


app = FastAPI(
    title="CashMate",
    description="Campus peer-to-peer cash requests with realtime chat",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,  # Disable docs in production
    redoc_url="/redoc" if settings.is_development else None,
)

build_realtime(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > 5.0:
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )

    return response


add_exception_handlers(app)

app.include_router(messages.router, prefix=settings.API_PREFIX, tags=["Messages"])
app.include_router(cash_requests.router, prefix=settings.API_PREFIX, tags=["Cash Requests"])
app.include_router(connections.router, prefix=settings.API_PREFIX, tags=["Connections"])
app.include_router(realtime.router, tags=["Realtime"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "CashMate API",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Checks database connectivity and reports live socket count.
    """
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0",
        "checks": {},
        "online_users": len(app.state.registry),
    }

    try:
        db_healthy = await check_database_health()
        health_status["checks"]["database"] = "healthy" if db_healthy else "unhealthy"

        if not db_healthy:
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "unhealthy"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)


@app.get("/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness check - indicates if app is ready to receive traffic.
    """
    try:
        db_healthy = await check_database_health()
        if db_healthy:
            return {"status": "ready"}
        else:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "database_unavailable"}
            )
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e)}
        )


@app.get("/live", tags=["Health"])
async def liveness_check():
    """
    Liveness check - indicates if app is alive.
    """
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
