import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import models  # noqa: F401 - register tables with Base
from .config import ALLOWED_ORIGINS, LOG_LEVEL
from .database import Base, SessionLocal, engine
from .domain.availability.router import router as availability_router
from .domain.booking.router import router as booking_router
from .domain.store.repository import EntityStore
from .exception_handlers import register_exception_handlers
from .services.square_service import SquareClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    app.state.store = EntityStore(SessionLocal)
    app.state.provider = SquareClient()

    yield

    logger.info("Application shutting down...")
    await app.state.provider.aclose()
    await engine.dispose()


app = FastAPI(title="BarberBook API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(availability_router)
app.include_router(booking_router)


@app.get("/health")
async def health():
    return {"status": "healthy"}
