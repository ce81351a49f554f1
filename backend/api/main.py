import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.api.routers import purchases_router
from backend.core.config import settings
from backend.core.ledger import init_ledger
from pluginpass.ledger import ConfigurationError, __version__

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - open the ledger on startup."""
    try:
        init_ledger()
    except ConfigurationError as e:
        # Requests will retry initialization and report the error
        logger.warning(f"Failed to open ledger: {e}")

    yield  # Application runs here


app = FastAPI(title="Pluginpass Purchase Ledger", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(purchases_router)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "version": __version__}
