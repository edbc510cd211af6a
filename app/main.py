import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from app.core.config import settings
from app.core.exceptions import (
    AIServiceError, CredentialsNotFound, MarketplaceAPIError, ProviderNotConfigured, TokenRefreshFailed,
)
from app.core.logging import configure_logging
from app.db.session import engine

# IMPORTANT : On doit importer les modèles ici pour que SQLModel les "voie"
# et puisse créer les tables au démarrage.
from app.models.integration import UserIntegration
from app.models.integration_log import IntegrationLog
from app.models.marketplace import Product, Question

from app.api.v1.endpoints import ai, mercadolivre

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Fonction exécutée au démarrage (avant le yield)
    et à l'arrêt (après le yield) de l'application.
    """
    configure_logging()
    logger.info("🚀 Démarrage de %s...", settings.PROJECT_NAME)
    SQLModel.metadata.create_all(engine)
    logger.info("✅ Tables synchronisées.")
    yield
    logger.info("🛑 Arrêt de %s.", settings.PROJECT_NAME)

app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configuration CORS
origins = [settings.SITE_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Traduction des erreurs métier en réponses HTTP ---
@app.exception_handler(CredentialsNotFound)
async def credentials_not_found_handler(request: Request, exc: CredentialsNotFound):
    return JSONResponse(status_code=404, content={"error": exc.message, "reconnect": True})

@app.exception_handler(TokenRefreshFailed)
async def token_refresh_failed_handler(request: Request, exc: TokenRefreshFailed):
    if isinstance(exc, ProviderNotConfigured):
        return JSONResponse(status_code=500, content={"error": exc.message})
    return JSONResponse(status_code=401, content={"error": exc.message, "reconnect": True})

@app.exception_handler(MarketplaceAPIError)
async def marketplace_error_handler(request: Request, exc: MarketplaceAPIError):
    return JSONResponse(status_code=502, content={"error": exc.message, "provider_status": exc.status_code})

@app.exception_handler(AIServiceError)
async def ai_error_handler(request: Request, exc: AIServiceError):
    return JSONResponse(status_code=503 if exc.configuration else 502, content={"error": exc.message})

# Inclusion des routes
app.include_router(mercadolivre.router, prefix="/api/v1/mercadolivre", tags=["Mercado Livre"])
app.include_router(ai.router, prefix="/api/v1/ai", tags=["IA"])

@app.get("/")
def read_root():
    return {"status": "online", "message": "Hub Ferramentas API is running 🚀"}

@app.get("/health")
def health_check():
    return {"status": "ok"}
