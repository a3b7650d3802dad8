"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import logging
from contextlib import asynccontextmanager

from shared.config import settings
from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


app = FastAPI(
    title="Ingreso API",
    description="Validación de entradas con QR, sincronización offline de validadores y ciclo de vida de entradas",
    version="1.0.0",
    lifespan=lifespan
)

# CORS primero (antes de rate limiting)
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Incluir routers de cada servicio
from services.ticket_validation.routes.validation import router as validation_router
from services.ticket_management.routes.tickets import router as tickets_router

app.include_router(validation_router, prefix="/api/v1/validation", tags=["validation"])
app.include_router(tickets_router, prefix="/api/v1/tickets", tags=["tickets"])


@app.get("/health")
async def health():
    """Health check endpoint (lo usa el agente validador para detectar conectividad)"""
    return {"status": "ok", "service": "ingreso-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica base de datos y Redis"""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from shared.database import connection
    from shared.cache.redis_client import ping_redis

    if connection.async_session_maker is None:
        return JSONResponse(status_code=503, content={"status": "not ready", "database": "not initialized"})

    try:
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Ready check failed (database): {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "database": str(e)})

    if not await ping_redis():
        return JSONResponse(status_code=503, content={"status": "not ready", "redis": "disconnected"})

    return {"status": "ready", "database": "connected", "redis": "connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
