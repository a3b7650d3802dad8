"""Tareas periódicas del ciclo de vida de entradas"""
from typing import Dict
import logging
import asyncio
from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)

EXPIRE_LOCK_KEY = "tickets:expire"


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def expire_tickets_job(database_url: str) -> Dict:
    """
    Expirar entradas de eventos finalizados con engine y Redis propios

    Cada ejecución corre en un event loop nuevo, por eso no reutiliza el
    engine ni el cliente Redis globales de la API.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from shared.database.connection import create_engine_from_url
    from shared.cache.redis_client import DistributedLock, init_redis, close_redis
    from services.ticket_management.services.ticket_service import TicketService

    engine = create_engine_from_url(database_url)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await init_redis()
    try:
        # Un solo worker expira a la vez aunque beat se duplique
        lock = DistributedLock(EXPIRE_LOCK_KEY, timeout=1, expire=300)
        if not await lock.acquire():
            logger.info("[CELERY] Expiración ya en curso en otro worker, se omite")
            return {"status": "skipped", "expired": 0}

        try:
            async with async_session() as db:
                expired = await TicketService().expire_past_event_tickets(db)
        finally:
            await lock.release()
        return {"status": "ok", "expired": expired}
    finally:
        await close_redis()
        await engine.dispose()


@celery_app.task(
    name="expire_past_event_tickets",
    bind=True,
    autoretry_for=(OSError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def expire_past_event_tickets_task(self):
    """
    Tarea Celery (beat) que pasa a 'expired' las entradas activas de
    eventos que terminaron hace más de TICKET_EXPIRY_HOURS
    """
    from shared.config import settings

    logger.info("[CELERY] Expirando entradas de eventos finalizados")
    try:
        result = run_async(expire_tickets_job(settings.DATABASE_URL))
    except Exception as e:
        logger.error(f"[CELERY] Error en expire_past_event_tickets_task: {e}", exc_info=True)
        raise

    logger.info(f"[CELERY] Expiración terminada: {result}")
    return result
