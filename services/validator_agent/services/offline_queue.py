"""Cola durable de validaciones hechas sin conexión"""
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy import select, update, delete, func
from datetime import datetime
from typing import List, Optional
import logging

from shared.config import settings
from shared.database.connection import create_engine_from_url
from shared.utils.dates import utcnow, as_utc
from shared.utils.qr_generator import extract_ticket_code
from services.validator_agent.models.offline import OfflineBase, OfflineValidation, SyncState

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_date"


class OfflineQueue:
    """
    Cola local en SQLite (vía SQLAlchemy async).

    Los items sobreviven reinicios del dispositivo; se marcan como
    sincronizados con el desenlace que devuelve el servidor.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self.engine = engine or create_engine_from_url(database_url or settings.OFFLINE_DB_URL)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self):
        """Crear las tablas locales si no existen"""
        async with self.engine.begin() as conn:
            await conn.run_sync(OfflineBase.metadata.create_all)
        logger.info("[OFFLINE] Cola offline lista")

    async def close(self):
        await self.engine.dispose()

    async def enqueue(
        self,
        ticket_code: str,
        event_id: str,
        validated_by: str,
        validated_at: Optional[datetime] = None,
        device_info: Optional[str] = None,
        location: Optional[str] = None
    ) -> OfflineValidation:
        """Guardar un escaneo para sincronizarlo más tarde"""
        item = OfflineValidation(
            ticket_code=ticket_code,
            event_id=str(event_id),
            validated_by=str(validated_by),
            validated_at=as_utc(validated_at) or utcnow(),
            device_info=device_info,
            location=location,
            synced=False,
            sync_attempts=0,
        )
        async with self.session_maker() as session:
            session.add(item)
            await session.commit()

        logger.info(f"[OFFLINE] Validación {item.id} encolada")
        return item

    async def list_pending(self) -> List[OfflineValidation]:
        """Items no sincronizados, en orden de escaneo"""
        async with self.session_maker() as session:
            stmt = (
                select(OfflineValidation)
                .where(OfflineValidation.synced.is_(False))
                .order_by(OfflineValidation.validated_at.asc())
            )
            return list((await session.execute(stmt)).scalars().all())

    async def list_all(self) -> List[OfflineValidation]:
        async with self.session_maker() as session:
            stmt = select(OfflineValidation).order_by(OfflineValidation.validated_at.asc())
            return list((await session.execute(stmt)).scalars().all())

    async def pending_count(self) -> int:
        async with self.session_maker() as session:
            stmt = select(func.count(OfflineValidation.id)).where(OfflineValidation.synced.is_(False))
            return (await session.execute(stmt)).scalar_one()

    async def mark_synced(self, offline_id: str, outcome: str, message: Optional[str] = None) -> bool:
        """Marcar un item como sincronizado con su desenlace"""
        async with self.session_maker() as session:
            result = await session.execute(
                update(OfflineValidation)
                .where(OfflineValidation.id == offline_id)
                .values(
                    synced=True,
                    outcome=outcome,
                    outcome_message=message,
                    last_sync_attempt=utcnow(),
                    last_error=None,
                )
            )
            await session.commit()
        return result.rowcount == 1

    async def record_failed_attempt(self, offline_id: str, error: str):
        """Registrar un intento de sincronización fallido (el item sigue pendiente)"""
        async with self.session_maker() as session:
            await session.execute(
                update(OfflineValidation)
                .where(OfflineValidation.id == offline_id)
                .values(
                    sync_attempts=OfflineValidation.sync_attempts + 1,
                    last_sync_attempt=utcnow(),
                    last_error=error,
                )
            )
            await session.commit()

    async def clear_synced(self) -> int:
        """Borrar los items ya sincronizados"""
        async with self.session_maker() as session:
            result = await session.execute(
                delete(OfflineValidation).where(OfflineValidation.synced.is_(True))
            )
            await session.commit()
        logger.info(f"[OFFLINE] {result.rowcount} validaciones sincronizadas eliminadas")
        return result.rowcount

    async def get_last_sync_date(self) -> Optional[datetime]:
        async with self.session_maker() as session:
            state = await session.get(SyncState, LAST_SYNC_KEY)
        if state is None or not state.value:
            return None
        return as_utc(datetime.fromisoformat(state.value))

    async def set_last_sync_date(self, when: Optional[datetime] = None):
        value = (as_utc(when) or utcnow()).isoformat()
        async with self.session_maker() as session:
            await session.merge(SyncState(key=LAST_SYNC_KEY, value=value))
            await session.commit()

    async def find_pending_for_code(self, ticket_code: str, event_id: str) -> Optional[OfflineValidation]:
        """
        Buscar un escaneo pendiente de la misma entrada en el mismo evento

        Compara por código de entrada, sin importar si se escaneó el QR o se
        tipeó el código.
        """
        code, _ = extract_ticket_code(ticket_code)
        async with self.session_maker() as session:
            stmt = (
                select(OfflineValidation)
                .where(
                    OfflineValidation.synced.is_(False),
                    OfflineValidation.event_id == str(event_id),
                )
                .order_by(OfflineValidation.validated_at.asc())
            )
            pending = (await session.execute(stmt)).scalars().all()

        for item in pending:
            if extract_ticket_code(item.ticket_code)[0] == code:
                return item
        return None
