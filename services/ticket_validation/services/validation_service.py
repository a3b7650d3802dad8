"""Servicio de validación de entradas"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from datetime import datetime, timedelta
from typing import Optional, Dict, Callable, Tuple
from uuid import UUID
import logging
import time

from shared.config import settings
from shared.database.models import (
    Ticket, TicketValidation, User,
    TICKET_ACTIVE, TICKET_USED, TICKET_CANCELLED, TICKET_EXPIRED,
)
from shared.cache.redis_client import cache_delete
from shared.utils.dates import utcnow, as_utc
from shared.utils.qr_generator import extract_ticket_code, verify_qr_payload

logger = logging.getLogger(__name__)

MESSAGES = {
    "valid": "Entrada válida. Puede ingresar.",
    "already_used": "Esta entrada ya fue utilizada.",
    "cancelled": "Esta entrada ha sido cancelada.",
    "expired": "Esta entrada ha expirado. El evento ya finalizó.",
    "not_found": "Entrada no encontrada.",
    "wrong_event": "La entrada no corresponde a este evento.",
    "forged": "El código QR no es válido.",
    "not_registered": "No se pudo registrar la validación. Intente nuevamente.",
}

# Estado del ticket -> resultado de validación cuando la transición no se aplica
STATUS_RESULTS = {
    TICKET_USED: "already_used",
    TICKET_CANCELLED: "cancelled",
    TICKET_EXPIRED: "expired",
}

# Estados desde los que se puede pasar a used. Un escaneo offline hecho
# dentro de la ventana de validez gana aunque el barrido haya dejado la
# entrada en expired antes de la sincronización.
ONLINE_USABLE_STATUSES = (TICKET_ACTIVE,)
OFFLINE_USABLE_STATUSES = (TICKET_ACTIVE, TICKET_EXPIRED)


def stats_cache_key(event_id) -> str:
    return f"validator:stats:{event_id}"


def parse_uuid(value, label: str) -> UUID:
    """Convertir a UUID o lanzar ValueError con un mensaje legible"""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        raise ValueError(f"ID de {label} inválido")


class TicketValidationService:
    """
    Validación de entradas con transición atómica active -> used.

    La transición es un compare-and-swap sobre la fila del ticket
    (UPDATE ... WHERE status = 'active'); solo un validador puede ganarla.
    """

    def __init__(
        self,
        expiry_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.expiry_hours = settings.TICKET_EXPIRY_HOURS if expiry_hours is None else expiry_hours
        self.clock = clock

    # ==================== LOOKUP ====================

    async def get_ticket_by_code(self, db: AsyncSession, ticket_code: str) -> Optional[Ticket]:
        """Obtener ticket por código con evento y compra cargados"""
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.event), selectinload(Ticket.purchase))
            .where(Ticket.ticket_code == ticket_code)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def reload_ticket(self, db: AsyncSession, ticket_id: UUID) -> Ticket:
        """Releer el ticket desde la base de datos (tras la transición o un rollback)"""
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.event), selectinload(Ticket.purchase))
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    async def lookup_ticket(self, db: AsyncSession, scanned: str) -> Optional[Dict]:
        """
        Resolver un código escaneado/tipeado a su ticket y estado actual

        Returns:
            Dict con los datos del ticket, o None si no existe o el QR está adulterado
        """
        ticket_code, payload = extract_ticket_code(scanned)
        if payload is not None and not verify_qr_payload(payload):
            return None

        ticket = await self.get_ticket_by_code(db, ticket_code)
        if not ticket:
            return None
        return await self.serialize_ticket(db, ticket)

    # ==================== VALIDACIÓN ====================

    async def validate_ticket(
        self,
        db: AsyncSession,
        scanned: str,
        event_id: str,
        validator_id: str,
        device_info: Optional[str] = None,
        location: Optional[str] = None,
        validated_at: Optional[datetime] = None,
        client_ref: Optional[str] = None
    ) -> Dict:
        """
        Validar una entrada y marcarla como usada

        Args:
            db: Sesión de base de datos
            scanned: JSON del QR o código directo
            event_id: Evento en el que se está validando
            validator_id: Usuario validador
            validated_at: Momento del escaneo (para validaciones offline)
            client_ref: ID offline del dispositivo (idempotencia de sync)

        Returns:
            Dict con success, status, message y ticket

        Raises:
            ValueError: si event_id o validator_id no son UUID válidos
        """
        start_time = time.perf_counter()
        event_uuid = parse_uuid(event_id, "evento")
        validator_uuid = parse_uuid(validator_id, "validador")
        usable = OFFLINE_USABLE_STATUSES if validated_at is not None else ONLINE_USABLE_STATUSES
        validated_at = as_utc(validated_at) or self.clock()

        ticket_code, payload = extract_ticket_code(scanned)
        if payload is not None and not verify_qr_payload(payload):
            logger.warning(f"[VALIDATOR] QR con firma inválida para código {ticket_code}")
            return self._result("invalid", MESSAGES["forged"])

        ticket = await self.get_ticket_by_code(db, ticket_code)
        if not ticket:
            logger.info(f"[VALIDATOR] Código no encontrado: {ticket_code}")
            return self._result("invalid", MESSAGES["not_found"])

        if ticket.event_id != event_uuid:
            status, message = "invalid", MESSAGES["wrong_event"]
        elif ticket.status in usable and self.is_event_expired(ticket.event.date, validated_at):
            status, message = "expired", MESSAGES["expired"]
        elif ticket.status in usable:
            ticket_id = ticket.id
            won = await self._mark_used(
                db, ticket, usable, validator_uuid, validated_at, device_info, location, client_ref
            )
            ticket = await self.reload_ticket(db, ticket_id)
            if won:
                await self._invalidate_stats(ticket.event_id)
                duration = (time.perf_counter() - start_time) * 1000
                logger.info(f"[VALIDATOR] ✅ {ticket_code} validado por {validator_uuid} ({duration:.0f}ms)")
                return self._result(
                    "valid", MESSAGES["valid"], await self.serialize_ticket(db, ticket, include_previous=False)
                )
            status, message = self._status_result(ticket.status)
        else:
            status, message = self._status_result(ticket.status)

        db.add(TicketValidation(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            validated_by=validator_uuid,
            validated_at=validated_at,
            result=status,
            message=message,
            device_info=device_info,
            location=location,
            client_ref=client_ref,
        ))
        await db.commit()

        duration = (time.perf_counter() - start_time) * 1000
        logger.info(f"[VALIDATOR] ❌ {ticket_code}: {status} ({duration:.0f}ms)")
        return self._result(status, message, await self.serialize_ticket(db, ticket))

    async def _mark_used(
        self,
        db: AsyncSession,
        ticket: Ticket,
        usable: Tuple[str, ...],
        validator_uuid: UUID,
        validated_at: datetime,
        device_info: Optional[str],
        location: Optional[str],
        client_ref: Optional[str]
    ) -> bool:
        """
        Intentar la transición a used desde `usable` y registrar la validación

        Returns:
            True si esta llamada ganó la transición. Si no, la transacción
            sigue abierta para registrar el intento rechazado.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status.in_(usable))
            .values(status=TICKET_USED, used_at=validated_at, validated_by=validator_uuid)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount != 1:
            return False

        db.add(TicketValidation(
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            validated_by=validator_uuid,
            validated_at=validated_at,
            result="valid",
            message=MESSAGES["valid"],
            device_info=device_info,
            location=location,
            client_ref=client_ref,
        ))
        try:
            await db.commit()
        except IntegrityError:
            # Otra validación 'valid' ya existe para este ticket
            await db.rollback()
            return False
        return True

    @staticmethod
    def _status_result(ticket_status: str):
        """Resultado y mensaje cuando la transición no se aplicó"""
        if ticket_status == TICKET_ACTIVE:
            # La transición se revirtió y el ticket sigue activo
            return "invalid", MESSAGES["not_registered"]
        status = STATUS_RESULTS.get(ticket_status, "invalid")
        return status, MESSAGES.get(status, MESSAGES["not_found"])

    def is_event_expired(self, event_date: datetime, at: datetime) -> bool:
        """La entrada expira TICKET_EXPIRY_HOURS después del inicio del evento"""
        return as_utc(at) > as_utc(event_date) + timedelta(hours=self.expiry_hours)

    async def _invalidate_stats(self, event_id):
        try:
            await cache_delete(stats_cache_key(event_id))
        except Exception as e:
            # La validación ya se confirmó; un cache desactualizado expira solo
            logger.warning(f"[VALIDATOR] No se pudo invalidar cache de estadísticas: {e}")

    # ==================== SERIALIZACIÓN ====================

    async def get_user_name(self, db: AsyncSession, user_id) -> str:
        if user_id is None:
            return "Desconocido"
        user = await db.get(User, user_id)
        return (user.name or user.email) if user else "Desconocido"

    async def serialize_ticket(self, db: AsyncSession, ticket: Ticket, include_previous: bool = True) -> Dict:
        """
        Datos del ticket para el validador

        include_previous=False omite previous_validation (la validación que
        acaba de ganar no es una validación previa)
        """
        event = ticket.event
        purchase = ticket.purchase

        previous_validation = None
        if include_previous and ticket.status == TICKET_USED and ticket.used_at:
            previous_validation = {
                "validated_at": as_utc(ticket.used_at),
                "validated_by": str(ticket.validated_by) if ticket.validated_by else "",
                "validator_name": await self.get_user_name(db, ticket.validated_by),
            }

        return {
            "id": str(ticket.id),
            "code": ticket.ticket_code,
            "event_id": str(ticket.event_id),
            "event_title": event.title,
            "event_date": as_utc(event.date),
            "event_location": event.location,
            "user_id": str(ticket.user_id),
            "user_name": purchase.user_name if purchase else "N/A",
            "user_email": purchase.user_email if purchase else "",
            "ticket_type": ticket.ticket_type,
            "quantity": ticket.quantity,
            "total_amount": float(purchase.total_amount) if purchase else float(ticket.price or 0),
            "purchase_date": as_utc(purchase.created_at) if purchase else None,
            "payment_status": purchase.payment_status if purchase else "completed",
            "status": ticket.status,
            "previous_validation": previous_validation,
        }

    @staticmethod
    def _result(status: str, message: str, ticket: Optional[Dict] = None) -> Dict:
        return {
            "success": status == "valid",
            "status": status,
            "message": message,
            "ticket": ticket,
        }
