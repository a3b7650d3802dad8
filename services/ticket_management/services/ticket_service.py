"""Servicio de emisión y ciclo de vida de entradas"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from shared.config import settings
from shared.database.models import (
    Event, Purchase, Ticket,
    TICKET_ACTIVE, TICKET_CANCELLED, TICKET_EXPIRED,
)
from shared.utils.dates import utcnow, as_utc
from shared.utils.qr_generator import generate_ticket_code, build_qr_payload
from services.ticket_validation.services.validation_service import parse_uuid

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class TicketService:
    """Operaciones sobre entradas: emisión, cancelación, expiración y consulta"""

    async def get_ticket_by_id(self, db: AsyncSession, ticket_id: str) -> Optional[Ticket]:
        """Obtener ticket por ID con su evento"""
        ticket_uuid = parse_uuid(ticket_id, "entrada")
        stmt = select(Ticket).options(selectinload(Ticket.event)).where(Ticket.id == ticket_uuid)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_tickets(self, db: AsyncSession, user_id: str) -> List[Ticket]:
        """Entradas de un usuario, más recientes primero"""
        user_uuid = parse_uuid(user_id, "usuario")
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.event))
            .where(Ticket.user_id == user_uuid)
            .order_by(Ticket.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _unique_ticket_code(self, db: AsyncSession) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_ticket_code()
            exists = await db.execute(select(Ticket.id).where(Ticket.ticket_code == code))
            if exists.scalar_one_or_none() is None:
                return code
        raise RuntimeError("No se pudo generar un código de entrada único")

    async def _tickets_for_purchase(self, db: AsyncSession, purchase_uuid) -> List[Ticket]:
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.event))
            .where(Ticket.purchase_id == purchase_uuid)
            .execution_options(populate_existing=True)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def issue_tickets_for_purchase(
        self,
        db: AsyncSession,
        purchase_id: str
    ) -> Tuple[List[Ticket], bool]:
        """
        Emitir la entrada de una compra pagada

        Una compra genera una entrada con su cantidad (una persona puede
        ingresar con varias plazas). Idempotente: si ya existe, la devuelve.

        Returns:
            (tickets, created)

        Raises:
            ValueError: si la compra no existe o no está pagada
        """
        purchase_uuid = parse_uuid(purchase_id, "compra")
        purchase = await db.get(Purchase, purchase_uuid)
        if not purchase:
            raise ValueError("Compra no encontrada")
        if purchase.payment_status != "completed":
            raise ValueError(f"La compra no está pagada (estado: {purchase.payment_status})")

        existing = await self._tickets_for_purchase(db, purchase_uuid)
        if existing:
            return existing, False

        ticket_code = await self._unique_ticket_code(db)
        purchase_date = as_utc(purchase.payment_completed_at or purchase.created_at or utcnow())
        quantity = purchase.quantity or 1

        ticket = Ticket(
            ticket_code=ticket_code,
            purchase_id=purchase.id,
            event_id=purchase.event_id,
            user_id=purchase.user_id,
            ticket_type=purchase.ticket_type,
            quantity=quantity,
            price=(Decimal(purchase.total_amount) / quantity).quantize(Decimal("0.01")),
            qr_code_data=build_qr_payload(
                ticket_code=ticket_code,
                event_id=str(purchase.event_id),
                user_id=str(purchase.user_id),
                purchase_date=purchase_date.isoformat(),
                metadata={"quantity": quantity, "ticketType": purchase.ticket_type},
            ),
            status=TICKET_ACTIVE,
        )
        db.add(ticket)
        try:
            await db.commit()
        except IntegrityError:
            # Otra emisión concurrente de la misma compra ganó (purchase_id único)
            await db.rollback()
            existing = await self._tickets_for_purchase(db, purchase_uuid)
            if existing:
                logger.info(f"[TICKETS] Compra {purchase_uuid} ya emitida por otra solicitud")
                return existing, False
            raise

        logger.info(f"[TICKETS] Entrada {ticket_code} emitida para compra {purchase_uuid} (x{quantity})")

        # Releer para cargar los valores por defecto del servidor (created_at)
        stmt = (
            select(Ticket)
            .options(selectinload(Ticket.event))
            .where(Ticket.id == ticket.id)
            .execution_options(populate_existing=True)
        )
        return [(await db.execute(stmt)).scalar_one()], True

    async def cancel_ticket(self, db: AsyncSession, ticket_id: str) -> Optional[Ticket]:
        """
        Cancelar una entrada activa (active -> cancelled)

        Returns:
            Ticket cancelado, o None si no existe

        Raises:
            ValueError: si la entrada ya no está activa
        """
        ticket_uuid = parse_uuid(ticket_id, "entrada")
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_uuid, Ticket.status == TICKET_ACTIVE)
            .values(status=TICKET_CANCELLED)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()

        ticket = await db.get(Ticket, ticket_uuid, populate_existing=True)
        if ticket is None:
            return None
        if result.rowcount != 1:
            raise ValueError(f"No se puede cancelar una entrada en estado {ticket.status}")

        logger.info(f"[TICKETS] Entrada {ticket.ticket_code} cancelada")
        return ticket

    async def expire_past_event_tickets(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
        expiry_hours: Optional[int] = None
    ) -> int:
        """
        Marcar como expiradas las entradas activas de eventos ya finalizados

        Returns:
            Cantidad de entradas expiradas
        """
        now = as_utc(now) or utcnow()
        hours = settings.TICKET_EXPIRY_HOURS if expiry_hours is None else expiry_hours
        cutoff = now - timedelta(hours=hours)

        past_events = select(Event.id).where(Event.date < cutoff)
        stmt = (
            update(Ticket)
            .where(Ticket.status == TICKET_ACTIVE, Ticket.event_id.in_(past_events))
            .values(status=TICKET_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()

        if result.rowcount:
            logger.info(f"[TICKETS] {result.rowcount} entradas expiradas (eventos antes de {cutoff.isoformat()})")
        return result.rowcount

    @staticmethod
    def serialize_ticket(ticket: Ticket) -> Dict:
        event = ticket.event
        return {
            "id": str(ticket.id),
            "ticket_code": ticket.ticket_code,
            "event_id": str(ticket.event_id),
            "purchase_id": str(ticket.purchase_id),
            "user_id": str(ticket.user_id),
            "ticket_type": ticket.ticket_type,
            "quantity": ticket.quantity,
            "price": float(ticket.price or 0),
            "status": ticket.status,
            "qr_code_data": ticket.qr_code_data,
            "seat_number": ticket.seat_number,
            "used_at": as_utc(ticket.used_at),
            "created_at": as_utc(ticket.created_at),
            "event": {
                "id": str(event.id),
                "title": event.title,
                "date": as_utc(event.date),
                "location": event.location,
                "venue": event.venue,
            } if event else None,
        }
