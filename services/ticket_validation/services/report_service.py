"""Servicio de reportes para validadores"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import Dict, List, Callable
from datetime import datetime
import logging

from shared.config import settings
from shared.database.models import Event, Ticket, TicketValidation, User
from shared.cache.redis_client import cache_get, cache_set
from shared.utils.dates import utcnow, as_utc, isoformat
from services.ticket_validation.services.validation_service import parse_uuid, stats_cache_key

logger = logging.getLogger(__name__)


class ValidatorReportService:
    """Eventos, estadísticas y últimas validaciones para la vista del validador"""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    async def get_validator_events(self, db: AsyncSession) -> List[Dict]:
        """Eventos disponibles para validar con su conteo de validaciones"""
        validated_count = (
            select(TicketValidation.event_id, func.count(TicketValidation.id).label("validated"))
            .where(TicketValidation.result == "valid")
            .group_by(TicketValidation.event_id)
            .subquery()
        )
        stmt = (
            select(Event, func.coalesce(validated_count.c.validated, 0))
            .outerjoin(validated_count, validated_count.c.event_id == Event.id)
            .order_by(Event.date.asc())
        )
        rows = (await db.execute(stmt)).all()

        now = self.clock()
        return [
            {
                "id": str(event.id),
                "title": event.title,
                "date": as_utc(event.date),
                "location": event.location,
                "capacity": event.total_tickets or 0,
                "validated_count": count,
                "is_active": as_utc(event.date) >= now,
            }
            for event, count in rows
        ]

    async def get_validator_stats(self, db: AsyncSession, event_id: str) -> Dict:
        """
        Estadísticas de validación de un evento

        Cacheadas en Redis por STATS_CACHE_SECONDS; cada validación exitosa
        invalida la entrada del evento.

        Raises:
            ValueError: si el evento no existe
        """
        event_uuid = parse_uuid(event_id, "evento")
        cache_key = stats_cache_key(event_uuid)

        cached = await cache_get(cache_key)
        if cached:
            return cached

        event = await db.get(Event, event_uuid)
        if not event:
            raise ValueError("Evento no encontrado")

        stmt = (
            select(TicketValidation)
            .options(selectinload(TicketValidation.ticket).selectinload(Ticket.purchase))
            .where(TicketValidation.event_id == event_uuid, TicketValidation.result == "valid")
            .order_by(TicketValidation.validated_at.asc())
        )
        validations = (await db.execute(stmt)).scalars().all()

        now = self.clock()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total_validated = 0
        validated_today = 0
        by_type = {"general": 0, "student": 0}
        hourly: Dict[str, int] = {}
        total_revenue = 0.0
        today_revenue = 0.0

        for validation in validations:
            ticket = validation.ticket
            quantity = ticket.quantity or 1
            amount = float(ticket.purchase.total_amount) if ticket.purchase else float(ticket.price or 0)
            validated_at = as_utc(validation.validated_at)

            total_validated += quantity
            total_revenue += amount

            if validated_at >= today_start:
                validated_today += quantity
                today_revenue += amount
                hour_key = f"{validated_at.hour:02d}:00"
                hourly[hour_key] = hourly.get(hour_key, 0) + quantity

            if ticket.ticket_type == "general":
                by_type["general"] += quantity
            else:
                by_type["student"] += quantity

        last_validation = None
        if validations:
            last = validations[-1]
            validator = await db.get(User, last.validated_by)
            last_validation = {
                "time": isoformat(last.validated_at),
                "user_name": validator.name if validator else "Desconocido",
            }

        stats = {
            "event_id": str(event.id),
            "event_title": event.title,
            "total_capacity": event.total_tickets or 0,
            "total_validated": total_validated,
            "validated_today": validated_today,
            "validated_by_type": by_type,
            "validated_by_hour": [
                {"hour": hour, "count": count} for hour, count in sorted(hourly.items())
            ],
            "revenue": {"total": total_revenue, "today": today_revenue},
            "last_validation": last_validation,
        }

        try:
            await cache_set(cache_key, stats, expire=settings.STATS_CACHE_SECONDS)
        except Exception as e:
            logger.warning(f"[STATS] No se pudo cachear estadísticas de {event_uuid}: {e}")

        return stats

    async def get_recent_validations(self, db: AsyncSession, event_id: str, limit: int = 10) -> List[Dict]:
        """Últimas validaciones exitosas de un evento"""
        event_uuid = parse_uuid(event_id, "evento")

        stmt = (
            select(TicketValidation)
            .options(
                selectinload(TicketValidation.ticket).selectinload(Ticket.purchase),
                selectinload(TicketValidation.validator),
            )
            .where(TicketValidation.event_id == event_uuid, TicketValidation.result == "valid")
            .order_by(TicketValidation.validated_at.desc())
            .limit(limit)
        )
        validations = (await db.execute(stmt)).scalars().all()

        recent = []
        for v in validations:
            ticket = v.ticket
            purchase = ticket.purchase
            recent.append({
                "id": str(v.id),
                "ticket_id": str(ticket.id),
                "ticket_code": ticket.ticket_code,
                "event_id": str(v.event_id),
                "user_id": str(ticket.user_id),
                "user_name": purchase.user_name if purchase else "N/A",
                "user_email": purchase.user_email if purchase else "",
                "ticket_type": ticket.ticket_type,
                "quantity": ticket.quantity,
                "total_amount": float(purchase.total_amount) if purchase else 0.0,
                "validated_at": as_utc(v.validated_at),
                "validated_by": str(v.validated_by),
                "validator_name": v.validator.name if v.validator else "Desconocido",
                "status": "valid",
            })
        return recent
