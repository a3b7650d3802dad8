"""Reconciliación de validaciones registradas offline"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from typing import Dict, List, Optional
import logging

from shared.database.models import TicketValidation
from shared.utils.dates import as_utc
from services.ticket_validation.services.validation_service import TicketValidationService

logger = logging.getLogger(__name__)

# Resultado de validación -> desenlace de la sincronización
SYNC_OUTCOMES = {
    "valid": "accepted",
    "already_used": "conflict",
}


class OfflineSyncService:
    """
    Reaplica contra la base de datos las validaciones hechas sin conexión.

    Cada item pasa por la misma transición atómica que una validación online,
    usando como used_at el momento real del escaneo. Gana el primero que
    sincroniza; el resto recibe 'conflict' con la validación previa.
    """

    def __init__(self, validation_service: Optional[TicketValidationService] = None):
        self.validation_service = validation_service or TicketValidationService()

    async def reconcile(
        self,
        db: AsyncSession,
        validations: List[Dict],
        validator_id: str
    ) -> Dict:
        """
        Sincronizar un lote de validaciones offline

        Args:
            db: Sesión de base de datos
            validations: Items con id, ticket_code, event_id, validated_at, device_info
            validator_id: Validador autenticado que envía el lote

        Returns:
            Dict con contadores y el resultado por item
        """
        results = []
        for item in validations:
            results.append(await self.reconcile_item(db, item, validator_id))

        summary = {
            "accepted": sum(1 for r in results if r["outcome"] == "accepted"),
            "conflicts": sum(1 for r in results if r["outcome"] == "conflict"),
            "rejected": sum(1 for r in results if r["outcome"] == "rejected"),
            "results": results,
        }
        logger.info(
            f"[SYNC] Lote de {len(results)} validaciones de {validator_id}: "
            f"{summary['accepted']} aceptadas, {summary['conflicts']} conflictos, {summary['rejected']} rechazadas"
        )
        return summary

    async def reconcile_item(self, db: AsyncSession, item: Dict, validator_id: str) -> Dict:
        """Sincronizar una validación offline (idempotente por item['id'])"""
        client_ref = item["id"]

        stored = await self.get_stored_result(db, client_ref)
        if stored:
            logger.info(f"[SYNC] {client_ref} ya sincronizado ({stored['outcome']})")
            return stored

        try:
            result = await self.validation_service.validate_ticket(
                db,
                scanned=item["ticket_code"],
                event_id=item["event_id"],
                validator_id=validator_id,
                device_info=item.get("device_info"),
                validated_at=as_utc(item["validated_at"]),
                client_ref=client_ref,
            )
        except ValueError as e:
            return self._build(client_ref, "invalid", str(e))
        except IntegrityError:
            # El mismo item llegó en paralelo por otra conexión
            await db.rollback()
            stored = await self.get_stored_result(db, client_ref)
            if stored:
                return stored
            raise

        previous = None
        if result["status"] == "already_used":
            logger.warning(f"[SYNC] Conflicto: {item['ticket_code']} ya fue validado antes ({client_ref})")
            previous = (result.get("ticket") or {}).get("previous_validation")
        return self._build(client_ref, result["status"], result["message"], previous)

    async def get_stored_result(self, db: AsyncSession, client_ref: str) -> Optional[Dict]:
        """Resultado de un item ya reconciliado, o None"""
        stmt = select(TicketValidation).where(TicketValidation.client_ref == client_ref)
        row = (await db.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None

        previous = None
        if row.result == "already_used":
            ticket = await self.validation_service.reload_ticket(db, row.ticket_id)
            serialized = await self.validation_service.serialize_ticket(db, ticket)
            previous = serialized["previous_validation"]

        return self._build(client_ref, row.result, row.message or "", previous)

    @staticmethod
    def _build(client_ref: str, status: str, message: str, previous: Optional[Dict] = None) -> Dict:
        return {
            "id": client_ref,
            "outcome": SYNC_OUTCOMES.get(status, "rejected"),
            "status": status,
            "message": message,
            "previous_validation": previous,
        }
