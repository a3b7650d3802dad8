"""Orquestación del dispositivo validador: online con respaldo offline"""
import logging
from typing import Callable, Dict, Optional
from datetime import datetime

from shared.config import settings
from shared.utils.dates import utcnow, isoformat
from services.validator_agent.services.offline_queue import OfflineQueue
from services.validator_agent.services.remote_client import (
    RemoteValidatorClient,
    RemoteUnavailableError,
    RemoteError,
)
from services.validator_agent.services.sync_reconciler import SyncReconciler

logger = logging.getLogger(__name__)

PENDING_SYNC = "pending_sync"

OFFLINE_MESSAGES = {
    PENDING_SYNC: "Sin conexión. Entrada admitida, se verificará al sincronizar.",
    "already_used": "Esta entrada ya fue escaneada en este dispositivo.",
}


class ValidatorAgent:
    """
    Agente que corre en el dispositivo del validador.

    Con conexión valida contra el backend. Sin conexión (error de red o
    circuito abierto) admite la entrada de forma optimista y la guarda en
    la cola offline para reconciliarla después.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        client: RemoteValidatorClient,
        reconciler: Optional[SyncReconciler] = None,
        validator_id: Optional[str] = None,
        event_id: Optional[str] = None,
        device_info: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.queue = queue
        self.client = client
        self.reconciler = reconciler or SyncReconciler(queue, client, clock=clock)
        self.validator_id = validator_id or settings.VALIDATOR_ID
        self.event_id = event_id or settings.VALIDATOR_EVENT_ID
        self.device_info = device_info or settings.VALIDATOR_DEVICE_INFO
        self.clock = clock

    async def start(self):
        await self.queue.init()
        self.reconciler.start()
        logger.info(f"[AGENT] Validador {self.validator_id} listo para evento {self.event_id}")

    async def stop(self):
        await self.reconciler.stop()
        await self.client.close()
        await self.queue.close()

    async def scan(self, raw: str, location: Optional[str] = None) -> Dict:
        """
        Procesar un escaneo (JSON del QR o código tipeado)

        Una entrada admitida offline y todavía pendiente de sincronizar se
        rechaza en el dispositivo aunque haya vuelto la conexión: el backend
        aún no sabe que se usó.

        Returns:
            Dict con success, status, message, ticket y offline_id. status es
            'pending_sync' cuando la entrada se admitió sin conexión.
        """
        raw = (raw or "").strip()
        if not raw:
            return self._result("invalid", "Código vacío.")

        duplicate = await self.queue.find_pending_for_code(raw, self.event_id)
        if duplicate:
            logger.info(f"[AGENT] Entrada ya admitida offline ({duplicate.id})")
            return self._result(
                "already_used",
                OFFLINE_MESSAGES["already_used"],
                previous={"validated_at": isoformat(duplicate.validated_at), "offline_id": duplicate.id},
            )

        if self.client.is_available:
            try:
                result = await self.client.validate(raw, self.event_id, self.device_info, location)
            except RemoteError as e:
                return self._result("invalid", str(e))
            except RemoteUnavailableError as e:
                logger.warning(f"[AGENT] Backend no disponible: {e}")
                self.reconciler.mark_offline()
            else:
                if self.reconciler.mark_online():
                    await self.reconciler.sync_now()
                return result
        else:
            self.reconciler.mark_offline()

        return await self.enqueue_offline(raw, location)

    async def enqueue_offline(self, raw: str, location: Optional[str] = None) -> Dict:
        """Admitir de forma optimista y guardar en la cola offline"""
        item = await self.queue.enqueue(
            ticket_code=raw,
            event_id=self.event_id,
            validated_by=self.validator_id,
            validated_at=self.clock(),
            device_info=self.device_info,
            location=location,
        )
        return self._result(PENDING_SYNC, OFFLINE_MESSAGES[PENDING_SYNC], offline_id=item.id)

    async def status(self) -> Dict:
        """Estado del agente para mostrar en pantalla"""
        return {
            "online": self.reconciler.is_online and self.client.is_available,
            "syncing": self.reconciler.is_syncing,
            "pending": await self.queue.pending_count(),
            "last_sync_date": isoformat(await self.queue.get_last_sync_date()),
        }

    @staticmethod
    def _result(
        status: str,
        message: str,
        offline_id: Optional[str] = None,
        previous: Optional[Dict] = None
    ) -> Dict:
        return {
            "success": status in ("valid", PENDING_SYNC),
            "status": status,
            "message": message,
            "ticket": None,
            "offline_id": offline_id,
            "previous_validation": previous,
        }
