"""Sincronización de la cola offline con el backend"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional
from datetime import datetime

from shared.config import settings
from shared.utils.dates import utcnow, isoformat
from services.validator_agent.models.offline import OfflineValidation
from services.validator_agent.services.offline_queue import OfflineQueue
from services.validator_agent.services.remote_client import (
    RemoteValidatorClient,
    RemoteUnavailableError,
    RemoteError,
)

logger = logging.getLogger(__name__)

# Máximo de items por request de sync (lo limita el backend)
SYNC_BATCH_SIZE = 500


class SyncReconciler:
    """
    Envía al backend las validaciones pendientes de la cola offline.

    Solo corre una sincronización a la vez. Se dispara periódicamente cada
    SYNC_INTERVAL_SECONDS y de inmediato cuando vuelve la conectividad.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        client: RemoteValidatorClient,
        interval_seconds: Optional[float] = None,
        connectivity_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.queue = queue
        self.client = client
        self.interval_seconds = interval_seconds or settings.SYNC_INTERVAL_SECONDS
        self.connectivity_seconds = connectivity_seconds or settings.CONNECTIVITY_CHECK_SECONDS
        self.clock = clock

        self.is_online = True
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def mark_offline(self):
        if self.is_online:
            logger.warning("[SYNC] Conexión perdida, las validaciones se guardarán offline")
        self.is_online = False

    def mark_online(self) -> bool:
        """Marcar conexión disponible; True si hubo transición offline -> online"""
        if self.is_online:
            return False
        logger.info("[SYNC] Conexión recuperada, sincronizando pendientes")
        self.is_online = True
        return True

    async def sync_now(self) -> Optional[Dict]:
        """
        Sincronizar todas las validaciones pendientes

        Returns:
            Resumen de la sincronización, o None si no se ejecutó (sin
            conexión, sin pendientes o ya había otra en curso)
        """
        if self._lock.locked():
            logger.debug("[SYNC] Sincronización ya en curso, se omite")
            return None

        async with self._lock:
            if not self.is_online:
                return None

            pending = await self.queue.list_pending()
            if not pending:
                return None

            logger.info(f"[SYNC] Sincronizando {len(pending)} validaciones offline")
            summary = {"synced": 0, "accepted": 0, "conflicts": 0, "rejected": 0, "failed": 0}

            for start in range(0, len(pending), SYNC_BATCH_SIZE):
                batch = pending[start:start + SYNC_BATCH_SIZE]
                try:
                    response = await self.client.sync([self._to_payload(item) for item in batch])
                except (RemoteUnavailableError, RemoteError) as e:
                    for item in batch:
                        await self.queue.record_failed_attempt(item.id, str(e))
                    summary["failed"] += len(batch)
                    if isinstance(e, RemoteUnavailableError):
                        self.mark_offline()
                        break
                    logger.error(f"[SYNC] Lote rechazado por el backend: {e}")
                    continue

                await self._apply_results(batch, response, summary)

            if summary["synced"]:
                await self.queue.set_last_sync_date(self.clock())

            logger.info(
                f"[SYNC] Sincronización terminada: {summary['accepted']} aceptadas, "
                f"{summary['conflicts']} conflictos, {summary['rejected']} rechazadas, "
                f"{summary['failed']} fallidas"
            )
            return summary

    async def _apply_results(self, batch: List[OfflineValidation], response: Dict, summary: Dict):
        results = {result["id"]: result for result in response.get("results", [])}
        for item in batch:
            result = results.get(item.id)
            if result is None:
                await self.queue.record_failed_attempt(item.id, "Sin resultado del backend")
                summary["failed"] += 1
                continue

            outcome = result["outcome"]
            await self.queue.mark_synced(item.id, outcome, result.get("message"))
            summary["synced"] += 1
            if outcome == "accepted":
                summary["accepted"] += 1
            elif outcome == "conflict":
                summary["conflicts"] += 1
                logger.warning(f"[SYNC] Conflicto en {item.id}: la entrada ya había sido validada")
            else:
                summary["rejected"] += 1

    @staticmethod
    def _to_payload(item: OfflineValidation) -> Dict:
        return {
            "id": item.id,
            "ticket_code": item.ticket_code,
            "event_id": item.event_id,
            "validated_at": isoformat(item.validated_at),
            "device_info": item.device_info,
        }

    async def check_connectivity(self) -> bool:
        """
        Verificar conexión con /health

        En la transición offline -> online cierra el circuito y sincroniza
        de inmediato.
        """
        online = await self.client.ping()

        if online and self.mark_online():
            self.client.breaker.reset()
            await self.sync_now()
        elif not online:
            self.mark_offline()
        return online

    # ==================== LOOPS ====================

    async def _wait_or_stop(self, seconds: float) -> bool:
        """Esperar; True si se pidió detener"""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run_periodic(self):
        while not await self._wait_or_stop(self.interval_seconds):
            try:
                await self.sync_now()
            except Exception as e:
                logger.error(f"[SYNC] Error en sincronización periódica: {e}", exc_info=True)

    async def run_connectivity_monitor(self):
        while not await self._wait_or_stop(self.connectivity_seconds):
            try:
                await self.check_connectivity()
            except Exception as e:
                logger.error(f"[SYNC] Error verificando conectividad: {e}", exc_info=True)

    def start(self):
        """Arrancar la sincronización periódica y el monitor de conectividad"""
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self.run_periodic()),
            asyncio.create_task(self.run_connectivity_monitor()),
        ]
        logger.info(
            f"[SYNC] Sincronización cada {self.interval_seconds}s, "
            f"conectividad cada {self.connectivity_seconds}s"
        )

    async def stop(self):
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
