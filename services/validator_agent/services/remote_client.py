"""Cliente HTTP del backend de validación para el agente validador"""
import httpx
import logging
from typing import Any, Dict, List, Optional

from shared.config import settings
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """El backend respondió con un error del request (4xx)"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(Exception):
    """No hay conexión con el backend (red caída, 5xx o circuito abierto)"""


class RemoteValidatorClient:
    """
    Llamadas al backend con reintentos y circuit breaker.

    Los errores de transporte y los 5xx se reintentan con backoff; si se
    acumulan, el circuito se abre y las llamadas fallan de inmediato hasta
    que pase recovery_timeout o se recupere la conectividad.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
        max_retries: int = 2,
        retry_delay: float = 0.5
    ):
        token = token if token is not None else settings.VALIDATOR_API_TOKEN
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.AsyncClient(
            base_url=base_url or settings.VALIDATOR_API_URL,
            headers=headers,
            timeout=timeout or settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )
        self.breaker = breaker or CircuitBreaker(
            expected_exceptions=(httpx.TransportError, RemoteUnavailableError),
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def close(self):
        await self.client.aclose()

    async def _send(self, method: str, path: str, json: Optional[Any] = None) -> httpx.Response:
        response = await self.client.request(method, path, json=json)
        if response.status_code >= 500:
            raise RemoteUnavailableError(f"Backend respondió {response.status_code}")
        return response

    async def _request(self, method: str, path: str, json: Optional[Any] = None) -> Any:
        async def send():
            return await self._send(method, path, json)

        async def attempt():
            return await retry_with_backoff(
                send,
                max_retries=self.max_retries,
                initial_delay=self.retry_delay,
                max_delay=5.0,
                exceptions=(httpx.TransportError, RemoteUnavailableError),
                on_retry=lambda n, e: logger.info(f"[REMOTE] Reintento {n} de {method} {path}: {e}"),
            )

        try:
            response = await self.breaker.call(attempt)
        except CircuitOpenError as e:
            raise RemoteUnavailableError(str(e))
        except httpx.TransportError as e:
            logger.warning(f"[REMOTE] {method} {path} sin conexión: {type(e).__name__}: {e}")
            raise RemoteUnavailableError(f"Sin conexión con el backend: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise RemoteError(str(detail), response.status_code)

        return response.json()

    @property
    def is_available(self) -> bool:
        return not self.breaker.is_open

    async def validate(
        self,
        ticket_code: str,
        event_id: str,
        device_info: Optional[str] = None,
        location: Optional[str] = None
    ) -> Dict:
        """POST /api/v1/validation/validate"""
        return await self._request("POST", "/api/v1/validation/validate", json={
            "ticket_code": ticket_code,
            "event_id": event_id,
            "device_info": device_info,
            "location": location,
        })

    async def sync(self, validations: List[Dict]) -> Dict:
        """POST /api/v1/validation/sync"""
        return await self._request("POST", "/api/v1/validation/sync", json={"validations": validations})

    async def ping(self) -> bool:
        """GET /health sin reintentos ni circuit breaker"""
        try:
            response = await self.client.get("/health")
        except httpx.TransportError:
            return False
        return response.status_code == 200
