"""Reintentos con backoff exponencial para llamadas de red"""
import asyncio
import logging
from typing import Awaitable, Callable, Any, Optional, Type, Tuple

logger = logging.getLogger(__name__)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Ejecutar una coroutine function reintentando ante `exceptions`

    Args:
        func: Función async sin argumentos
        max_retries: Reintentos tras el primer intento
        initial_delay: Espera antes del primer reintento (segundos)
        max_delay: Tope de la espera entre intentos
        exponential_base: Factor de crecimiento de la espera
        exceptions: Excepciones que se reintentan; el resto se propaga
        on_retry: Callback (intento, error) antes de cada espera

    Raises:
        La última excepción si se agotan los reintentos
    """
    delay = initial_delay
    attempt = 0

    while True:
        try:
            return await func()
        except exceptions as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            if on_retry:
                on_retry(attempt, e)
            else:
                logger.debug(f"Reintento {attempt}/{max_retries} tras {type(e).__name__}: {e}")
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)
