"""Cliente Redis: cache de estadísticas/tokens y locks distribuidos"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
import json
import uuid
from typing import Optional, Any
import asyncio
import logging

from shared.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None

# Solo el dueño del lock puede liberarlo
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


async def init_redis(redis_url: Optional[str] = None):
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    redis_pool = ConnectionPool.from_url(
        redis_url or settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    redis_client = redis.Redis(connection_pool=redis_pool)

    if await ping_redis():
        logger.info(f"Redis conectado (pool max_connections={settings.REDIS_MAX_CONNECTIONS})")


async def get_redis() -> redis.Redis:
    """Obtener cliente Redis"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def ping_redis() -> bool:
    """True si Redis responde; los errores se registran y no se propagan"""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except (redis.RedisError, OSError) as e:
        logger.error(f"Error conectando a Redis: {e}")
        return False


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


class DistributedLock:
    """
    Lock distribuido con SET NX + expiración.

    Se usa para que una sola instancia ejecute tareas periódicas (p.ej. la
    expiración de entradas) aunque haya varios workers de beat.
    """

    def __init__(self, key: str, timeout: float = 10, expire: int = 30):
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.expire = expire
        self.token: Optional[str] = None

    async def acquire(self) -> bool:
        """Intentar tomar el lock hasta `timeout` segundos"""
        conn = await get_redis()
        token = uuid.uuid4().hex

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            if await conn.set(self.key, token, nx=True, ex=self.expire):
                self.token = token
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.1)

    async def release(self) -> bool:
        """Liberar el lock si sigue siendo nuestro"""
        if not self.token:
            return False

        conn = await get_redis()
        released = await conn.eval(RELEASE_LOCK_SCRIPT, 1, self.key, self.token)
        self.token = None
        return bool(released)

    async def __aenter__(self):
        if not await self.acquire():
            raise TimeoutError(f"No se pudo adquirir lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


async def cache_get(key: str) -> Optional[Any]:
    """Leer un valor JSON del cache (o el string crudo si no es JSON)"""
    conn = await get_redis()
    value = await conn.get(key)
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


async def cache_set(key: str, value: Any, expire: int = 3600):
    """Guardar en cache con TTL; dicts y listas se serializan a JSON"""
    conn = await get_redis()
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=str)
    await conn.setex(key, expire, value)


async def cache_delete(key: str):
    conn = await get_redis()
    await conn.delete(key)
