import httpx
import hashlib
import json
import logging
from typing import Optional, Dict
from jose import jwt

from shared.config import settings
from shared.cache.redis_client import get_redis

logger = logging.getLogger(__name__)

SUPABASE_URL = settings.SUPABASE_URL
if not SUPABASE_URL:
    raise ValueError('SUPABASE_URL debe estar configurado en las variables de entorno')
SUPABASE_ANON_KEY = settings.SUPABASE_ANON_KEY
CACHE_TTL_SECONDS = 600  # 10 minutos


def get_token_cache_key(token: str) -> str:
    '''Generar clave de caché para un token (usando hash para no almacenar el token completo)'''
    token_hash = hashlib.sha256(token.encode()).hexdigest()
    return f'jwt:validated:{token_hash[:16]}'


async def verify_supabase_token(token: str) -> Optional[Dict]:
    '''
    Verifica un JWT token de Supabase delegando la validación al Auth server.

    Cachea tokens validados en Redis por 10 minutos.
    '''
    redis_client = await get_redis()
    cache_key = get_token_cache_key(token)

    cached_payload = await redis_client.get(cache_key)
    if cached_payload:
        return json.loads(cached_payload)

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f'{SUPABASE_URL}/auth/v1/user',
                headers={
                    'apikey': SUPABASE_ANON_KEY,
                    'Authorization': f'Bearer {token}'
                }
            )
    except httpx.HTTPError as e:
        logger.error(f'Error validating token with Supabase: {e}')
        return None

    if response.status_code != 200:
        return None

    user_data = response.json()

    # Decodificar el token SIN verificar (solo para extraer claims)
    unverified_payload = jwt.get_unverified_claims(token)
    user_metadata = unverified_payload.get('user_metadata', {})
    app_metadata = unverified_payload.get('app_metadata', {})

    payload = {
        'sub': user_data.get('id'),
        'user_id': user_data.get('id'),
        'email': user_data.get('email'),
        'role': app_metadata.get('role') or user_metadata.get('role', 'user'),
        'aud': unverified_payload.get('aud'),
        'exp': unverified_payload.get('exp'),
        'iss': unverified_payload.get('iss'),
        'user_metadata': user_metadata,
        'app_metadata': app_metadata,
    }

    await redis_client.setex(cache_key, CACHE_TTL_SECONDS, json.dumps(payload))
    return payload
