"""Manejo de JWT tokens"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
import logging
import os

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'dev-secret-key-change-in-production')
JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('JWT_ACCESS_TOKEN_EXPIRE_MINUTES', '30'))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    '''Crear token de acceso JWT'''
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({'exp': expire, 'type': 'access'})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict]:
    '''Decodificar y validar token JWT'''
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


async def verify_token(token: str) -> Optional[Dict]:
    '''
    Verificar token delegando a Supabase Auth (ASYNC).
    Para tokens de Supabase, usa el validador de Supabase.
    Para tokens propios del backend, usa la validación local.
    '''
    try:
        unverified = jwt.get_unverified_claims(token)
    except JWTError:
        return None

    issuer = unverified.get('iss', '')
    if 'supabase.co/auth' in issuer:
        try:
            from shared.auth.supabase_validator import verify_supabase_token
        except ValueError as e:
            logger.error(f'Supabase no configurado: {e}')
            return None
        return await verify_supabase_token(token)

    # Token propio del backend, validar localmente
    return decode_token(token)
