#!/usr/bin/env python3
"""Script para generar tokens JWT de prueba (usuario, validador o admin)"""
import sys
import os
from datetime import timedelta

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

# Cargar variables de entorno antes de leer JWT_SECRET_KEY
load_dotenv()

from shared.auth.jwt_handler import create_access_token


def generate_token(user_id: str, email: str = None, role: str = "user", hours: int = 12) -> str:
    """Generar token JWT con el rol en app_metadata (como los de Supabase)"""
    data = {
        "sub": user_id,
        "email": email or f"{user_id}@example.com",
        "app_metadata": {"role": role},
    }
    return create_access_token(data, expires_delta=timedelta(hours=hours))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generar token JWT de prueba")
    parser.add_argument("--user-id", required=True, help="ID del usuario (UUID)")
    parser.add_argument("--email", help="Email del usuario")
    parser.add_argument("--role", default="user", choices=["user", "validator", "admin"], help="Rol del usuario")
    parser.add_argument("--hours", type=int, default=12, help="Horas de validez (un turno de puerta)")

    args = parser.parse_args()

    token = generate_token(args.user_id, args.email, args.role, args.hours)
    print(f"\nToken generado:")
    print(token)
    if args.role == "validator":
        print(f"\nPara el agente validador:")
        print(f"export VALIDATOR_API_TOKEN={token}")
        print(f"export VALIDATOR_ID={args.user_id}")
    print(f"\nPara usar en curl:")
    print(f'curl -H "Authorization: Bearer {token}" http://localhost:8000/api/v1/validation/events')
    print()
