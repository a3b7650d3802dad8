"""Sesiones de base de datos"""
from shared.database.connection import get_db, init_db, close_db

__all__ = ["get_db", "init_db", "close_db"]
