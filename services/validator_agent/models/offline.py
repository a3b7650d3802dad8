"""Modelos de la cola offline local del dispositivo validador (SQLite)"""
from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, Index
from sqlalchemy.orm import declarative_base
import uuid

# Base propia: la cola vive en una base local distinta de la del backend
OfflineBase = declarative_base()

# Desenlaces de la sincronización (los devuelve el servidor)
OUTCOME_ACCEPTED = "accepted"
OUTCOME_CONFLICT = "conflict"
OUTCOME_REJECTED = "rejected"


def new_offline_id() -> str:
    return f"offline_{uuid.uuid4()}"


class OfflineValidation(OfflineBase):
    __tablename__ = "offline_validations"

    id = Column(String, primary_key=True, default=new_offline_id)
    ticket_code = Column(String, nullable=False)  # Lo escaneado tal cual (JSON del QR o código)
    event_id = Column(String, nullable=False)
    validated_by = Column(String, nullable=False)
    validated_at = Column(DateTime(timezone=True), nullable=False)  # Momento real del escaneo
    device_info = Column(String, nullable=True)
    location = Column(String, nullable=True)
    synced = Column(Boolean, nullable=False, default=False)
    sync_attempts = Column(Integer, nullable=False, default=0)
    last_sync_attempt = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    outcome = Column(String, nullable=True)  # accepted, conflict, rejected
    outcome_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_offline_validations_pending", "synced", "validated_at"),
    )


class SyncState(OfflineBase):
    """Pares clave/valor del estado de sincronización (p.ej. última sync)"""
    __tablename__ = "sync_state"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=True)
