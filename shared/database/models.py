"""Modelos SQLAlchemy compatibles con Supabase"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Text, Index, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


# Estados de ticket: active -> used (terminal), active -> cancelled, active -> expired
TICKET_ACTIVE = "active"
TICKET_USED = "used"
TICKET_EXPIRED = "expired"
TICKET_CANCELLED = "cancelled"
TICKET_STATUSES = (TICKET_ACTIVE, TICKET_USED, TICKET_EXPIRED, TICKET_CANCELLED)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    # Nota: password_hash NO existe aquí - las contraseñas están en auth.users (Supabase Auth)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    document = Column(String, nullable=True)
    role = Column(String, nullable=False, server_default="user")  # user, validator, admin
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    subtitle = Column(String, nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)  # Inicio del evento
    location = Column(String, nullable=False)
    venue = Column(String, nullable=True)
    general_price = Column(Numeric(12, 2), nullable=True)
    student_price = Column(Numeric(12, 2), nullable=True)
    total_tickets = Column(Integer, nullable=False, server_default="0")
    available_tickets = Column(Integer, nullable=False, server_default="0")
    status = Column(String, nullable=False, server_default="active")
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    tickets = relationship("Ticket", back_populates="event")


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    user_name = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    user_document = Column(String, nullable=True)
    ticket_type = Column(String, nullable=False, server_default="general")  # general, student
    quantity = Column(Integer, nullable=False, server_default="1")
    total_amount = Column(Numeric(12, 2), nullable=False, server_default="0")
    payment_method = Column(String, nullable=False)  # yape, plin, card
    payment_status = Column(String, nullable=False, server_default="pending")  # pending, completed, failed, refunded
    transaction_id = Column(String, nullable=True)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    tickets = relationship("Ticket", back_populates="purchase")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_code = Column(String, unique=True, index=True, nullable=False)  # TKT-YYYY-XXXXXX
    purchase_id = Column(Uuid, ForeignKey("purchases.id"), nullable=False, unique=True)  # una entrada por compra
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    ticket_type = Column(String, nullable=False, server_default="general")
    quantity = Column(Integer, nullable=False, server_default="1")
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    qr_code_data = Column(Text, nullable=False)
    seat_number = Column(String, nullable=True)
    status = Column(String, nullable=False, server_default=TICKET_ACTIVE)  # active, used, expired, cancelled
    used_at = Column(DateTime(timezone=True), nullable=True)
    validated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="tickets")
    purchase = relationship("Purchase", back_populates="tickets")
    owner = relationship("User", foreign_keys=[user_id])
    validator = relationship("User", foreign_keys=[validated_by])


class TicketValidation(Base):
    """
    Registro de cada intento de validación sobre un ticket conocido.

    A lo sumo una fila con result='valid' por ticket (índice único parcial).
    client_ref guarda el id offline del dispositivo para sincronizaciones idempotentes.
    """
    __tablename__ = "ticket_validations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    validated_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    validated_at = Column(DateTime(timezone=True), nullable=False)
    result = Column(String, nullable=False)  # valid, already_used, invalid, cancelled, expired
    message = Column(String, nullable=True)
    device_info = Column(String, nullable=True)
    location = Column(String, nullable=True)
    client_ref = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    ticket = relationship("Ticket")
    validator = relationship("User", foreign_keys=[validated_by])

    __table_args__ = (
        Index(
            "uq_ticket_validations_valid_once",
            "ticket_id",
            unique=True,
            postgresql_where=text("result = 'valid'"),
            sqlite_where=text("result = 'valid'"),
        ),
    )
