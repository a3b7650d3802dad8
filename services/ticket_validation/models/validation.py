"""Modelos Pydantic para validación de entradas"""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime


ValidationStatus = Literal["valid", "already_used", "invalid", "cancelled", "expired"]
SyncOutcome = Literal["accepted", "conflict", "rejected"]


class TicketValidationRequest(BaseModel):
    """Código escaneado (JSON del QR) o tipeado (TKT-YYYY-XXXXXX)"""
    ticket_code: str = Field(..., min_length=1)
    event_id: str
    device_info: Optional[str] = None
    location: Optional[str] = None


class PreviousValidation(BaseModel):
    validated_at: datetime
    validated_by: str
    validator_name: str


class ValidatedTicket(BaseModel):
    """Datos de la entrada mostrados al validador"""
    id: str
    code: str
    event_id: str
    event_title: str
    event_date: datetime
    event_location: str
    user_id: str
    user_name: str
    user_email: str
    ticket_type: str
    quantity: int
    total_amount: float
    purchase_date: Optional[datetime] = None
    payment_status: str
    status: str
    previous_validation: Optional[PreviousValidation] = None


class TicketValidationResponse(BaseModel):
    success: bool
    status: ValidationStatus
    message: str
    ticket: Optional[ValidatedTicket] = None


class TicketLookupResponse(BaseModel):
    found: bool
    ticket: Optional[ValidatedTicket] = None
    message: Optional[str] = None


# ==================== SINCRONIZACIÓN OFFLINE ====================

class OfflineValidationItem(BaseModel):
    """Validación registrada offline en el dispositivo"""
    id: str = Field(..., min_length=1)  # offline_<uuid>, clave de idempotencia
    ticket_code: str = Field(..., min_length=1)
    event_id: str
    validated_at: datetime
    device_info: Optional[str] = None


class OfflineSyncRequest(BaseModel):
    validations: List[OfflineValidationItem] = Field(..., max_length=500)


class OfflineSyncResult(BaseModel):
    id: str
    outcome: SyncOutcome
    status: ValidationStatus
    message: str
    previous_validation: Optional[PreviousValidation] = None


class OfflineSyncResponse(BaseModel):
    accepted: int
    conflicts: int
    rejected: int
    results: List[OfflineSyncResult]


# ==================== REPORTES ====================

class ValidatorEventResponse(BaseModel):
    id: str
    title: str
    date: datetime
    location: str
    capacity: int
    validated_count: int
    is_active: bool


class ValidatedByType(BaseModel):
    general: int = 0
    student: int = 0


class HourlyCount(BaseModel):
    hour: str
    count: int


class Revenue(BaseModel):
    total: float = 0.0
    today: float = 0.0


class LastValidation(BaseModel):
    time: datetime
    user_name: str


class ValidatorStatsResponse(BaseModel):
    event_id: str
    event_title: str
    total_capacity: int
    total_validated: int
    validated_today: int
    validated_by_type: ValidatedByType
    validated_by_hour: List[HourlyCount]
    revenue: Revenue
    last_validation: Optional[LastValidation] = None


class RecentValidationResponse(BaseModel):
    id: str
    ticket_id: str
    ticket_code: str
    event_id: str
    user_id: str
    user_name: str
    user_email: str
    ticket_type: str
    quantity: int
    total_amount: float
    validated_at: datetime
    validated_by: str
    validator_name: str
    status: ValidationStatus
