"""Modelos Pydantic para entradas"""
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class TicketEventInfo(BaseModel):
    id: str
    title: str
    date: datetime
    location: str
    venue: Optional[str] = None


class TicketResponse(BaseModel):
    id: str
    ticket_code: str
    event_id: str
    purchase_id: str
    user_id: str
    ticket_type: str
    quantity: int
    price: float
    status: str
    qr_code_data: str
    seat_number: Optional[str] = None
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    event: Optional[TicketEventInfo] = None


class IssueTicketsResponse(BaseModel):
    purchase_id: str
    created: bool
    tickets: List[TicketResponse]


class TicketQRResponse(BaseModel):
    ticket_id: str
    ticket_code: str
    qr_code_data: str
    qr_image_base64: str


class CancelTicketResponse(BaseModel):
    ticket_id: str
    status: str
    message: str


class ExpireTicketsResponse(BaseModel):
    expired: int
