"""Rutas de entradas: consulta, QR, emisión y cancelación"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List
from shared.database.session import get_db
from shared.auth.dependencies import get_current_user, get_current_admin
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_management.models.ticket import (
    TicketResponse,
    TicketQRResponse,
    IssueTicketsResponse,
    CancelTicketResponse,
    ExpireTicketsResponse,
)
from services.ticket_management.services.ticket_service import TicketService
from services.ticket_management.services.qr_service import render_qr_png, render_qr_png_base64


router = APIRouter()


def ensure_owner_or_admin(current_user: Dict, owner_id: str):
    '''Un usuario solo puede ver sus propias entradas, salvo admin'''
    if current_user.get('user_id') != owner_id and current_user.get('role') != 'admin':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='No puedes ver entradas de otros usuarios'
        )


async def get_ticket_or_404(db: AsyncSession, ticket_id: str):
    try:
        ticket = await TicketService().get_ticket_by_id(db, ticket_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Entrada no encontrada"
        )
    return ticket


@router.get("/user/{user_id}", response_model=List[TicketResponse])
async def get_user_tickets(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    '''Obtener las entradas de un usuario con los datos del evento'''
    ensure_owner_or_admin(current_user, user_id)
    service = TicketService()
    try:
        tickets = await service.get_user_tickets(db, user_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [service.serialize_ticket(ticket) for ticket in tickets]


@router.get("/{ticket_id}/qr", response_model=TicketQRResponse)
async def get_ticket_qr(
    ticket_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    '''QR de la entrada como PNG base64 junto con su payload'''
    ticket = await get_ticket_or_404(db, ticket_id)
    ensure_owner_or_admin(current_user, str(ticket.user_id))

    return TicketQRResponse(
        ticket_id=str(ticket.id),
        ticket_code=ticket.ticket_code,
        qr_code_data=ticket.qr_code_data,
        qr_image_base64=render_qr_png_base64(ticket.qr_code_data),
    )


@router.get("/{ticket_id}/qr.png")
async def get_ticket_qr_png(
    ticket_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    '''QR de la entrada como imagen PNG'''
    ticket = await get_ticket_or_404(db, ticket_id)
    ensure_owner_or_admin(current_user, str(ticket.user_id))
    return Response(content=render_qr_png(ticket.qr_code_data), media_type="image/png")


@router.post("/purchases/{purchase_id}/issue", response_model=IssueTicketsResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def issue_tickets(
    request: Request,
    purchase_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    '''Emitir la entrada de una compra pagada (idempotente)'''
    service = TicketService()
    try:
        tickets, created = await service.issue_tickets_for_purchase(db, purchase_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return IssueTicketsResponse(
        purchase_id=purchase_id,
        created=created,
        tickets=[service.serialize_ticket(ticket) for ticket in tickets],
    )


@router.post("/{ticket_id}/cancel", response_model=CancelTicketResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def cancel_ticket(
    request: Request,
    ticket_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    '''Cancelar una entrada activa'''
    try:
        ticket = await TicketService().cancel_ticket(db, ticket_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )

    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Entrada no encontrada"
        )

    return CancelTicketResponse(
        ticket_id=str(ticket.id),
        status=ticket.status,
        message="Entrada cancelada",
    )


@router.post("/expire", response_model=ExpireTicketsResponse)
async def expire_tickets(
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    '''Expirar manualmente las entradas de eventos finalizados'''
    expired = await TicketService().expire_past_event_tickets(db)
    return ExpireTicketsResponse(expired=expired)
