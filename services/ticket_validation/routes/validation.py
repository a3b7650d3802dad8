"""Rutas de validación de entradas"""
from fastapi import APIRouter, Depends, HTTPException, Request, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List
from shared.database.session import get_db
from shared.auth.dependencies import get_current_validator
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.validation import (
    TicketValidationRequest,
    TicketValidationResponse,
    TicketLookupResponse,
    OfflineSyncRequest,
    OfflineSyncResponse,
    ValidatorEventResponse,
    ValidatorStatsResponse,
    RecentValidationResponse,
)
from services.ticket_validation.services.validation_service import TicketValidationService
from services.ticket_validation.services.sync_service import OfflineSyncService
from services.ticket_validation.services.report_service import ValidatorReportService


router = APIRouter()


@router.post("/validate", response_model=TicketValidationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket(
    request: Request,
    body: TicketValidationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """
    Validar entrada escaneada (JSON del QR) o tipeada (TKT-YYYY-XXXXXX)

    Marca la entrada como usada de forma atómica; solo una validación gana.
    """
    service = TicketValidationService()
    try:
        result = await service.validate_ticket(
            db=db,
            scanned=body.ticket_code,
            event_id=body.event_id,
            validator_id=current_user["user_id"],
            device_info=body.device_info,
            location=body.location,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return TicketValidationResponse(**result)


@router.get("/lookup/{ticket_code}", response_model=TicketLookupResponse)
async def lookup_ticket(
    ticket_code: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """Consultar el estado de una entrada sin validarla"""
    service = TicketValidationService()
    ticket = await service.lookup_ticket(db, ticket_code)

    if not ticket:
        return TicketLookupResponse(found=False, message="Entrada no encontrada.")
    return TicketLookupResponse(found=True, ticket=ticket)


@router.post("/sync", response_model=OfflineSyncResponse)
@limiter.limit(RATE_LIMITS["sync"])
async def sync_offline_validations(
    request: Request,
    body: OfflineSyncRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """
    Sincronizar validaciones hechas sin conexión

    Idempotente por id offline: reenviar un lote devuelve los mismos resultados.
    """
    service = OfflineSyncService()
    result = await service.reconcile(
        db=db,
        validations=[item.model_dump() for item in body.validations],
        validator_id=current_user["user_id"],
    )
    return OfflineSyncResponse(**result)


@router.get("/events", response_model=List[ValidatorEventResponse])
async def get_validator_events(
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """Eventos disponibles para validar"""
    return await ValidatorReportService().get_validator_events(db)


@router.get("/events/{event_id}/stats", response_model=ValidatorStatsResponse)
async def get_validator_stats(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """Estadísticas de validación del evento"""
    try:
        return await ValidatorReportService().get_validator_stats(db, event_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )


@router.get("/events/{event_id}/recent", response_model=List[RecentValidationResponse])
async def get_recent_validations(
    event_id: str,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_validator)
):
    """Últimas validaciones del evento"""
    try:
        return await ValidatorReportService().get_recent_validations(db, event_id, limit)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
