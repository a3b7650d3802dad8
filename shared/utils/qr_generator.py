"""Utilidades para generar y leer el payload QR de las entradas"""
import hashlib
import hmac
import json
import secrets
import string
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple

from shared.config import settings

TICKET_CODE_PREFIX = "TKT"
TICKET_CODE_ALPHABET = string.ascii_uppercase + string.digits
REQUIRED_QR_FIELDS = ("ticketId", "eventId", "userId", "purchaseDate")


def generate_ticket_code(now: Optional[datetime] = None) -> str:
    """
    Generar código único de entrada

    Formato: TKT-YYYY-XXXXXX
    """
    year = (now or datetime.now(timezone.utc)).year
    random_part = "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(6))
    return f"{TICKET_CODE_PREFIX}-{year}-{random_part}"


def sign_qr_payload(payload: Dict[str, Any], secret: Optional[str] = None) -> str:
    """
    Firmar los campos obligatorios del payload con HMAC-SHA256

    La metadata opcional no forma parte de la firma.
    """
    if secret is None:
        secret = settings.QR_SECRET

    message = "|".join(str(payload.get(field, "")) for field in REQUIRED_QR_FIELDS)
    return hmac.new(
        secret.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def build_qr_payload(
    ticket_code: str,
    event_id: str,
    user_id: str,
    purchase_date: str,
    metadata: Optional[Dict[str, Any]] = None,
    secret: Optional[str] = None
) -> str:
    """
    Construir el string JSON que se codifica en el QR

    Args:
        ticket_code: Código de la entrada (viaja como ticketId)
        event_id: ID del evento
        user_id: ID del comprador
        purchase_date: Fecha de compra ISO 8601
        metadata: Datos opcionales (p.ej. quantity)

    Raises:
        ValueError: si falta algún campo obligatorio
    """
    if not ticket_code or not event_id or not user_id or not purchase_date:
        raise ValueError("No se pudo generar el código QR. Datos incompletos.")

    payload: Dict[str, Any] = {
        "ticketId": ticket_code,
        "eventId": event_id,
        "userId": user_id,
        "purchaseDate": purchase_date,
    }
    if metadata:
        payload["metadata"] = metadata
    payload["signature"] = sign_qr_payload(payload, secret)

    return json.dumps(payload, separators=(",", ":"))


def parse_qr_payload(qr_data: str) -> Dict[str, Any]:
    """
    Parsear el JSON de un QR y verificar su estructura

    Raises:
        ValueError: si no es JSON o faltan campos obligatorios
    """
    try:
        payload = json.loads(qr_data)
    except (TypeError, json.JSONDecodeError):
        raise ValueError("El código QR no tiene un formato válido.")

    if not isinstance(payload, dict) or not all(payload.get(field) for field in REQUIRED_QR_FIELDS):
        raise ValueError("El código QR no contiene datos válidos.")

    return payload


def verify_qr_payload(payload: Dict[str, Any], secret: Optional[str] = None) -> bool:
    """
    Verificar la firma de un payload QR

    Los QR sin firma (emitidos antes de firmar) se aceptan; la validez real la
    decide el estado del ticket en la base de datos.
    """
    signature = payload.get("signature")
    if not signature:
        return True
    expected = sign_qr_payload(payload, secret)
    return hmac.compare_digest(str(signature), expected)


def extract_ticket_code(scanned: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Obtener el código de entrada a partir de lo escaneado o tipeado

    Acepta el JSON del QR (ticketId = ticket_code) o el código directo.

    Returns:
        (ticket_code, payload) - payload es None si se recibió el código directo
    """
    scanned = (scanned or "").strip()
    try:
        data = json.loads(scanned)
    except json.JSONDecodeError:
        return scanned, None

    if isinstance(data, dict) and data.get("ticketId"):
        return str(data["ticketId"]).strip(), data

    return scanned, None
