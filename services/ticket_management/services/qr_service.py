"""Generación de imágenes QR para entradas"""
import base64
import io
import logging

import qrcode

logger = logging.getLogger(__name__)


def render_qr_png(qr_data: str, box_size: int = 10, border: int = 4) -> bytes:
    """
    Generar la imagen PNG del código QR

    Raises:
        ValueError: si qr_data está vacío
    """
    if not qr_data:
        raise ValueError("qr_data está vacío, no se puede generar QR")

    qr = qrcode.QRCode(
        version=None,  # Tamaño automático según el payload
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_png_base64(qr_data: str) -> str:
    """Imagen PNG del QR codificada en base64 (para apps y emails)"""
    img_bytes = render_qr_png(qr_data)
    logger.debug(f"QR generado ({len(img_bytes)} bytes)")
    return base64.b64encode(img_bytes).decode("utf-8")
