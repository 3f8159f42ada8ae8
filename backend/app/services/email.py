"""
Outgoing email.

Delivered through Resend when ``resend_api_key`` is configured, otherwise
the message is written to the log so local setups keep working. Sending
never raises: callers treat email as best effort.
"""

import asyncio
import logging

import resend
from resend.exceptions import ResendError

from app.core.config import get_settings

logger = logging.getLogger(__name__)


async def send_email(to: str, subject: str, body: str) -> bool:
    """Send a plain-text email. Returns False when delivery failed."""
    settings = get_settings()

    if not settings.resend_api_key:
        logger.info("[Email] Resend not configured; would send to=%s subject=%r\n%s", to, subject, body)
        return True

    resend.api_key = settings.resend_api_key
    params = {
        "from": settings.email_sender,
        "to": [to],
        "subject": subject,
        "text": body,
    }
    try:
        response = await asyncio.to_thread(resend.Emails.send, params)
    except ResendError as e:
        logger.error("[Email] Failed to send to %s: %s", to, e)
        return False

    logger.info("[Email] Sent to=%s subject=%r id=%s", to, subject, response.get("id"))
    return True


# ── Templates ─────────────────────────────────────────────────────────────────

DISPUTE_STATUS_TEXT = {
    "en": {
        "Pending": "pending",
        "Under review": "under review",
        "Solved": "resolved",
        "Rejected": "rejected",
    },
    "es": {
        "Pending": "pendiente",
        "Under review": "en revisión",
        "Solved": "resuelta",
        "Rejected": "rechazada",
    },
}


def dispute_status_email(
    language: str,
    student_name: str,
    assessment_name: str,
    skill_name: str,
    status: str,
    teacher_argument: str,
) -> tuple[str, str]:
    """Return (subject, body) for a dispute status change."""
    if language == "en":
        status_text = DISPUTE_STATUS_TEXT["en"].get(status, status)
        subject = f"Your dispute for {assessment_name} is {status_text}"
        body = (
            f"Hello {student_name},\n\n"
            f"Your dispute about the skill \"{skill_name}\" in the assessment "
            f"\"{assessment_name}\" is now {status_text}.\n\n"
            f"Teacher's response:\n{teacher_argument}\n"
        )
    else:
        status_text = DISPUTE_STATUS_TEXT["es"].get(status, status)
        subject = f"Tu disputa en {assessment_name} está {status_text}"
        body = (
            f"Hola {student_name},\n\n"
            f"Tu disputa sobre la habilidad \"{skill_name}\" en la evaluación "
            f"\"{assessment_name}\" ahora está {status_text}.\n\n"
            f"Respuesta del profesor:\n{teacher_argument}\n"
        )
    return subject, body


def password_reset_email(language: str, name: str, reset_url: str, expires_minutes: int) -> tuple[str, str]:
    if language == "en":
        subject = "Reset your password"
        body = (
            f"Hello {name},\n\n"
            f"Use the link below to choose a new password. It expires in {expires_minutes} minutes.\n\n"
            f"{reset_url}\n\n"
            f"If you did not ask for this, you can ignore this email.\n"
        )
    else:
        subject = "Restablece tu contraseña"
        body = (
            f"Hola {name},\n\n"
            f"Usa el siguiente enlace para elegir una nueva contraseña. Caduca en {expires_minutes} minutos.\n\n"
            f"{reset_url}\n\n"
            f"Si no lo solicitaste, puedes ignorar este correo.\n"
        )
    return subject, body
