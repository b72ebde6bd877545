import logging
import secrets
from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from roombook.app.core.config import settings
from roombook.app.core.errors import ReservationError, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Requester:
    id: str
    is_admin: bool = False


async def get_requester(
    x_requester_id: str = Header(..., alias="X-Requester-Id", min_length=1, max_length=254),
    x_requester_role: str | None = Header(default=None, alias="X-Requester-Role"),
) -> Requester:
    """Identity forwarded by the authentication layer in front of this service."""
    return Requester(id=x_requester_id, is_admin=(x_requester_role or "").lower() == "admin")


async def require_admin_token(
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> None:
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Administrative trigger is not configured")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Invalid admin token")


def to_http(exc: ReservationError) -> HTTPException:
    if isinstance(exc, StorageError):
        logger.error("Storage failure surfaced to client", exc_info=exc)
    return HTTPException(exc.status_code, detail=exc.message)
