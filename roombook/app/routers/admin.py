import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.app.core.errors import StorageError
from roombook.app.db.session import get_session
from roombook.app.routers.deps import require_admin_token
from roombook.app.routers.schemas import SweepOut
from roombook.app.services.sweeper import sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_token)])


@router.post("/holds/sweep", response_model=SweepOut)
async def sweep_expired_holds(session: AsyncSession = Depends(get_session)):
    """Scheduled trigger: cancel every expired hold. Safe to call repeatedly."""
    try:
        result = await sweep(session)
    except StorageError as exc:
        logger.error("Scheduled sweep failed", exc_info=True)
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.message},
        )
    return SweepOut(ok=True, cancelled=result.cancelled, failed=result.failed)
