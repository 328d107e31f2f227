import asyncio

from fastapi import APIRouter, Depends, Response, status

from mod_users.core.logger import get_logger
from mod_users.db.router import get_expiration_job
from mod_users.services.expiration import ExpirationJob

logger = get_logger(__name__)

router = APIRouter(prefix="/users/expire", tags=["Expiration"])

# strong references to running sweeps
_running = set()


@router.post("/timer", status_code=status.HTTP_204_NO_CONTENT)
async def expire_timer(job: ExpirationJob = Depends(get_expiration_job)):
    """Kick off an expiration sweep; it finishes in the background."""
    logger.info("Expiration sweep requested")
    task = asyncio.create_task(job.run())
    _running.add(task)
    task.add_done_callback(_running.discard)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
