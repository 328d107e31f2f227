import asyncio
from contextlib import aclosing
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from mod_users.core.config import settings
from mod_users.core.logger import get_logger
from mod_users.db.postgres import PostgresClient
from mod_users.db.router import get_tenant_client
from mod_users.services.query_translator import translate, with_sort
from mod_users.services.record_stream import ResponseSink, stream_query

logger = get_logger(__name__)

router = APIRouter(tags=["User Stream"])

STREAM_MEDIA_TYPE = "application/x-ndjson"


def _log_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.info("User stream cancelled, client went away")
        return
    error = task.exception()
    if error is not None:
        logger.error("User stream failed: %s", error, exc_info=error)


async def stream_body(sink: ResponseSink, producer: asyncio.Task):
    try:
        async with aclosing(sink.body()) as chunks:
            async for chunk in chunks:
                yield chunk
    finally:
        sink.detach()
        # no-op once the producer is done
        producer.cancel()


@router.get("/userStream")
async def get_user_stream(
    query: Optional[str] = Query(default=None, description="CQL filter"),
    orderBy: Optional[str] = None,
    order: Literal["desc", "asc"] = "desc",
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=0),
    client: PostgresClient = Depends(get_tenant_client),
):
    # parse errors surface here as 400, before anything touches the database
    ctx = translate(with_sort(query, orderBy, order), limit=limit, offset=offset)
    logger.debug("Streaming users from %s for tenant %s", ctx.table, client.tenant_id)

    sink = ResponseSink(settings.STREAM_QUEUE_SIZE)
    producer = asyncio.create_task(stream_query(ctx, client, sink))
    producer.add_done_callback(_log_outcome)

    return StreamingResponse(stream_body(sink, producer), media_type=STREAM_MEDIA_TYPE)
