import asyncio
import json
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

from mod_users.core.errors import PersistenceError, SerializationError
from mod_users.core.logger import get_logger

logger = get_logger(__name__)

_EOF = object()


@dataclass
class StreamResult:
    written: int = 0
    skipped: int = 0


def serialize_record(record) -> bytes:
    """Canonical JSON: sorted keys, no whitespace, UTF-8."""
    try:
        return json.dumps(
            record,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        record_id = record.get("id") if isinstance(record, dict) else None
        raise SerializationError(str(e), record_id=record_id) from e


async def stream_records(records: AsyncIterable, sink) -> StreamResult:
    """
    Write every record to `sink` as soon as it arrives.

    A record that cannot be serialized is logged and skipped. A failing scan
    ends the stream and is re-raised. Either way the sink is ended and closed
    exactly once, after the last record.
    """
    result = StreamResult()
    try:
        async for record in records:
            try:
                chunk = serialize_record(record)
            except SerializationError as e:
                result.skipped += 1
                logger.error("Skipping user %s in stream: %s", e.record_id, e)
                continue
            await sink.write(chunk)
            result.written += 1
    except PersistenceError as e:
        logger.error("User stream terminated after %s records: %s", result.written, e)
        raise
    finally:
        try:
            # releases the scan cursor even when the stream is cancelled
            aclose = getattr(records, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            try:
                await sink.end()
            finally:
                await sink.close()

    logger.debug("User stream complete: %s written, %s skipped", result.written, result.skipped)
    return result


async def stream_query(ctx, client, sink) -> StreamResult:
    return await stream_records(client.stream(ctx), sink)


class ResponseSink:
    """
    Chunk sink feeding an HTTP streaming body.

    Chunks go through a bounded queue, so write() waits while the client is
    behind. Once the body stops being read (client gone) writes are dropped.
    Each record is sent as one line.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._ended = False
        self._detached = False
        self.closed = False

    async def write(self, chunk: bytes) -> None:
        if self._ended or self._detached:
            return
        await self._queue.put(chunk + b"\n")

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        if not self._detached:
            await self._queue.put(_EOF)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if not self._ended:
            self._ended = True
            if not self._detached:
                await self._queue.put(_EOF)

    def detach(self) -> None:
        """Reader is gone: drop queued chunks and release a blocked write()."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def body(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is _EOF:
                    return
                yield chunk
        finally:
            self.detach()
