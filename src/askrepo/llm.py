"""Client for the streaming generation endpoint.

The endpoint answers a streaming request with one JSON object per generation
step, but the transport chunks the body arbitrarily: a chunk can carry a whole
record, several records or only part of one. Two deframers rebuild records
from the chunk sequence:

* `deframe_best_effort` parses each chunk on its own and emits it when it is a
  complete record; anything else is buffered and decoded once the stream ends.
  It assumes a record is split over a short run of chunks and never interleaved
  with a complete one, which holds for local servers writing one record per
  flush.
* `deframe_incremental` tracks object nesting byte by byte and emits each
  record as soon as it closes, whatever the chunking. Use it when the transport
  re-chunks freely.
"""

from __future__ import annotations

import inspect
import json
from contextlib import aclosing
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from askrepo.config import DEFAULT_API_URL
from askrepo.exceptions import ApiStatusError, FrameDecodeError, LLMError, LLMTransportError
from askrepo.logging import logger
from askrepo.models import GeneratePayload, GenerateResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable

    Deframer = Callable[[AsyncIterable[bytes]], AsyncIterator[GenerateResponse]]
    ChunkCallback = Callable[[GenerateResponse], bool | Awaitable[bool]]

_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_OPEN = ord("{")
_CLOSE = ord("}")
_WHITESPACE = frozenset(b" \t\r\n")


def parse_frame(data: bytes) -> GenerateResponse:
    """Decode exactly one record.

    Raises:
        FrameDecodeError: if `data` is not a single JSON object.
    """
    try:
        return GenerateResponse.model_validate_json(data)
    except ValidationError as e:
        raise FrameDecodeError(data=data, reason=str(e)) from e


def parse_frames(data: bytes) -> list[GenerateResponse]:
    """Decode a run of whitespace separated records.

    Raises:
        FrameDecodeError: if any part of `data` is not a complete record.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FrameDecodeError(data=data, reason=str(e)) from e

    decoder = json.JSONDecoder()
    frames: list[GenerateResponse] = []
    idx = 0
    end = len(text)
    while True:
        while idx < end and text[idx].isspace():
            idx += 1
        if idx == end:
            return frames
        try:
            obj, idx = decoder.raw_decode(text, idx)
            frames.append(GenerateResponse.model_validate(obj))
        except (json.JSONDecodeError, ValidationError) as e:
            raise FrameDecodeError(data=data, reason=str(e)) from e


async def deframe_best_effort(chunks: AsyncIterable[bytes]) -> AsyncIterator[GenerateResponse]:
    """Emit whole-chunk records immediately, buffer the rest until the stream ends.

    Args:
        chunks: the response body chunks

    Raises:
        FrameDecodeError: if the buffered bytes do not decode at the end of the stream.

    Yields:
        GenerateResponse: decoded frames, in order
    """
    pending = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        try:
            frame = GenerateResponse.model_validate_json(chunk)
        except ValidationError:
            pending.extend(chunk)
            continue
        yield frame

    if pending.strip():
        logger.debug("Decoding buffered chunks", size=len(pending))
        for frame in parse_frames(bytes(pending)):
            yield frame


class IncrementalDeframer:
    """Split a byte stream into JSON object records by tracking nesting.

    Strings and escapes are followed so braces inside text do not count. All
    structural characters are ASCII, so UTF-8 continuation bytes never match.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume a chunk and return the records it completes."""
        records: list[bytes] = []
        for byte in chunk:
            if self._depth == 0 and not self._buffer and byte in _WHITESPACE:
                continue
            self._buffer.append(byte)
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif byte == _BACKSLASH:
                    self._escaped = True
                elif byte == _QUOTE:
                    self._in_string = False
            elif byte == _QUOTE:
                self._in_string = True
            elif byte == _OPEN:
                self._depth += 1
            elif byte == _CLOSE:
                self._depth -= 1
                if self._depth < 0:
                    raise FrameDecodeError(data=bytes(self._buffer), reason="unbalanced closing brace")
                if self._depth == 0:
                    records.append(bytes(self._buffer))
                    self._buffer.clear()
        return records

    def finish(self) -> None:
        """Check that no partial record is left once the stream has ended.

        Raises:
            FrameDecodeError: if bytes of an unterminated record remain.
        """
        if self._buffer.strip():
            raise FrameDecodeError(data=bytes(self._buffer), reason="stream ended inside a record")


async def deframe_incremental(chunks: AsyncIterable[bytes]) -> AsyncIterator[GenerateResponse]:
    """Emit each record as soon as its closing brace arrives.

    Raises:
        FrameDecodeError: if a record is malformed or the stream ends inside one.
    """
    splitter = IncrementalDeframer()
    async for chunk in chunks:
        for record in splitter.feed(chunk):
            yield parse_frame(record)
    splitter.finish()


class LLMClient:
    """Issue generation requests against a single endpoint.

    The client holds no per-request state; one instance can serve concurrent calls.
    Each call performs exactly one request and never retries.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        *,
        client: httpx.AsyncClient | None = None,
        deframer: Deframer = deframe_best_effort,
        timeout: float | None = None,
    ) -> None:
        self.api_url = api_url
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._deframer = deframer

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        await response.aread()
        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        logger.warning("Generation request failed", status_code=response.status_code, payload=payload)
        raise ApiStatusError(status_code=response.status_code, payload=payload)

    async def iter_frames(self, payload: GeneratePayload) -> AsyncIterator[GenerateResponse]:
        """Stream the frames of one exchange.

        The next chunk is only read once the consumer asks for the next frame.
        Closing the iterator early closes the connection and drops unread chunks.

        Args:
            payload: the generation request

        Raises:
            ApiStatusError: if the endpoint answers with a non-success status.
            LLMError: if a frame carries an error; that frame is not yielded.
            FrameDecodeError: if the body cannot be split into records.
            LLMTransportError: if the connection fails.

        Yields:
            GenerateResponse: frames in arrival order
        """
        logger.debug("Sending generation request", url=self.api_url, model=payload.model)
        try:
            async with self._client.stream("POST", self.api_url, json=payload.to_json()) as response:
                await self._raise_for_status(response)
                async with aclosing(self._deframer(response.aiter_bytes())) as frames:
                    async for frame in frames:
                        if frame.error:
                            raise LLMError(error=frame.error)
                        yield frame
        except httpx.TransportError as e:
            raise LLMTransportError(reason=f"{type(e).__name__}: {e}") from e

    async def generate_stream(self, payload: GeneratePayload, on_chunk: ChunkCallback) -> None:
        """Stream one exchange into a callback.

        Args:
            payload: the generation request
            on_chunk: called with each frame, plain or async; a truthy result stops the stream

        Raises:
            ApiStatusError: if the endpoint answers with a non-success status.
            LLMError: if a frame carries an error; `on_chunk` does not see it.
            FrameDecodeError: if the body cannot be split into records.
            LLMTransportError: if the connection fails.
        """
        async with aclosing(self.iter_frames(payload)) as frames:
            async for frame in frames:
                stop = on_chunk(frame)
                if inspect.isawaitable(stop):
                    stop = await stop
                if stop:
                    logger.debug("Stream stopped by consumer")
                    break

    async def generate_once(self, payload: GeneratePayload) -> GenerateResponse:
        """Run one exchange and decode the whole body as a single frame.

        A payload that leaves `stream` unset is sent with streaming disabled.

        Raises:
            ApiStatusError: if the endpoint answers with a non-success status.
            LLMError: if the response carries an error.
            FrameDecodeError: if the body is not a single record.
            LLMTransportError: if the connection fails.
        """
        if payload.stream is None:
            payload = payload.model_copy(update={"stream": False})
        try:
            response = await self._client.post(self.api_url, json=payload.to_json())
        except httpx.TransportError as e:
            raise LLMTransportError(reason=f"{type(e).__name__}: {e}") from e

        await self._raise_for_status(response)
        frame = parse_frame(response.content)
        if frame.error:
            raise LLMError(error=frame.error)
        return frame
