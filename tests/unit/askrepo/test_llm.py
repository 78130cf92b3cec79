from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import httpx
import pytest

from askrepo.exceptions import ApiStatusError, FrameDecodeError, LLMError, LLMTransportError
from askrepo.llm import (
    IncrementalDeframer,
    LLMClient,
    deframe_best_effort,
    deframe_incremental,
    parse_frames,
)
from askrepo.models import GeneratePayload, GenerateResponse, ModelParameters

PAYLOAD = GeneratePayload(model="llama3.2:latest", prompt="hi", stream=True, options=ModelParameters(num_ctx=2048))


async def _chunks(items: Sequence[bytes]) -> AsyncIterator[bytes]:
    for item in items:
        yield item


async def _collect(deframer: Callable[..., AsyncIterator[GenerateResponse]], items: Sequence[bytes]) -> list[Any]:
    return [f async for f in deframer(_chunks(items))]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_best_effort_emits_whole_chunks_immediately(frame: Callable[..., bytes]) -> None:
    frames = await _collect(
        deframe_best_effort,
        [frame(response="a", done=False), frame(response="b", done=False), frame(response="", done=True)],
    )

    assert [f.response for f in frames] == ["a", "b", ""]
    assert frames[-1].done is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_best_effort_reassembles_split_records_at_stream_end() -> None:
    frames = await _collect(
        deframe_best_effort,
        [
            b'{"respo',
            b'nse":"hi","done":false}\n{"response":"","done":true,"eval_count":7,"eval_duration":1000000000}',
        ],
    )

    assert len(frames) == 2
    assert frames[0].response == "hi"
    assert frames[0].done is False
    assert frames[1].done is True
    assert frames[1].eval_count == 7
    assert frames[1].tokens_per_second == pytest.approx(7.0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_best_effort_fails_on_undecodable_tail() -> None:
    with pytest.raises(FrameDecodeError):
        await _collect(deframe_best_effort, [b'{"response":"a","done":false}', b'{"respo'])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_best_effort_ignores_whitespace_only_leftovers(frame: Callable[..., bytes]) -> None:
    frames = await _collect(deframe_best_effort, [frame(response="a"), b"\n"])

    assert [f.response for f in frames] == ["a"]


@pytest.mark.unit
def test_parse_frames_tolerates_partial_field_sets() -> None:
    frames = parse_frames(b'{"response":"x"}  {"done":true}\n')

    assert frames[0] == GenerateResponse(response="x")
    assert frames[1].done is True
    assert frames[1].model == ""
    assert frames[1].error is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_incremental_emits_records_across_arbitrary_chunks() -> None:
    body = b'{"response":"{\\"a\\": }","done":false}\n{"response":"\xc3\xa9t\xc3\xa9","done":true}\n'
    pieces = [body[i : i + 3] for i in range(0, len(body), 3)]

    frames = await _collect(deframe_incremental, pieces)

    assert [f.response for f in frames] == ['{"a": }', "été"]
    assert [f.done for f in frames] == [False, True]


@pytest.mark.unit
def test_incremental_deframer_returns_record_as_soon_as_it_closes() -> None:
    splitter = IncrementalDeframer()

    assert splitter.feed(b'{"response":"a"') == []
    assert splitter.feed(b'}{"resp') == [b'{"response":"a"}']
    with pytest.raises(FrameDecodeError):
        splitter.finish()


@pytest.mark.unit
def test_incremental_deframer_rejects_unbalanced_input() -> None:
    with pytest.raises(FrameDecodeError):
        IncrementalDeframer().feed(b"}")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_delivers_frames_in_order(scripted_endpoint: Any, frame: Callable[..., bytes]) -> None:
    endpoint = scripted_endpoint(
        chunks=[frame(response="Hel", done=False), frame(response="lo", done=False), frame(response="", done=True)],
    )
    received: list[GenerateResponse] = []

    async with LLMClient(client=endpoint.client()) as client:
        await client.generate_stream(PAYLOAD, lambda f: received.append(f) or False)

    assert "".join(f.response for f in received) == "Hello"
    assert received[-1].done is True
    assert endpoint.requests == [
        {"model": "llama3.2:latest", "prompt": "hi", "stream": True, "options": {"num_ctx": 2048}},
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_stops_when_callback_asks(scripted_endpoint: Any, frame: Callable[..., bytes]) -> None:
    chunks = [frame(response=str(i), done=False) for i in range(5)]
    endpoint = scripted_endpoint(chunks=chunks)
    received: list[GenerateResponse] = []

    async def on_chunk(f: GenerateResponse) -> bool:
        received.append(f)
        return True

    async with LLMClient(client=endpoint.client()) as client:
        await client.generate_stream(PAYLOAD, on_chunk)

    assert [f.response for f in received] == ["0"]
    assert len(endpoint.pulled) < len(chunks)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_raises_in_band_error_before_delivery(
    scripted_endpoint: Any,
    frame: Callable[..., bytes],
) -> None:
    endpoint = scripted_endpoint(
        chunks=[frame(response="partial", done=False), frame(error="model crashed"), frame(response="late")],
    )
    received: list[GenerateResponse] = []

    async with LLMClient(client=endpoint.client()) as client:
        with pytest.raises(LLMError) as exc_info:
            await client.generate_stream(PAYLOAD, lambda f: received.append(f) or False)

    assert exc_info.value.error == "model crashed"
    assert [f.response for f in received] == ["partial"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_surfaces_status_error_payload(scripted_endpoint: Any) -> None:
    endpoint = scripted_endpoint(status_code=404, json_body={"error": "model 'nope' not found"})

    async with LLMClient(client=endpoint.client()) as client:
        with pytest.raises(ApiStatusError) as exc_info:
            await client.generate_stream(PAYLOAD, lambda _: False)

    assert exc_info.value.status_code == 404
    assert exc_info.value.payload == {"error": "model 'nope' not found"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_wraps_connection_failure() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    async with LLMClient(client=http) as client:
        with pytest.raises(LLMTransportError) as exc_info:
            await client.generate_stream(PAYLOAD, lambda _: False)

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    await http.aclose()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_stream_wraps_mid_stream_read_failure(
    scripted_endpoint: Any,
    frame: Callable[..., bytes],
) -> None:
    endpoint = scripted_endpoint(chunks=[frame(response="a"), httpx.ReadError("connection reset")])
    received: list[GenerateResponse] = []

    async with LLMClient(client=endpoint.client()) as client:
        with pytest.raises(LLMTransportError):
            await client.generate_stream(PAYLOAD, lambda f: received.append(f) or False)

    assert [f.response for f in received] == ["a"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_iter_frames_with_incremental_deframer(scripted_endpoint: Any) -> None:
    endpoint = scripted_endpoint(chunks=[b'{"response":"a"}{"resp', b'onse":"b","done":true}'])

    async with LLMClient(client=endpoint.client(), deframer=deframe_incremental) as client:
        frames = [f async for f in client.iter_frames(PAYLOAD)]

    assert [f.response for f in frames] == ["a", "b"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_once_parses_single_record(scripted_endpoint: Any) -> None:
    endpoint = scripted_endpoint(json_body={"model": "m", "response": "all at once", "done": True, "eval_count": 4})

    async with LLMClient(client=endpoint.client()) as client:
        generated = await client.generate_once(GeneratePayload(model="m", prompt="hi"))

    assert generated.response == "all at once"
    assert generated.eval_count == 4
    assert endpoint.requests[0]["stream"] is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_once_status_error_keeps_non_json_body() -> None:
    def fail(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal failure")

    http = httpx.AsyncClient(transport=httpx.MockTransport(fail))
    async with LLMClient(client=http) as client:
        with pytest.raises(ApiStatusError) as exc_info:
            await client.generate_once(PAYLOAD)

    assert exc_info.value.payload == "internal failure"
    await http.aclose()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_once_raises_in_band_error(scripted_endpoint: Any) -> None:
    endpoint = scripted_endpoint(json_body={"error": "out of memory"})

    async with LLMClient(client=endpoint.client()) as client:
        with pytest.raises(LLMError):
            await client.generate_once(PAYLOAD)
