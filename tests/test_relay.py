"""Tests for the streaming relay state machine."""

import asyncio
import json

import httpx
import pytest

from deepseek_proxy.core import DONE_EVENT, ErrorType, RelayState, StreamRelay
from tests.upstream import PAYLOAD, TrackedStream, make_client, run_relay, sse_response


def error_of(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])["error"]


class TestFraming:
    """Upstream events are re-emitted whole and in order."""

    def test_event_then_done(self) -> None:
        relay, frames = run_relay(lambda request: sse_response('data: {"a":1}\n', "\ndata: [DONE]\n\n"))

        assert frames == ['data: {"a":1}\n\n', DONE_EVENT]
        assert relay.state is RelayState.CLOSED
        assert relay.error is None

    def test_any_chunk_boundary_gives_same_events(self) -> None:
        stream = 'data: {"a":1}\n\ndata: [DONE]\n\n'

        for cut in range(1, len(stream)):
            _, frames = run_relay(lambda request: sse_response(stream[:cut], stream[cut:]))
            assert frames == ['data: {"a":1}\n\n', DONE_EVENT], cut

    def test_done_appended_when_upstream_omits_it(self) -> None:
        relay, frames = run_relay(lambda request: sse_response('data: {"a":1}\n\n'))

        assert frames == ['data: {"a":1}\n\n', DONE_EVENT]
        assert relay.state is RelayState.CLOSED

    def test_bytes_after_done_are_discarded(self) -> None:
        _, frames = run_relay(lambda request: sse_response('data: [DONE]\ndata: {"late":1}\n', "data: more\n"))

        assert frames == [DONE_EVENT]

    def test_partial_line_flushed_at_end(self) -> None:
        _, frames = run_relay(lambda request: sse_response('data: {"a":1}\n', 'data: {"b":2}'))

        assert frames == ['data: {"a":1}\n\n', 'data: {"b":2}\n\n', DONE_EVENT]

    def test_partial_non_data_line_wrapped_at_end(self) -> None:
        _, frames = run_relay(lambda request: sse_response("trailing"))

        assert frames == ["data: trailing\n\n", DONE_EVENT]

    def test_partial_done_is_not_duplicated(self) -> None:
        _, frames = run_relay(lambda request: sse_response('data: {"a":1}\n\n', "data: [DONE]"))

        assert frames == ['data: {"a":1}\n\n', DONE_EVENT]

    def test_non_data_lines_rewrapped(self) -> None:
        _, frames = run_relay(lambda request: sse_response("hello world\n", "data: [DONE]\n\n"))

        assert frames == ["data: hello world\n\n", DONE_EVENT]

    def test_undecodable_payload_forwarded_unchanged(self) -> None:
        relay, frames = run_relay(lambda request: sse_response("data: not json\n\n", "data: [DONE]\n\n"))

        assert frames == ["data: not json\n\n", DONE_EVENT]
        assert relay.token_count == 0

    def test_crlf_upstream(self) -> None:
        _, frames = run_relay(lambda request: sse_response('data: {"a":1}\r\n\r\ndata: [DONE]\r\n\r\n'))

        assert frames == ['data: {"a":1}\n\n', DONE_EVENT]

    def test_multibyte_character_split_across_chunks(self) -> None:
        raw = 'data: {"c":"é"}\n\n'.encode("utf-8")
        cut = raw.index("é".encode("utf-8")) + 1

        _, frames = run_relay(lambda request: sse_response(raw[:cut], raw[cut:]))

        assert frames == ['data: {"c":"é"}\n\n', DONE_EVENT]

    def test_deeply_nested_payload_forwarded_unchanged(self) -> None:
        nested = "[" * 100_000 + "]" * 100_000

        relay, frames = run_relay(lambda request: sse_response(f"data: {nested}\n\n", "data: [DONE]\n\n"))

        assert frames == [f"data: {nested}\n\n", DONE_EVENT]
        assert relay.state is RelayState.CLOSED
        assert relay.error is None

    def test_non_list_messages_still_relayed(self) -> None:
        relay, frames = run_relay(
            lambda request: httpx.Response(400, content=b'{"error":"bad messages"}'),
            payload={"model": "deepseek-chat", "messages": 5, "stream": True},
        )

        assert len(frames) == 1
        assert error_of(frames[0])["type"] == "api_error"
        assert relay.error.error_type is ErrorType.API_ERROR

    def test_content_deltas_counted(self) -> None:
        chunk = {"choices": [{"index": 0, "delta": {"content": "Hi"}}]}
        reasoning = {"choices": [{"index": 0, "delta": {"reasoning_content": "hmm"}}]}
        final = {"choices": [{"index": 0, "delta": {}}], "usage": {"total_tokens": 7}}

        relay, frames = run_relay(lambda request: sse_response(
            f"data: {json.dumps(reasoning)}\n\n",
            f"data: {json.dumps(chunk)}\n\n",
            f"data: {json.dumps(final)}\n\n",
            "data: [DONE]\n\n",
        ))

        assert len(frames) == 4
        assert relay.token_count == 2
        assert relay.usage == {"total_tokens": 7}
        assert relay.events_sent == 4


class TestUpstreamRequest:
    """The relay posts the sanitized payload as an event-stream request."""

    def test_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return sse_response("data: [DONE]\n\n")

        run_relay(handler)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/chat/completions"
        assert request.url.host == "api.deepseek.com"
        assert request.headers["authorization"] == "Bearer test-key"
        assert request.headers["accept"] == "text/event-stream"
        assert request.headers["content-length"] == str(len(request.content))
        assert json.loads(request.content) == PAYLOAD


class TestErrors:
    """Failures become exactly one in-band error event."""

    def test_non_200_status(self) -> None:
        relay, frames = run_relay(
            lambda request: httpx.Response(503, content=b'{"error":"rate limited"}')
        )

        assert len(frames) == 1
        error = error_of(frames[0])
        assert error["type"] == "api_error"
        assert "503" in error["message"]
        assert '{"error":"rate limited"}' in error["message"]
        assert DONE_EVENT not in frames
        assert relay.state is RelayState.ERROR
        assert relay.error.error_type is ErrorType.API_ERROR

    def test_connect_failure_is_request_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        relay, frames = run_relay(handler)

        assert len(frames) == 1
        error = error_of(frames[0])
        assert error["type"] == "request_error"
        assert error["message"] == "Request failed: connection refused"
        assert relay.error.error_type is ErrorType.REQUEST_ERROR

    def test_mid_stream_failure_is_stream_error(self) -> None:
        relay, frames = run_relay(lambda request: sse_response(
            'data: {"a":1}\n\n',
            httpx.ReadError("connection reset"),
        ))

        assert frames[0] == 'data: {"a":1}\n\n'
        assert len(frames) == 2
        error = error_of(frames[1])
        assert error["type"] == "stream_error"
        assert error["message"] == "Stream error: connection reset"
        assert relay.state is RelayState.ERROR

    def test_read_timeout_is_timeout_error(self) -> None:
        relay, frames = run_relay(lambda request: sse_response(
            'data: {"a":1}\n\n',
            httpx.ReadTimeout("timed out"),
        ))

        assert len(frames) == 2
        error = error_of(frames[1])
        assert error == {"message": "Request timeout", "type": "timeout_error"}
        assert relay.error.error_type is ErrorType.TIMEOUT_ERROR

    def test_connect_timeout_is_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        _, frames = run_relay(handler)

        assert [error_of(frame)["type"] for frame in frames] == ["timeout_error"]


class TestDownstreamDisconnect:
    """Closing the downstream side stops the relay."""

    def test_close_after_first_event(self) -> None:
        async def body():
            yield b'data: {"a":1}\n\n'
            yield b'data: {"b":2}\n\n'
            yield b"data: [DONE]\n\n"

        async def go():
            client = make_client(lambda request: httpx.Response(200, content=body()))
            relay = StreamRelay(client)
            stream = relay.run(PAYLOAD)
            first = await stream.__anext__()
            await stream.aclose()
            await client.aclose()
            return relay, first

        relay, first = asyncio.run(go())

        assert first == 'data: {"a":1}\n\n'
        assert relay.state is RelayState.CLOSED
        assert relay.error is None
        assert relay.events_sent == 1


@pytest.mark.parametrize("status_code", [400, 401, 500])
def test_error_statuses_never_send_done(status_code: int) -> None:
    _, frames = run_relay(lambda request: httpx.Response(status_code, json={"error": {"message": "bad"}}))

    assert len(frames) == 1
    assert error_of(frames[0])["type"] == "api_error"


class TestUpstreamClosed:
    """The upstream body is closed on every way out of the relay."""

    def test_closed_after_done(self) -> None:
        body = TrackedStream('data: {"a":1}\n\n', "data: [DONE]\n\n", 'data: {"late":1}\n\n')

        _, frames = run_relay(lambda request: httpx.Response(200, stream=body))

        assert frames == ['data: {"a":1}\n\n', DONE_EVENT]
        assert body.closed

    def test_closed_after_stream_error(self) -> None:
        body = TrackedStream('data: {"a":1}\n\n', httpx.ReadError("connection reset"))

        relay, frames = run_relay(lambda request: httpx.Response(200, stream=body))

        assert error_of(frames[-1])["type"] == "stream_error"
        assert relay.state is RelayState.ERROR
        assert body.closed

    def test_closed_after_api_error(self) -> None:
        body = TrackedStream('{"error":"rate limited"}')

        _, frames = run_relay(lambda request: httpx.Response(503, stream=body))

        assert error_of(frames[0])["type"] == "api_error"
        assert body.closed

    def test_closed_when_downstream_disconnects(self) -> None:
        body = TrackedStream('data: {"a":1}\n\n', 'data: {"b":2}\n\n', "data: [DONE]\n\n")

        async def go():
            client = make_client(lambda request: httpx.Response(200, stream=body))
            relay = StreamRelay(client)
            stream = relay.run(PAYLOAD)
            await stream.__anext__()
            assert not body.closed
            await stream.aclose()
            await client.aclose()
            return relay

        relay = asyncio.run(go())

        assert relay.state is RelayState.CLOSED
        assert body.closed
