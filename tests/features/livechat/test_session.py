"""Tests for the polling session loop."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from chatfeed.features.livechat.auth import AuthCredential
from chatfeed.features.livechat.client import ClientIdentity
from chatfeed.features.livechat.exceptions import (
    AuthExpiredError,
    FetchTimeoutError,
    InvalidTransitionError,
    PageResolutionError,
    RateLimitedError,
    RequestRejectedError,
)
from chatfeed.features.livechat.session import PollingSession
from chatfeed.features.livechat.state import SessionState
from chatfeed.features.livechat.token_codec import ChatMode, TokenKind, encode_token

from .conftest import (
    ALL_CHAT_TOKEN,
    PAGE_TOKEN,
    SAMPLE_TOKEN,
    FailingSink,
    FakePageResolver,
    ScriptedClient,
    chat_response,
    resolved_page,
    text_record,
)

URL = "https://www.youtube.com/watch?v=abcdefghijk"


def _session(livechat_config, client, resolver=None, sinks=(), **kwargs) -> PollingSession:
    return PollingSession(
        session_id="test",
        url=URL,
        config=livechat_config,
        client=client,
        page_resolver=resolver or FakePageResolver(),
        sinks=sinks,
        **kwargs,
    )


async def _wait_for_state(session: PollingSession, *states: SessionState, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while session.state not in states:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TestDelivery:
    """Tests for the fetch and deliver cycle."""

    @pytest.mark.asyncio
    async def test_batches_delivered_in_order_until_stream_ends(self, livechat_config, recording_sink):
        client = ScriptedClient(
            [
                chat_response([text_record("b", 20), text_record("a", 10)], timeout_ms=1),
                chat_response([text_record("b", 20), text_record("c", 30)], timeout_ms=1),
                chat_response([text_record("d", 40)], continuation=None),
            ]
        )
        session = _session(livechat_config, client, sinks=[recording_sink])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.CLOSED
        assert [event.id for event in recording_sink.events] == ["a", "b", "c", "d"]
        assert session.status()["events_emitted"] == 4
        assert session.status()["last_success_at"] is not None

    @pytest.mark.asyncio
    async def test_uses_page_token_for_first_fetch(self, livechat_config):
        client = ScriptedClient([chat_response(continuation=None)])
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert client.calls[0].value == SAMPLE_TOKEN
        assert client.auth_seen == [None]

    @pytest.mark.asyncio
    async def test_credentials_sign_every_fetch(self, livechat_config):
        client = ScriptedClient([chat_response(timeout_ms=1), chat_response(continuation=None)])
        credential = AuthCredential.from_cookie_header("SAPISID=secret; SID=a")
        session = _session(livechat_config, client, credential=credential)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert len(client.auth_seen) == 2
        assert all(auth is not None for auth in client.auth_seen)
        assert session.status()["authenticated"] is True

    @pytest.mark.asyncio
    async def test_sink_failure_fails_session(self, livechat_config):
        client = ScriptedClient([chat_response([text_record("a", 1)])])
        session = _session(livechat_config, client, sinks=[FailingSink()])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "sink_error"

    @pytest.mark.asyncio
    async def test_sink_failure_on_final_page_fails_session(self, livechat_config):
        client = ScriptedClient([chat_response([text_record("a", 1)], continuation=None)])
        session = _session(livechat_config, client, sinks=[FailingSink()])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "sink_error"
        assert session.running is False

    @pytest.mark.asyncio
    async def test_unparseable_timeout_keeps_polling(self, livechat_config, recording_sink):
        odd = chat_response([text_record("a", 1)])
        odd["continuationContents"]["liveChatContinuation"]["continuations"][0][
            "invalidationContinuationData"
        ]["timeoutMs"] = "soon"
        client = ScriptedClient([odd, chat_response([text_record("b", 2)], continuation=None)])
        session = _session(livechat_config, client, sinks=[recording_sink])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.CLOSED
        assert [event.id for event in recording_sink.events] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_malformed_response_backs_off(self, livechat_config, recording_sink):
        """A response body of the wrong shape is retried like a transient failure."""
        client = ScriptedClient(
            [["not", "an", "object"], chat_response([text_record("a", 1)], continuation=None)]
        )
        session = _session(livechat_config, client, sinks=[recording_sink])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.backoff_delays == [0.01]
        assert session.state is SessionState.CLOSED
        assert [event.id for event in recording_sink.events] == ["a"]

    @pytest.mark.asyncio
    async def test_malformed_responses_exhaust_retries(self, livechat_config):
        client = ScriptedClient([["junk"]] * 4)
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "response_parse_error"

    @pytest.mark.asyncio
    async def test_reload_continuation_mints_new_main(self, livechat_config, recording_sink):
        minted = resolved_page(SAMPLE_TOKEN)
        resolver = FakePageResolver(reloads={"RELOAD_X": minted})
        client = ScriptedClient(
            [
                chat_response(continuation="RELOAD_X", continuation_key="reloadContinuationData"),
                chat_response([text_record("a", 1)], continuation=None),
            ]
        )
        session = _session(livechat_config, client, resolver, sinks=[recording_sink])

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert resolver.reloaded == ["RELOAD_X"]
        assert client.calls[1].kind is TokenKind.MAIN
        assert client.calls[1].value == SAMPLE_TOKEN
        assert [event.id for event in recording_sink.events] == ["a"]


class TestFailures:
    """Tests for retry and failure handling."""

    @pytest.mark.asyncio
    async def test_backoff_sequence_then_failed(self, livechat_config):
        """Three timeouts back off with growing delays; a fourth fails the session."""
        client = ScriptedClient([FetchTimeoutError("slow") for _ in range(4)])
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.backoff_delays == pytest.approx([0.01, 0.02, 0.04])
        assert all(a < b for a, b in zip(session.backoff_delays, session.backoff_delays[1:]))
        assert max(session.backoff_delays) <= livechat_config.backoff_max_seconds
        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "timeout"
        assert len(client.calls) == 4

    @pytest.mark.asyncio
    async def test_success_resets_retry_count(self, livechat_config):
        client = ScriptedClient(
            [
                FetchTimeoutError("slow"),
                FetchTimeoutError("slow"),
                chat_response(timeout_ms=1),
                FetchTimeoutError("slow"),
                chat_response(continuation=None),
            ]
        )
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.backoff_delays == pytest.approx([0.01, 0.02, 0.01])
        assert session.state is SessionState.CLOSED
        assert session.retry_count == 0

    @pytest.mark.asyncio
    async def test_rate_limit_uses_floor(self, livechat_config):
        client = ScriptedClient([RateLimitedError("slow down"), chat_response(continuation=None)])
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.backoff_delays == pytest.approx([livechat_config.rate_limit_floor_seconds])

    @pytest.mark.asyncio
    async def test_auth_expired_fails_without_retry(self, livechat_config):
        client = ScriptedClient([AuthExpiredError("expired", status_code=401)])
        credential = AuthCredential.from_cookie_header("SAPISID=secret")
        session = _session(livechat_config, client, credential=credential)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "auth_expired"
        assert session.backoff_delays == []

    @pytest.mark.asyncio
    async def test_rejected_request_fails(self, livechat_config):
        client = ScriptedClient([RequestRejectedError("bad", status_code=400)])
        session = _session(livechat_config, client)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "request_rejected"

    @pytest.mark.asyncio
    async def test_page_resolution_failure_fails_from_idle(self, livechat_config):
        resolver = FakePageResolver(error=PageResolutionError("chat disabled"))
        session = _session(livechat_config, ScriptedClient(), resolver)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.FAILED
        assert session.last_failure_reason == "page_resolution_error"

    @pytest.mark.asyncio
    async def test_rearm_after_failure(self, livechat_config):
        client = ScriptedClient(
            [AuthExpiredError("expired", status_code=401), chat_response(continuation=None)]
        )
        resolver = FakePageResolver()
        session = _session(
            livechat_config, client, resolver, credential=AuthCredential(sapisid="old")
        )
        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)
        assert session.state is SessionState.FAILED

        await session.rearm(AuthCredential(sapisid="new"))
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.state is SessionState.CLOSED
        assert session.last_failure_reason is None
        assert resolver.resolved == [URL, URL]
        assert client.auth_seen[1].credential.sapisid == "new"

    @pytest.mark.asyncio
    async def test_rearm_keeps_all_chat_mode(self, livechat_config):
        client = ScriptedClient(
            [AuthExpiredError("expired", status_code=401), chat_response(continuation=None)]
        )
        session = _session(livechat_config, client, mode=ChatMode.ALL_CHAT)
        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)
        assert session.state is SessionState.FAILED

        await session.rearm()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.mode is ChatMode.ALL_CHAT
        assert [call.mode for call in client.calls] == [ChatMode.ALL_CHAT, ChatMode.ALL_CHAT]

    @pytest.mark.asyncio
    async def test_rearm_uses_reload_token_for_mode(self, livechat_config):
        page = resolved_page(PAGE_TOKEN, reload_tokens={ChatMode.ALL_CHAT: "RELOAD_ALL"})
        resolver = FakePageResolver(page=page, reloads={"RELOAD_ALL": resolved_page(ALL_CHAT_TOKEN)})
        client = ScriptedClient([FetchTimeoutError("slow")] * 4 + [chat_response(continuation=None)])
        session = _session(livechat_config, client, resolver, mode=ChatMode.ALL_CHAT)
        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)
        assert session.state is SessionState.FAILED

        await session.rearm()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert resolver.reloaded == ["RELOAD_ALL", "RELOAD_ALL"]
        assert client.calls[-1].value == ALL_CHAT_TOKEN
        assert session.mode is ChatMode.ALL_CHAT

    @pytest.mark.asyncio
    async def test_rearm_requires_failed(self, livechat_config):
        session = _session(livechat_config, ScriptedClient())
        with pytest.raises(InvalidTransitionError):
            await session.rearm()


class TestModeSwitch:
    """Tests for top chat / all chat switching."""

    @pytest.mark.asyncio
    async def test_switch_rewrites_token(self, livechat_config):
        client = ScriptedClient()
        resolver = FakePageResolver()
        session = _session(livechat_config, client, resolver)
        await session.start()
        await _wait_until(lambda: len(client.calls) >= 1)

        mode = await asyncio.wait_for(session.switch_mode(ChatMode.ALL_CHAT), timeout=2.0)
        await _wait_until(lambda: client.calls[-1].mode is ChatMode.ALL_CHAT)

        assert mode is ChatMode.ALL_CHAT
        assert session.mode is ChatMode.ALL_CHAT
        assert resolver.reloaded == []
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_falls_back_to_reload(self, livechat_config):
        """Page tokens without the mode record switch through the reload token."""
        minted = resolved_page(SAMPLE_TOKEN)
        page = resolved_page(PAGE_TOKEN, reload_tokens={ChatMode.ALL_CHAT: "RELOAD_ALL"})
        resolver = FakePageResolver(page=page, reloads={"RELOAD_ALL": minted})
        # Keep the first-page token alive so the rewrite cannot be used.
        client = ScriptedClient([chat_response(continuation=PAGE_TOKEN, timeout_ms=1)])
        session = _session(livechat_config, client, resolver)
        await session.start()
        await _wait_until(lambda: len(client.calls) >= 1)

        mode = await asyncio.wait_for(session.switch_mode(ChatMode.ALL_CHAT), timeout=2.0)

        assert mode is ChatMode.ALL_CHAT
        assert resolver.reloaded == ["RELOAD_ALL"]
        await _wait_until(lambda: client.calls[-1].value == SAMPLE_TOKEN)
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_without_fallback_raises(self, livechat_config):
        page = resolved_page(PAGE_TOKEN)
        client = ScriptedClient([chat_response(continuation=PAGE_TOKEN, timeout_ms=1)])
        session = _session(livechat_config, client, FakePageResolver(page=page))
        await session.start()
        await _wait_until(lambda: len(client.calls) >= 1)

        with pytest.raises(PageResolutionError):
            await asyncio.wait_for(session.switch_mode(ChatMode.ALL_CHAT), timeout=2.0)

        assert session.mode is ChatMode.TOP_CHAT
        assert session.state not in (SessionState.FAILED, SessionState.CLOSED)
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_to_current_mode_is_noop(self, livechat_config):
        session = _session(livechat_config, ScriptedClient())
        await session.start()
        assert await session.switch_mode(ChatMode.TOP_CHAT) is ChatMode.TOP_CHAT
        await session.close()

    @pytest.mark.asyncio
    async def test_start_in_all_chat_uses_reload(self, livechat_config):
        minted = resolved_page(SAMPLE_TOKEN)
        page = resolved_page(PAGE_TOKEN, reload_tokens={ChatMode.ALL_CHAT: "RELOAD_ALL"})
        resolver = FakePageResolver(page=page, reloads={"RELOAD_ALL": minted})
        client = ScriptedClient([chat_response(continuation=None)])
        session = _session(livechat_config, client, resolver, mode=ChatMode.ALL_CHAT)

        await session.start()
        await asyncio.wait_for(session.wait(), timeout=2.0)

        assert session.mode is ChatMode.ALL_CHAT
        assert client.calls[0].value == SAMPLE_TOKEN

    @pytest.mark.asyncio
    async def test_start_reload_refreshes_page_tokens(self, livechat_config):
        """Identity and reload tokens from the minted page are used afterwards."""
        minted_token = encode_token(bytes.fromhex("0a 0b 0c 0d"))
        minted = replace(
            resolved_page(minted_token, reload_tokens={ChatMode.TOP_CHAT: "RELOAD_TOP"}),
            identity=ClientIdentity(api_key="minted-key", client_version="2.2", hl="en"),
        )
        page = resolved_page(PAGE_TOKEN, reload_tokens={ChatMode.ALL_CHAT: "RELOAD_ALL"})
        resolver = FakePageResolver(
            page=page,
            reloads={"RELOAD_ALL": minted, "RELOAD_TOP": resolved_page(SAMPLE_TOKEN)},
        )
        client = ScriptedClient([chat_response(continuation=minted_token, timeout_ms=1)])
        session = _session(livechat_config, client, resolver, mode=ChatMode.ALL_CHAT)
        await session.start()
        await _wait_until(lambda: len(client.calls) >= 1)

        mode = await asyncio.wait_for(session.switch_mode(ChatMode.TOP_CHAT), timeout=2.0)

        assert mode is ChatMode.TOP_CHAT
        assert client.identities[0].api_key == "minted-key"
        assert resolver.reloaded == ["RELOAD_ALL", "RELOAD_TOP"]
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_on_closed_session_raises(self, livechat_config):
        session = _session(livechat_config, ScriptedClient())
        await session.start()
        await session.close()
        with pytest.raises(InvalidTransitionError):
            await session.switch_mode(ChatMode.ALL_CHAT)


class TestClose:
    @pytest.mark.asyncio
    async def test_close_cancels_loop(self, livechat_config):
        client = ScriptedClient()
        session = _session(livechat_config, client)
        await session.start()
        await _wait_until(lambda: len(client.calls) >= 1)

        await session.close()

        assert session.state is SessionState.CLOSED
        assert not session.running
        calls = len(client.calls)
        await asyncio.sleep(0.05)
        assert len(client.calls) == calls

    @pytest.mark.asyncio
    async def test_close_before_start(self, livechat_config):
        session = _session(livechat_config, ScriptedClient())
        await session.close()
        assert session.state is SessionState.CLOSED
        await session.close()
        assert session.state is SessionState.CLOSED
