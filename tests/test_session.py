"""Tests for the pool session state machine."""

from __future__ import annotations

import asyncio
import json

import pytest

from helpers import HOSTILE_LINES, FakeWriter, ScriptedOpener, eof_reader, notify_line, refused
from stratum_height_monitor.monitor.constants import MAX_LINE_SIZE
from stratum_height_monitor.monitor.height import ExtractionError
from stratum_height_monitor.monitor.session import (
    PoolHeightSession,
    SessionState,
    TransportError,
)
from stratum_height_monitor.stratum.protocol import EncodingError

SUBSCRIBE_REPLY = b'{"id":1,"result":[[["mining.notify","ae6812eb4cd7735a302a8a9dd95cf71f"]],"08000002",4],"error":null}\n'
AUTHORIZE_REPLY = b'{"id":2,"result":true,"error":null}\n'
AUTHORIZE_REJECTED = b'{"id":2,"result":null,"error":[29,"Invalid username",null]}\n'

HANDSHAKE = [
    {"method": "mining.subscribe", "params": ["test-agent"], "id": 1},
    {"method": "mining.authorize", "params": ["wallet.monitor", "x"], "id": 2},
]


@pytest.fixture
def settings(fast_settings):
    return fast_settings.model_copy(update={"user_agent": "test-agent"})


def make_session(endpoint, dispatcher, settings, opener=None, **kwargs) -> PoolHeightSession:
    return PoolHeightSession(
        endpoint, dispatcher, settings=settings, open_connection=opener, **kwargs
    )


async def handshaken_session(endpoint, dispatcher, settings, **kwargs):
    opener = ScriptedOpener([asyncio.StreamReader()])
    session = make_session(endpoint, dispatcher, settings, opener, **kwargs)
    assert await session.reconnect()
    await session._handshake()
    return session, opener


class TestHeightTracking:
    async def test_repeat_height_dispatches_once(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(notify_line("a", 100))
        session.process_line(notify_line("b", 100))
        session.process_line(notify_line("c", 101))

        assert [(e.old_height, e.new_height) for e in dispatcher.events] == [(0, 100), (100, 101)]
        assert all(e.kind == "HeightChanged" for e in dispatcher.events)
        assert all(e.endpoint is endpoint for e in dispatcher.events)
        assert session.height == 101

    async def test_increasing_heights_dispatch_every_time(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)
        heights = [500, 501, 502, 510, 1000]

        for i, height in enumerate(heights):
            session.process_line(notify_line(f"job-{i}", height))

        assert [e.new_height for e in dispatcher.events] == heights
        assert all(e.old_height != e.new_height for e in dispatcher.events)

    async def test_lower_height_is_a_change(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(notify_line("a", 200))
        session.process_line(notify_line("b", 199))

        assert dispatcher.events[-1].old_height == 200
        assert dispatcher.events[-1].new_height == 199

    async def test_extraction_failure_keeps_previous_height(self, endpoint, dispatcher, settings):
        calls = []

        def extractor(coin_type, payload):
            calls.append(payload.job_id)
            if payload.job_id == "broken":
                raise ExtractionError("no height push")
            return int(payload.job_id)

        session, _ = await handshaken_session(endpoint, dispatcher, settings, extractor=extractor)

        session.process_line(notify_line("100", 1))
        session.process_line(notify_line("broken", 1))
        session.process_line(notify_line("100", 1))

        assert calls == ["100", "broken", "100"]
        assert session.height == 100
        assert len(dispatcher.events) == 1

    async def test_bad_lines_are_skipped(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(b"{garbage\n")
        session.process_line(b'{"id":null,"method":"mining.notify","params":["short"]}\n')
        session.process_line(b'{"id":null,"method":"client.show_message","params":["hi"]}\n')
        session.process_line(notify_line("a", 7))

        assert session.height == 7
        assert len(dispatcher.events) == 1

    @pytest.mark.parametrize(
        "failure", [ValueError("bad digit"), KeyError("coinbase1"), IndexError("short")]
    )
    async def test_extractor_exception_keeps_previous_height(
        self, endpoint, dispatcher, settings, failure
    ):
        def extractor(coin_type, payload):
            if payload.job_id == "broken":
                raise failure
            return 100

        session, _ = await handshaken_session(endpoint, dispatcher, settings, extractor=extractor)

        session.process_line(notify_line("ok", 1))
        session.process_line(notify_line("broken", 1))

        assert session.height == 100
        assert len(dispatcher.events) == 1

    @pytest.mark.parametrize("bogus", [None, -5, True, "101"])
    async def test_extractor_result_must_be_a_height(self, endpoint, dispatcher, settings, bogus):
        session, _ = await handshaken_session(
            endpoint, dispatcher, settings, extractor=lambda coin_type, payload: bogus
        )

        session.process_line(notify_line("a", 1))

        assert session.height == 0
        assert dispatcher.events == []


class TestHandshake:
    async def test_pipelined_subscribe_and_authorize(self, endpoint, dispatcher, settings):
        session, opener = await handshaken_session(endpoint, dispatcher, settings)

        assert opener.writers[0].requests() == HANDSHAKE
        assert session.state is SessionState.HANDSHAKING
        assert not session.handshake_complete

    async def test_replies_mark_handshake_complete(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(AUTHORIZE_REPLY)
        session.process_line(SUBSCRIBE_REPLY)

        assert session.authorized
        assert session.subscribed
        assert session.handshake_complete
        assert session.extranonce1 == "08000002"
        assert session.extranonce2_size == 4

    async def test_rejected_authorize(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(AUTHORIZE_REJECTED)

        assert not session.authorized

    async def test_set_difficulty_is_recorded(self, endpoint, dispatcher, settings):
        session, _ = await handshaken_session(endpoint, dispatcher, settings)

        session.process_line(b'{"id":null,"method":"mining.set_difficulty","params":[2048]}\n')

        assert session.difficulty == 2048.0
        assert dispatcher.events == []

    async def test_encoding_error_drops_only_that_request(
        self, endpoint, dispatcher, settings, monkeypatch
    ):
        opener = ScriptedOpener([asyncio.StreamReader()])
        session = make_session(endpoint, dispatcher, settings, opener)
        assert await session.reconnect()

        def broken_subscribe(user_agent):
            raise EncodingError("cannot encode")

        monkeypatch.setattr(session._protocol, "build_subscribe", broken_subscribe)
        await session._handshake()

        assert [r["method"] for r in opener.writers[0].requests()] == ["mining.authorize"]

    async def test_write_failure_is_transport_error(self, endpoint, dispatcher, settings):
        class BrokenWriter(FakeWriter):
            async def drain(self):
                raise ConnectionResetError(104, "Connection reset by peer")

        async def opener(host, port, limit=None):
            return asyncio.StreamReader(), BrokenWriter()

        session = make_session(endpoint, dispatcher, settings, opener)
        assert await session.reconnect()

        with pytest.raises(TransportError):
            await session._handshake()


class TestReconnect:
    @pytest.mark.parametrize("failures", [0, 1, 2, 3])
    async def test_redials_until_success_within_bound(
        self, endpoint, dispatcher, settings, failures
    ):
        opener = ScriptedOpener([refused()] * failures + [asyncio.StreamReader()])
        session = make_session(endpoint, dispatcher, settings, opener)

        assert await session.reconnect() is True
        assert opener.calls == failures + 1
        assert session.connected

        await session._handshake()
        assert opener.writers[-1].requests() == HANDSHAKE

    async def test_gives_up_after_bound(self, endpoint, dispatcher, settings):
        opener = ScriptedOpener([refused()] * 10)
        session = make_session(endpoint, dispatcher, settings, opener)

        assert await session.reconnect() is False
        assert opener.calls == settings.reconnect_max_retries + 1
        assert session.state is SessionState.FAILED
        assert session.failed

    async def test_dial_timeout_counts_as_failure(self, endpoint, dispatcher, settings):
        async def hanging_opener(host, port, limit=None):
            await asyncio.sleep(10)

        session = make_session(
            endpoint.model_copy(update={"timeout": 0.01}),
            dispatcher,
            settings.model_copy(update={"reconnect_max_retries": 0}),
            hanging_opener,
        )

        assert await session.reconnect() is False
        assert session.dial_attempts == 1


class TestRun:
    async def test_full_lifecycle(self, endpoint, dispatcher, settings):
        first = eof_reader(SUBSCRIBE_REPLY, AUTHORIZE_REPLY, notify_line("a", 100))
        second = eof_reader(notify_line("b", 100), notify_line("c", 101))
        opener = ScriptedOpener([first, refused(), second])
        session = make_session(endpoint, dispatcher, settings, opener)

        state = await session.run()

        assert state is SessionState.FAILED
        assert [(e.old_height, e.new_height) for e in dispatcher.events] == [(0, 100), (100, 101)]
        # dial 1 ok, reconnect: refused + ok, reconnect: 4 refused
        assert opener.calls == 1 + 2 + 4
        assert session.reconnect_count == 1
        # Every handshake restarts the ID sequence
        for writer in opener.writers:
            assert writer.requests() == HANDSHAKE
            assert writer.closed
        assert not session.connected

    @pytest.mark.parametrize("name", sorted(HOSTILE_LINES))
    async def test_hostile_frame_does_not_end_the_session(self, endpoint, dispatcher, settings, name):
        reader = eof_reader(
            SUBSCRIBE_REPLY,
            AUTHORIZE_REPLY,
            HOSTILE_LINES[name] + b"\n",
            notify_line("a", 100),
            limit=MAX_LINE_SIZE,
        )
        opener = ScriptedOpener([reader])
        session = make_session(endpoint, dispatcher, settings, opener)

        state = await session.run()

        # EOF after the notify, then the reconnect bound is exhausted
        assert state is SessionState.FAILED
        assert [(e.old_height, e.new_height) for e in dispatcher.events] == [(0, 100)]

    async def test_initial_connect_retries_without_bound(self, endpoint, dispatcher, settings):
        opener = ScriptedOpener([refused()] * 6 + [eof_reader()])
        session = make_session(endpoint, dispatcher, settings, opener)

        state = await session.run()

        assert state is SessionState.FAILED
        assert opener.calls == 7 + settings.reconnect_max_retries + 1

    async def test_cancel_stops_and_closes(self, endpoint, dispatcher, settings):
        reader = asyncio.StreamReader()
        reader.feed_data(SUBSCRIBE_REPLY + AUTHORIZE_REPLY)
        opener = ScriptedOpener([reader])
        session = make_session(endpoint, dispatcher, settings, opener)

        task = asyncio.create_task(session.run())
        for _ in range(100):
            if session.handshake_complete:
                break
            await asyncio.sleep(0.01)
        assert session.state is SessionState.LISTENING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state is SessionState.STOPPED
        assert opener.writers[0].closed
        assert not session.connected

    async def test_against_real_socket(self, endpoint, dispatcher, settings):
        received = []
        release = asyncio.Event()

        async def pool(reader, writer):
            for _ in range(2):
                received.append(json.loads(await reader.readline()))
            writer.write(SUBSCRIBE_REPLY + AUTHORIZE_REPLY)
            writer.write(notify_line("a", 100) + notify_line("b", 100) + notify_line("c", 101))
            await writer.drain()
            await release.wait()
            writer.close()

        server = await asyncio.start_server(pool, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        session = PoolHeightSession(
            endpoint.model_copy(update={"port": port}), dispatcher, settings=settings
        )
        task = asyncio.create_task(session.run())
        try:
            for _ in range(200):
                if len(dispatcher.events) >= 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            release.set()
            server.close()
            await server.wait_closed()

        assert received == HANDSHAKE
        assert [(e.old_height, e.new_height) for e in dispatcher.events] == [(0, 100), (100, 101)]
        assert session.handshake_complete
