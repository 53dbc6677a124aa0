from __future__ import annotations

import asyncio

from conftest import FakePlayer, FakeRemoteBackend, settle
from readaloud.transport import (
    BackgroundWork,
    CommandStatus,
    LoggingNowPlayingPublisher,
    NowPlayingInfo,
    RemoteCommand,
    TransportBridge,
)


def test_commands_without_content(make_session):
    async def scenario():
        async with make_session(FakeRemoteBackend(), FakePlayer()) as session:
            bridge = TransportBridge(session)
            assert bridge.handle(RemoteCommand.PLAY) is CommandStatus.NO_SUCH_CONTENT
            assert bridge.handle("next") is CommandStatus.NO_SUCH_CONTENT

    asyncio.run(scenario())


def test_commands_route_to_session(make_session):
    async def scenario():
        player = FakePlayer()
        async with make_session(FakeRemoteBackend(), player) as session:
            session.load_book(["a", "b", "c"], "book")
            bridge = TransportBridge(session)

            assert bridge.handle("toggle") is CommandStatus.SUCCESS
            await settle()
            assert session.is_playing

            assert bridge.handle(RemoteCommand.TOGGLE) is CommandStatus.SUCCESS
            assert not session.is_session_active

            bridge.handle(RemoteCommand.NEXT)
            assert session.current_paragraph_index == 1
            bridge.handle(RemoteCommand.PREVIOUS)
            assert session.current_paragraph_index == 0

            bridge.handle(RemoteCommand.PAUSE)
            assert not session.is_session_active
            bridge.handle(RemoteCommand.PLAY)
            assert session.is_session_active

    asyncio.run(scenario())


def test_position_scrubbing_and_unknown_commands_unsupported(make_session):
    async def scenario():
        async with make_session(FakeRemoteBackend(), FakePlayer()) as session:
            session.load_book(["a"], "book")
            bridge = TransportBridge(session)
            assert bridge.handle(RemoteCommand.CHANGE_POSITION) is CommandStatus.UNSUPPORTED
            assert bridge.handle("shuffle") is CommandStatus.UNSUPPORTED

    asyncio.run(scenario())


def test_logging_publisher_keeps_last_snapshot():
    publisher = LoggingNowPlayingPublisher()
    info = NowPlayingInfo(
        title="Book",
        artwork=None,
        estimated_total_duration=60.0,
        estimated_elapsed=12.0,
        rate=1.0,
    )
    publisher.publish(info)
    assert publisher.last is info


def test_background_work_is_reference_counted():
    events = []
    work = BackgroundWork(
        on_begin=lambda: events.append("begin"),
        on_end=lambda: events.append("end"),
    )
    first = work.acquire("render-0")
    second = work.acquire("render-1")
    first.release()
    first.release()
    assert work.active_count == 1
    assert events == ["begin"]

    second.release()
    assert events == ["begin", "end"]
    assert work.active_count == 0
