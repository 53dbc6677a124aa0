from __future__ import annotations

from dataclasses import replace

from readaloud.state import (
    PersistProgress,
    PlaybackState,
    PublishNowPlaying,
    SessionSnapshot,
    StartListening,
    StopListening,
    plan_effects,
)

LOADED = SessionSnapshot(book_id="book", total_paragraphs=5, current_index=1)


def test_loading_a_book_publishes_without_persisting():
    commands = plan_effects(SessionSnapshot(), LOADED)
    assert commands == [PublishNowPlaying()]


def test_index_change_persists_and_publishes():
    commands = plan_effects(LOADED, replace(LOADED, current_index=2))
    assert commands == [PersistProgress(book_id="book", index=2), PublishNowPlaying()]


def test_restore_skips_persistence():
    commands = plan_effects(LOADED, replace(LOADED, current_index=3), persist=False)
    assert commands == [PublishNowPlaying()]


def test_playing_transitions_drive_listening_clock():
    playing = replace(LOADED, state=PlaybackState.PLAYING, is_session_active=True)
    assert plan_effects(LOADED, playing) == [StartListening(), PublishNowPlaying()]

    paused = replace(playing, state=PlaybackState.PAUSED, is_session_active=False)
    assert plan_effects(playing, paused) == [StopListening(), PublishNowPlaying()]


def test_loading_state_alone_has_no_effects():
    loading = replace(LOADED, state=PlaybackState.LOADING, is_loading=True)
    assert plan_effects(LOADED, loading) == []


def test_rate_change_publishes():
    assert plan_effects(LOADED, replace(LOADED, rate=1.5)) == [PublishNowPlaying()]


def test_no_book_no_publish():
    assert plan_effects(SessionSnapshot(), SessionSnapshot(rate=2.0)) == []
