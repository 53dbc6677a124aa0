from __future__ import annotations

import asyncio
import io
import json
import types
from contextlib import redirect_stdout

from conftest import FakePlayer, FakeRemoteBackend, settle
from readaloud import cli
from readaloud.library_state import StateStore
from readaloud.transport import TransportBridge


class _AutoFinishPlayer(FakePlayer):
    def play(self, rate: float) -> None:
        super().play(rate)
        self.finish()


def _book(tmp_path, lines):
    path = tmp_path / "book.txt"
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def test_cli_requires_text(monkeypatch):
    class FakeStdin(io.StringIO):
        def isatty(self) -> bool:
            return True

    monkeypatch.setattr(cli, "sys", types.SimpleNamespace(stdin=FakeStdin("")))
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main([])
    assert exit_code == 2


def test_split_paragraphs_skips_blank_lines():
    assert cli.split_paragraphs("One.\n\n  Two.  \n\n\nThree.") == ["One.", "Two.", "Three."]


def test_cli_dry_run_reports_plan(tmp_path):
    path = _book(tmp_path, ["x" * 900, "", "y" * 900, "z" * 6000])
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(
            [str(path), "--dry-run", "--simulate", "--state-dir", str(tmp_path / "state")]
        )
    assert exit_code == 0
    output = buffer.getvalue()
    assert "Paragraphs: 3 total" in output
    assert "google (simulated)" in output
    assert "3. length=6000 chars exceeds limit 4800" in output


def test_cli_reads_from_stdin(monkeypatch, tmp_path):
    class FakeStdin(io.StringIO):
        def isatty(self) -> bool:
            return False

    monkeypatch.setattr(cli, "sys", types.SimpleNamespace(stdin=FakeStdin("Hello\nWorld\n")))
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(["--dry-run", "--state-dir", str(tmp_path)])
    assert exit_code == 0
    assert "Paragraphs: 2 total" in buffer.getvalue()


def test_cli_list_voices_without_key_shows_presets(tmp_path, monkeypatch):
    monkeypatch.delenv("GOOGLE_TTS_API_KEY", raising=False)
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(["--list-voices", "--state-dir", str(tmp_path)])
    assert exit_code == 0
    assert "en-US-Journey-D" in buffer.getvalue()


def test_cli_stats(tmp_path):
    (tmp_path / "stats.json").write_text(
        json.dumps({"daily": {}, "total_seconds": 7200}), encoding="utf-8"
    )
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(["--stats", "--state-dir", str(tmp_path)])
    assert exit_code == 0
    assert "ever   2h" in buffer.getvalue()


def test_cli_plays_simulated_book_to_the_end(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "_create_player", _AutoFinishPlayer)
    path = _book(tmp_path, ["First paragraph.", "Second paragraph.", "Third paragraph."])
    state_dir = tmp_path / "state"

    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(
            [
                str(path),
                "--simulate",
                "--no-interactive",
                "--state-dir",
                str(state_dir),
                "--audio-dir",
                str(tmp_path / "audio"),
            ]
        )

    assert exit_code == 0
    assert "Finished." in buffer.getvalue()
    book_id = cli.book_id_for(path.read_text(encoding="utf-8"))
    assert StateStore(state_dir).last_index(book_id) == 2


def test_apply_command_drives_session(make_session):
    async def scenario():
        player = FakePlayer()
        async with make_session(FakeRemoteBackend(), player) as session:
            session.load_book(["a", "b", "c", "d"], "book")
            bridge = TransportBridge(session)
            buffer = io.StringIO()
            with redirect_stdout(buffer):
                assert cli.apply_command(session, bridge, "p")
                await settle()
                assert session.is_playing
                assert cli.apply_command(session, bridge, "n")
                assert session.current_paragraph_index == 1
                assert cli.apply_command(session, bridge, "seek 75%")
                assert session.current_paragraph_index == 3
                assert cli.apply_command(session, bridge, "rate 2")
                assert session.rate == 2.0
                assert cli.apply_command(session, bridge, "rate fast")
                assert cli.apply_command(session, bridge, "status")
                assert not cli.apply_command(session, bridge, "q")
            output = buffer.getvalue()
            assert "Invalid rate: fast" in output
            assert "[4/4] 75.0%" in output

    asyncio.run(scenario())
