"""
Command-line reader.

Reads a UTF-8 text document (one paragraph per non-blank line), resumes at the
stored position and plays it paragraph by paragraph. While playing, transport
commands are read from stdin.
"""

from __future__ import annotations

import argparse
import asyncio
import hashlib
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import requests

from . import progress
from .backend_base import AudioPlayer
from .cache import RenderCache
from .config import AppConfig, load_config
from .errors import BackendUnavailableError
from .factory import BackendSelector, wants_remote
from .library_state import StateStore
from .logging_utils import configure_logging, create_event_logger
from .session import PlaybackSession
from .state import PlaybackState
from .stats import ListeningStats
from .transport import CommandStatus, LoggingNowPlayingPublisher, TransportBridge
from .voice_catalog import PRESET_VOICES, fetch_voices, fuzzy_match

logger = logging.getLogger(__name__)

COMMAND_HELP = (
    "Commands: p=play/pause, n=next, b=back, seek <percent>, "
    "rate <multiplier>, s=status, q=quit"
)


def create_parser() -> argparse.ArgumentParser:
    """Create the top-level argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="readaloud",
        description=(
            "Read a text document aloud, one paragraph at a time, using Google\n"
            "Text-to-Speech or the system speech command."
        ),
    )
    parser.add_argument(
        "path",
        nargs="?",
        help="UTF-8 text file to read. When omitted, paragraphs are read from STDIN.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to an optional configuration file (readaloud.toml).",
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Google Cloud API key (overrides environment and config file).",
    )
    parser.add_argument(
        "--engine",
        choices=("remote", "local"),
        help="Preferred synthesis engine (default remote).",
    )
    parser.add_argument("--voice", help="Google voice name or fuzzy-matched preset.")
    parser.add_argument("--language", help="Language code (default en-US).")
    parser.add_argument("--local-voice", dest="local_voice", help="Voice for the speech command.")
    parser.add_argument(
        "--local-command",
        dest="local_command",
        help="Speech command to use offline (say, espeak-ng, espeak).",
    )
    parser.add_argument("--rate", type=float, help="Playback rate multiplier (0.5..3.0).")
    parser.add_argument(
        "--lookahead",
        type=int,
        help="Paragraphs to render ahead of the current one (default 2).",
    )
    parser.add_argument(
        "--start",
        type=int,
        metavar="N",
        help="Start at paragraph N (1-based) instead of the saved position.",
    )
    parser.add_argument("--audio-dir", dest="audio_dir", help="Directory for rendered audio.")
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        help="Directory for saved positions, rate and statistics (default ~/.readaloud).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        metavar="MS",
        help="Network timeout in milliseconds (default 10000).",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Emit logs as JSON lines.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the reading plan without synthesizing anything.",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use an offline tone generator in place of Google Text-to-Speech.",
    )
    parser.add_argument(
        "--no-interactive",
        dest="interactive",
        action="store_false",
        help="Play to the end without reading commands from STDIN.",
    )
    parser.add_argument(
        "--list-voices",
        action="store_true",
        help="List available voices and exit.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show listening statistics and exit.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="readaloud 0.1.0",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential log output.",
    )
    return parser


def split_paragraphs(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def book_id_for(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _resolve_input_text(args: argparse.Namespace) -> str:
    if args.path:
        path = Path(args.path)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SystemExit(f"Failed to read file '{path}': {exc}") from exc

    if not sys.stdin.isatty():
        try:
            return sys.stdin.read()
        except OSError:
            logger.debug("stdin read failed; returning empty input.")
    return ""


def format_status(session: PlaybackSession) -> str:
    total = session.total_paragraphs
    position = min(session.current_paragraph_index + 1, total)
    line = (
        f"[{position}/{total}] {session.percentage_string} | "
        f"elapsed {session.time_elapsed_string} | remaining {session.time_remaining_string} | "
        f"{session.rate:.2f}x | {session.state.value}"
    )
    if session.error_message:
        line += f" | {session.error_message}"
    return line


def apply_command(session: PlaybackSession, bridge: TransportBridge, line: str) -> bool:
    """Apply one interactive command. Returns False when the user asked to quit."""
    parts = line.strip().split()
    if not parts:
        return True
    verb, rest = parts[0].lower(), parts[1:]

    if verb in {"q", "quit", "exit"}:
        return False
    if verb in {"p", "play", "pause", "toggle"}:
        command = {"play": "play", "pause": "pause"}.get(verb, "toggle")
        if bridge.handle(command) is CommandStatus.NO_SUCH_CONTENT:
            print("Nothing to play.")
    elif verb in {"n", "next"}:
        bridge.handle("next")
    elif verb in {"b", "back", "prev", "previous"}:
        bridge.handle("previous")
    elif verb == "seek" and rest:
        try:
            session.seek(float(rest[0].rstrip("%")) / 100.0)
        except ValueError:
            print(f"Invalid percentage: {rest[0]}")
    elif verb == "rate" and rest:
        try:
            applied = session.set_rate(float(rest[0]))
        except ValueError:
            print(f"Invalid rate: {rest[0]}")
        else:
            if not applied:
                print("Rate will apply from the next paragraph.")
    elif verb in {"s", "status"}:
        print(format_status(session))
    else:
        print(COMMAND_HELP)
    return True


def _create_player() -> AudioPlayer | None:
    # PortAudio is loaded on import; hosts without it can still use local speech.
    try:
        from .playback import SoundDevicePlayer
    except OSError as exc:
        logger.warning("Audio output unavailable: %s", exc)
        return None
    return SoundDevicePlayer()


def _print_dry_run(paragraphs: Sequence[str], config: AppConfig, start_index: int) -> None:
    print("Dry run mode. No synthesis performed.")
    if wants_remote(config):
        engine = "google (simulated)" if config.simulate else f"google voice {config.voice_id}"
    else:
        engine = f"local speech ({config.local_command or 'auto-detect'})"
    print(f"Engine: {engine} | Rate: {config.rate:.2f}x | Lookahead: {config.lookahead}")
    total = progress.total_seconds(paragraphs, config.rate, config.chars_per_second)
    print(
        f"Paragraphs: {len(paragraphs)} total | starting at {start_index + 1} | "
        f"estimated duration {progress.format_duration(total)}"
    )
    for idx, paragraph in enumerate(paragraphs, start=1):
        if len(paragraph) > config.max_paragraph_chars:
            print(
                f"  {idx}. length={len(paragraph)} chars exceeds limit "
                f"{config.max_paragraph_chars} and will be skipped"
            )


def _render_voice_list(config: AppConfig) -> int:
    if not config.has_valid_credential:
        print("Preset voices (set GOOGLE_TTS_API_KEY for the full catalog):")
        voices = PRESET_VOICES
    else:
        try:
            voices = fetch_voices(
                config.api_key,
                cache_dir=config.resolved_state_dir(),
                language_code=config.language_code,
            )
        except requests.RequestException as exc:
            logger.error("Voice listing failed: %s", exc)
            print("readaloud: Could not fetch voices from Google Text-to-Speech.")
            return 3
        print("Available voices:")

    if not voices:
        print("No voices available.")
        return 0
    for voice in voices:
        languages = ", ".join(voice.get("language_codes") or [])
        print(f"- {voice['voice_id']}: {voice['name']} ({languages})")
    return 0


def _render_stats(stats: ListeningStats) -> None:
    summary = stats.summary()
    print("Listening time:")
    for label in ("today", "week", "month", "year", "ever"):
        print(f"  {label:<6} {summary[label]}")


async def _command_loop(
    session: PlaybackSession,
    bridge: TransportBridge,
    readline: Callable[[], str],
) -> None:
    print(COMMAND_HELP)
    while True:
        line = await asyncio.to_thread(readline)
        if line == "":
            return
        if not apply_command(session, bridge, line):
            return


async def _run_player(
    paragraphs: Sequence[str],
    book_id: str,
    title: str,
    config: AppConfig,
    store: StateStore,
    stats: ListeningStats,
    *,
    start_index: int,
    interactive: bool,
) -> int:
    event_logger = create_event_logger(logging.getLogger("readaloud"), config.log_format)
    cache = RenderCache(
        Path(config.audio_dir) if config.audio_dir else None,
        event_logger=event_logger,
    )
    session = PlaybackSession(
        BackendSelector(config),
        player=_create_player(),
        cache=cache,
        settings=store,
        stats=stats,
        progress_sink=store.update_progress,
        publisher=LoggingNowPlayingPublisher(event_logger),
        lookahead=config.lookahead,
        max_paragraph_chars=config.max_paragraph_chars,
        chars_per_second=config.chars_per_second,
        event_logger=event_logger,
    )

    settled = asyncio.Event()

    def on_change(snapshot) -> None:
        if snapshot.state is PlaybackState.FINISHED:
            print("Finished.")
            settled.set()
        elif snapshot.error_message and not snapshot.is_session_active:
            print(f"readaloud: {snapshot.error_message}")
            settled.set()

    async with session:
        session.subscribe(on_change)
        session.load_book(paragraphs, book_id, start_index, title=title)
        session.play()
        if interactive:
            await _command_loop(session, TransportBridge(session), sys.stdin.readline)
        else:
            await settled.wait()
        error = session.error_message

    return 3 if error and not interactive else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point invoked by the `readaloud` console script."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose, args.quiet)
    logger.info("readaloud starting up.")
    try:
        config = load_config(args)
    except ValueError as exc:
        print(f"readaloud: invalid configuration - {exc}")
        return 2
    logger.debug("Loaded configuration: %s", config)

    if args.voice and "-" not in config.voice_id:
        # Bare names such as "journey" resolve against the presets.
        matched = fuzzy_match(config.voice_id, PRESET_VOICES)
        if matched is not None:
            config.voice_id = matched

    state_dir = config.resolved_state_dir()

    if args.list_voices:
        return _render_voice_list(config)

    if args.stats:
        _render_stats(ListeningStats(state_dir))
        return 0

    text = _resolve_input_text(args)
    paragraphs = split_paragraphs(text)
    if not paragraphs:
        parser.print_help()
        return 2

    book_id = book_id_for(text)
    store = StateStore(state_dir, default_rate=config.rate)
    if args.rate is not None:
        store.set_rate(config.rate)

    if args.start is not None:
        start_index = args.start - 1
    else:
        start_index = store.last_index(book_id) or 0
    start_index = min(max(start_index, 0), len(paragraphs) - 1)

    if args.dry_run:
        _print_dry_run(paragraphs, config, start_index)
        return 0

    title = Path(args.path).stem if args.path else "stdin"
    interactive = args.interactive and args.path is not None and sys.stdin.isatty()

    try:
        return asyncio.run(
            _run_player(
                paragraphs,
                book_id,
                title,
                config,
                store,
                ListeningStats(state_dir),
                start_index=start_index,
                interactive=interactive,
            )
        )
    except BackendUnavailableError as exc:
        logger.error("No synthesis backend: %s", exc)
        print(f"readaloud: {exc}")
        return 2
    except ValueError as exc:
        logger.error("Backend configuration error: %s", exc)
        print(f"readaloud: {exc}")
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover - allows `python cli.py`
    raise SystemExit(main())
