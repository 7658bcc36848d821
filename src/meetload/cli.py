from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meetload",
        description=(
            "Multi-participant latency test for a real-time meeting transcription and translation service. "
            "Unset options fall back to the scenario file, then MEETLOAD_* environment variables."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML scenario file; its keys mirror the long option names (with underscores).",
    )
    parser.add_argument(
        "--token",
        dest="access_token",
        help="Access token sent to both services. Defaults to MEETLOAD_ACCESS_TOKEN.",
    )
    parser.add_argument(
        "--voice-gateway-uri",
        help="Base websocket URI of the voice gateway; the meeting id is appended to it.",
    )
    parser.add_argument(
        "--text-retriever-uri",
        help="STOMP endpoint of the text retriever.",
    )
    parser.add_argument(
        "--audio",
        dest="audio_files",
        type=Path,
        action="append",
        default=[],
        help="16-bit PCM WAV file streamed by a speaker. Repeat to rotate files across rooms.",
    )
    parser.add_argument(
        "--tone-seconds",
        type=float,
        help="Stream a synthetic sine tone of this length when no audio file is given.",
    )
    parser.add_argument(
        "--rooms",
        type=int,
        help="Number of independent meeting rooms, each with one concurrent speaker.",
    )
    parser.add_argument(
        "--participants-per-room",
        type=int,
        help="Participants per room, including the speaker (minimum 2).",
    )
    parser.add_argument(
        "--translation-listeners",
        type=int,
        help="Listeners per room that also subscribe to translations.",
    )
    parser.add_argument(
        "--language",
        help="Transcription language of speakers and listeners (e.g., ko, en).",
    )
    parser.add_argument(
        "--translation-language",
        help="Language of the translation listeners.",
    )
    parser.add_argument(
        "--meeting-prefix",
        help="Prefix used when generating meeting ids.",
    )
    parser.add_argument(
        "--sockjs",
        dest="use_sockjs",
        action="store_true",
        default=None,
        help="Connect to the text retriever through SockJS websocket transport.",
    )
    parser.add_argument(
        "--await-receipts",
        action="store_true",
        default=None,
        help="Treat a subscription as active only once the broker sends a RECEIPT for it.",
    )
    parser.add_argument(
        "--ready-timeout",
        type=float,
        help="Seconds all participants have to complete their handshakes.",
    )
    parser.add_argument(
        "--quiet-period",
        type=float,
        help="Seconds without any result before a batch counts as finished.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between result queue polls.",
    )
    parser.add_argument(
        "--initial-delay",
        type=float,
        help="Seconds to wait after streaming before the first poll.",
    )
    parser.add_argument(
        "--quiescence-timeout",
        type=float,
        help="Upper bound in seconds on waiting for results to settle.",
    )
    parser.add_argument(
        "--cleanup-grace",
        type=float,
        help="Seconds to wait before closing connections after a successful batch.",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        help="Number of times to run the scenario with fresh participants.",
    )
    parser.add_argument(
        "--iteration-pause",
        type=float,
        help="Pause in seconds between iterations.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Append a timestamped log of the run to this file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Write the run summary as JSON into this directory.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Print per-message debug output.",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)
