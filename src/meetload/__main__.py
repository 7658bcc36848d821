from __future__ import annotations

import sys
from typing import List, Sequence

from rich.console import Console

from .audio.files import load_audio, synthesize_tone
from .cli import parse_args
from .config import LoadTestConfig, build_config
from .errors import ConfigError
from .logging_utils import RichLogger
from .reporting import print_summary
from .runner import ScenarioRunner, save_results


def load_buffers(config: LoadTestConfig, logger: RichLogger) -> List[bytes]:
    buffers: List[bytes] = []
    for path in config.audio_files:
        audio = load_audio(path)
        if not audio.is_gateway_format:
            logger.log_warning(
                f"{path} is {audio.sample_rate} Hz / {audio.channels} ch; the gateway expects 16000 Hz mono"
            )
        logger.log_text(f"Loaded {path} ({audio.duration:.1f}s)")
        buffers.append(audio.data)
    if not buffers:
        buffers.append(synthesize_tone(config.tone_seconds))
        logger.log_text(f"Using a synthetic {config.tone_seconds:g}s tone")
    return buffers


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    console = Console()

    try:
        config = build_config(args)
        logger = RichLogger(log_file=config.log_file, console=console, verbose=bool(config.verbose))
        buffers = load_buffers(config, logger)
    except (ConfigError, FileNotFoundError, ValueError) as error:
        console.print(f"[red]Configuration error:[/red] {error}")
        return 2

    runner = ScenarioRunner(config, logger, buffers)
    try:
        summary = runner.run()
    except KeyboardInterrupt:
        logger.log_panel("Interrupted, connections closed.", "ACTION", "magenta3")
        return 130

    print_summary(console, summary)
    if config.output_dir is not None:
        destination = save_results(summary, config, config.output_dir)
        logger.log_panel(f"Results saved to {destination}", "LOG", "bold green")

    return 0 if summary.passed else 1


if __name__ == "__main__":
    sys.exit(main())
