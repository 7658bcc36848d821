from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

TOKEN_ENV = "MEETLOAD_ACCESS_TOKEN"
VOICE_GATEWAY_ENV = "MEETLOAD_VOICE_GATEWAY_URI"
TEXT_RETRIEVER_ENV = "MEETLOAD_TEXT_RETRIEVER_URI"


@dataclass(slots=True)
class LoadTestConfig:
    """Container for the scenario shape, service endpoints and timing constants."""

    access_token: str
    voice_gateway_uri: str
    text_retriever_uri: str
    audio_files: List[Path] = field(default_factory=list)
    tone_seconds: float = 0.0
    rooms: int = 1
    participants_per_room: int = 2
    translation_listeners: int = 0
    language: str = "ko"
    translation_language: str = "en"
    meeting_prefix: str = "meeting"
    use_sockjs: bool = False
    await_receipts: bool = False
    open_timeout: float = 10.0
    ready_timeout: float = 15.0
    chunk_interval: float = 0.032
    settle_delay: float = 1.0
    poll_interval: float = 0.1
    initial_delay: float = 3.0
    quiet_period: float = 10.0
    quiescence_timeout: float = 120.0
    cleanup_grace: float = 5.0
    iterations: int = 1
    iteration_pause: float = 1.0
    log_file: Optional[Path] = None
    output_dir: Optional[Path] = None
    verbose: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "access_token":
                value = "***" if value else ""
            elif isinstance(value, Path):
                value = str(value)
            elif isinstance(value, list):
                value = [str(v) for v in value]
            data[item.name] = value
        return data

    def validate(self) -> None:
        if not self.access_token:
            raise ConfigError(
                f"{TOKEN_ENV} environment variable not set. Configure it in your environment, .env file or --token."
            )
        for name in ("voice_gateway_uri", "text_retriever_uri"):
            if not getattr(self, name):
                raise ConfigError(f"{name} must be configured")
        if self.rooms < 1:
            raise ConfigError("rooms must be at least 1")
        if self.participants_per_room < 2:
            raise ConfigError("participants_per_room must be at least 2 (one speaker and one listener)")
        if not 0 <= self.translation_listeners < self.participants_per_room:
            raise ConfigError("translation_listeners must be between 0 and participants_per_room - 1")
        if self.iterations < 1:
            raise ConfigError("iterations must be at least 1")
        for name in ("ready_timeout", "poll_interval", "quiet_period", "quiescence_timeout", "open_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        for name in ("chunk_interval", "settle_delay", "initial_delay", "cleanup_grace", "iteration_pause"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if not self.audio_files and self.tone_seconds <= 0:
            raise ConfigError("Provide at least one audio file or a positive tone duration")


def load_environment() -> None:
    """Load environment variables from .env files if present."""

    load_dotenv(override=False)


def load_scenario(path: Path) -> Dict[str, Any]:
    """Load a YAML scenario file."""
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Scenario file not found: {path}")
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Scenario file {path} must contain a mapping")
    known = {item.name for item in fields(LoadTestConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(unknown)}")
    return data


def build_config(args) -> LoadTestConfig:
    """Create a :class:`LoadTestConfig` from a scenario file, the environment and CLI arguments.

    Precedence, lowest first: defaults, YAML scenario, environment, CLI flags.
    """

    load_environment()
    scenario: Dict[str, Any] = {}
    if getattr(args, "config", None):
        scenario = load_scenario(Path(args.config))

    env = {
        "access_token": os.getenv(TOKEN_ENV),
        "voice_gateway_uri": os.getenv(VOICE_GATEWAY_ENV),
        "text_retriever_uri": os.getenv(TEXT_RETRIEVER_ENV),
    }

    values: Dict[str, Any] = {}
    for item in fields(LoadTestConfig):
        name = item.name
        value = getattr(args, name, None)
        if value is None or value == []:
            value = env.get(name)
        if value is None:
            value = scenario.get(name)
        if value is not None:
            values[name] = value

    values.setdefault("access_token", "")
    values.setdefault("voice_gateway_uri", "")
    values.setdefault("text_retriever_uri", "")

    values["audio_files"] = [Path(p).expanduser() for p in values.get("audio_files", [])]
    for name in ("log_file", "output_dir"):
        if values.get(name) is not None:
            values[name] = Path(values[name]).expanduser()

    config = LoadTestConfig(**values)
    config.validate()

    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
    return config
