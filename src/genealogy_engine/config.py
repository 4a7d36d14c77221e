from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

BACKENDS = ("sqlite", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _s(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _b(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _i(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class EngineConfig:
    scope: str = "genealogy-stable-v2"
    backend: str = "sqlite"
    db_path: Path = Path("./data/genealogy.db")
    state_path: Path = Path("./data/local_state.json")

    # Validate caller-supplied generations and reject ancestry cycles on write
    strict_generations: bool = False

    # tenacity attempts for the initial fetch
    fetch_attempts: int = 3

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.scope:
            raise ConfigurationError("GENEALOGY_SCOPE must not be empty")
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"GENEALOGY_BACKEND must be one of {', '.join(BACKENDS)}, got {self.backend!r}"
            )
        if self.fetch_attempts < 1:
            raise ConfigurationError("GENEALOGY_FETCH_ATTEMPTS must be at least 1")
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"GENEALOGY_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")


def load_config(env_file: str | Path | None = None) -> EngineConfig:
    """Build the configuration from the environment (and ``.env`` if present).

    Raises:
        ConfigurationError: A variable is present but malformed.
    """
    load_dotenv(env_file)
    return EngineConfig(
        scope=_s("GENEALOGY_SCOPE", EngineConfig.scope),
        backend=_s("GENEALOGY_BACKEND", EngineConfig.backend).lower(),
        db_path=Path(_s("GENEALOGY_DB_PATH", str(EngineConfig.db_path))),
        state_path=Path(_s("GENEALOGY_STATE_PATH", str(EngineConfig.state_path))),
        strict_generations=_b("GENEALOGY_STRICT_GENERATIONS", EngineConfig.strict_generations),
        fetch_attempts=_i("GENEALOGY_FETCH_ATTEMPTS", EngineConfig.fetch_attempts),
        log_level=_s("GENEALOGY_LOG_LEVEL", EngineConfig.log_level).upper(),
    )
