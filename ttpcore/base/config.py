# ============================================================================
# ttpcore/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# All tunables for the engine live here: dialogue timeouts, the shell used to
# run commands, teardown timing, where converted procedures are written, and
# how logging behaves.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: configuration is immutable once built
# 2. Environment variables: TTPCORE_* overrides (e.g., TTPCORE_CEILING_TIMEOUT=30)
# 3. Explicit injection: engine and bridge code receive config objects as
#    arguments; only the CLI touches the process-wide get_config()
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class TeardownPolicy(str, Enum):
    # Drain the whole ledger once, after the forward pass
    END_OF_RUN = "end_of_run"
    # Drain after every step's execute (success or failure)
    IMMEDIATE = "immediate"


# ============================================================================
# Engine Configuration
# ============================================================================
# Controls how steps spawn processes and how long dialogues may take.

@dataclass(frozen=True)
class EngineConfig:
    # Shell used as `<shell> -c <command>` for every step and cleanup
    shell: str = "/bin/sh"

    # Upper bound for a whole scripted dialogue (and for plain commands)
    ceiling_timeout: float = 60.0

    # Optional bound for a single prompt wait; None means only the ceiling applies
    prompt_timeout: Optional[float] = None

    # Seconds between SIGTERM and SIGKILL when tearing a process group down
    terminate_grace: float = 2.0

    # Terminal geometry advertised to the child (some tools wrap output on it)
    terminal_rows: int = 24
    terminal_cols: int = 80

    # When cleanup actions run
    teardown_policy: TeardownPolicy = TeardownPolicy.END_OF_RUN


# ============================================================================
# File Storage Configuration
# ============================================================================

@dataclass(frozen=True)
class StorageConfig:
    # Base directory for engine data (logs, converted procedures)
    base_dir: Path = field(default_factory=lambda: Path.home() / ".ttpforge")

    # Relative location of converted Atomic Red Team procedures
    atomic_dir: str = "repos/forgearmory/ttps/art"

    @property
    def atomic_output_path(self) -> Path:
        return self.base_dir / self.atomic_dir


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = False
    file_name: str = "ttpcore.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass
class TTPConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False

    @classmethod
    def from_env(cls) -> "TTPConfig":
        prompt_timeout = os.getenv("TTPCORE_PROMPT_TIMEOUT")
        engine = EngineConfig(
            shell=os.getenv("TTPCORE_SHELL", "/bin/sh"),
            ceiling_timeout=float(os.getenv("TTPCORE_CEILING_TIMEOUT", "60")),
            prompt_timeout=float(prompt_timeout) if prompt_timeout else None,
            terminate_grace=float(os.getenv("TTPCORE_TERMINATE_GRACE", "2")),
            teardown_policy=TeardownPolicy(os.getenv("TTPCORE_TEARDOWN_POLICY", "end_of_run")),
        )

        base_dir = Path(os.getenv("TTPCORE_DATA_DIR", str(Path.home() / ".ttpforge")))
        storage = StorageConfig(base_dir=base_dir)

        debug = os.getenv("TTPCORE_DEBUG", "false").lower() == "true"
        log = LogConfig(
            level=os.getenv("TTPCORE_LOG_LEVEL", "DEBUG" if debug else "INFO"),
            file_enabled=os.getenv("TTPCORE_LOG_FILE", "false").lower() == "true",
        )

        return cls(engine=engine, storage=storage, log=log, debug=debug)


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[TTPConfig] = None


def get_config() -> TTPConfig:
    """
    Get the process-wide configuration, loading it from the environment on first use.
    """
    global _config
    if _config is None:
        _config = TTPConfig.from_env()
    return _config


def set_config(config: TTPConfig) -> None:
    """Replace the process-wide configuration (mainly used for testing)."""
    global _config
    _config = config


def setup_logging(config: Optional[TTPConfig] = None) -> None:
    """
    Configure Python's logging system based on our settings.

    Call this once at application startup.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        cfg.storage.base_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            cfg.storage.base_dir / cfg.log.file_name,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper()),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
