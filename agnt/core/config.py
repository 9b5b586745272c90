"""
Configuration management for AGNT.
Loads settings from environment variables and .env file.
"""

import os
import sys
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger

from agnt.core.errors import ConfigError

# Load environment variables from .env file
# Try: current directory, user config directory
_possible_env_paths = [
    Path.cwd() / ".env",
    Path.home() / ".agnt" / ".env",
]
for _env_path in _possible_env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break
else:
    load_dotenv()

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_OUTPUT_DIR = "output"
DATE_TIME_PLACEHOLDER = "[DATE_TIME]"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"true", "1", "yes"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Config:
    """Immutable configuration value set, read once at startup."""

    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    code_execution: bool = False
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    max_tokens: int = 4096
    system_prompt: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    mock_mode: bool = False

    # Logging
    log_level: str = "DEBUG"
    log_file: Path = Path("agnt-log.txt")

    @classmethod
    def from_env(cls, **overrides: Any) -> "Config":
        """
        Build the configuration from the environment.

        Args:
            **overrides: Values that take precedence (command-line flags).
                ``None`` means "not given" and is ignored.

        Returns:
            Config instance

        Raises:
            ConfigError: a numeric setting does not parse
        """
        config = cls(
            api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            model=os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL),
            code_execution=_env_flag("AGNT_CODE_EXECUTION"),
            output_dir=Path(os.getenv("AGNT_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)),
            max_tokens=_env_int("AGNT_MAX_TOKENS", 4096),
            system_prompt=os.getenv("AGNT_SYSTEM_PROMPT") or None,
            base_url=os.getenv("AGNT_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            mock_mode=_env_flag("MOCK_MODE"),
            log_level=os.getenv("LOG_LEVEL", "DEBUG"),
            log_file=Path(os.getenv("LOG_FILE", "agnt-log.txt")),
        )
        given = {k: v for k, v in overrides.items() if v is not None}
        if "output_dir" in given:
            given["output_dir"] = Path(given["output_dir"])
        return replace(config, **given)

    def validate(self) -> None:
        """Raise ConfigError if the client cannot run with these settings."""
        if not self.api_key and not self.mock_mode:
            raise ConfigError("ANTHROPIC_API_KEY must be set in the environment or a .env file")
        if self.max_tokens <= 0:
            raise ConfigError(f"AGNT_MAX_TOKENS must be positive, got {self.max_tokens}")

    def render_system_prompt(self, now: Optional[datetime] = None) -> Optional[str]:
        """System prompt with the date placeholder filled in."""
        if not self.system_prompt:
            return None
        now = now or datetime.now().astimezone()
        stamp = now.strftime("%A, %Y-%m-%d %H:%M:%S %Z").strip()
        return self.system_prompt.replace(DATE_TIME_PLACEHOLDER, stamp)

    def __repr__(self) -> str:
        key_status = "set" if self.api_key else "missing"
        return (
            f"Config(model={self.model}, api_key={key_status}, "
            f"code_execution={self.code_execution}, output_dir={self.output_dir}, "
            f"mock_mode={self.mock_mode})"
        )


def setup_logging(config: Config, console: bool = False) -> None:
    """
    Configure loguru sinks.

    The log file is truncated on every start. Console output goes to stderr
    and must stay off while the full-screen UI owns the terminal.
    """
    logger.remove()  # Remove default handler

    if console:
        logger.add(
            sys.stderr,
            level="WARNING",
            colorize=True,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        )

    logger.add(
        config.log_file,
        level=config.log_level,
        mode="w",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function} - {message}",
    )
    logger.info("=== AGNT logger initialized ===")
    logger.debug(repr(config))
