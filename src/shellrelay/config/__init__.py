"""Configuration: Pydantic models for shellrelay settings."""

from __future__ import annotations

import json
import locale
import os
import shlex
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def default_command() -> list[str]:
    """Interpreter argv that keeps the shell open after each command."""
    if os.name == "nt":
        return ["cmd", "/K"]
    return ["/bin/sh", "-i"]


def default_encoding() -> str:
    """Encoding console interpreters use on their pipes."""
    if os.name == "nt":
        return "oem"
    return locale.getpreferredencoding(False)


def split_command(line: str) -> list[str]:
    """Split an interpreter command line the way the host shell quotes it."""
    return shlex.split(line, posix=os.name != "nt")


def system_root() -> str:
    """Root of the filesystem that holds the system directory."""
    if os.name == "nt":
        system_dir = os.environ.get("SystemRoot", r"C:\Windows")
        drive, _ = os.path.splitdrive(system_dir)
        return (drive or "C:") + "\\"
    return "/"


class ShellConfig(BaseModel):
    """Settings for spawning and supervising the interpreter.

    ``command`` and ``cwd`` default to the platform interpreter and the
    system root when left unset.
    """

    command: list[str] | None = Field(
        default=None, description="Interpreter argv (default: cmd /K or /bin/sh -i)"
    )
    cwd: str | None = Field(
        default=None, description="Working directory (default: system root)"
    )
    encoding: str = Field(
        default_factory=default_encoding,
        description="Encoding of the interpreter's streams",
    )
    newline: str = Field(
        default=os.linesep, description="Line terminator written after each command"
    )
    read_size: int = Field(default=4096, gt=0, description="Max bytes per stream read")
    kill_timeout: float = Field(
        default=2.0, ge=0, description="Seconds to wait for a killed interpreter to exit"
    )
    max_respawns: int | None = Field(
        default=5,
        ge=0,
        description=(
            "Consecutive automatic respawns allowed before the session gives up. "
            "Reset by every successfully submitted command. None = unbounded."
        ),
    )
    spawn_attempts: int = Field(
        default=3, ge=1, description="Spawn attempts per automatic respawn"
    )
    spawn_backoff_max: float = Field(
        default=5.0, ge=0, description="Upper bound (seconds) for respawn backoff"
    )

    def resolved_command(self) -> list[str]:
        return list(self.command) if self.command else default_command()

    def resolved_cwd(self) -> str:
        return self.cwd or system_root()

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SHELLRELAY_COMMAND       - Interpreter command line (shell-quoted)
            SHELLRELAY_CWD           - Working directory
            SHELLRELAY_ENCODING      - Stream encoding
            SHELLRELAY_MAX_RESPAWNS  - Respawn cap ("none" for unbounded)
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_command = os.environ.get("SHELLRELAY_COMMAND")
        if env_command:
            config_data["command"] = split_command(env_command)

        env_cwd = os.environ.get("SHELLRELAY_CWD")
        if env_cwd:
            config_data["cwd"] = env_cwd

        env_encoding = os.environ.get("SHELLRELAY_ENCODING")
        if env_encoding:
            config_data["encoding"] = env_encoding

        env_max_respawns = os.environ.get("SHELLRELAY_MAX_RESPAWNS")
        if env_max_respawns:
            if env_max_respawns.lower() == "none":
                config_data["max_respawns"] = None
            else:
                config_data["max_respawns"] = int(env_max_respawns)

        return cls.model_validate(config_data)
