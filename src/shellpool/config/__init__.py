"""Configuration — Pydantic models for shellpool settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from shellpool.pool.hot import (
    COMPILING_MARKERS,
    HOT_TIMEOUT_COMPILING,
    HOT_TIMEOUT_NORMAL,
    MARKER_NULLIFIERS,
    HotClassifier,
)
from shellpool.pty.terminal import DEFAULT_SHELL


class ShellConfig(BaseModel):
    """How session shells are started.

    The shell must understand POSIX ``{ ...; }`` grouping, ``$?`` and
    ``exit``: commands are framed with them.
    """

    command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SHELL),
        description="Shell argv, started in a PTY for every new session",
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )


class PoolConfig(BaseModel):
    """Session pool and command tracking settings. Durations in seconds."""

    command_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Give up waiting for a command's end marker after this long",
    )
    hot_timeout_normal: float = Field(default=HOT_TIMEOUT_NORMAL, ge=0)
    hot_timeout_compiling: float = Field(
        default=HOT_TIMEOUT_COMPILING,
        ge=0,
        description="Hot window after a line that looks like a build phase",
    )
    compiling_markers: list[str] = Field(default_factory=lambda: list(COMPILING_MARKERS))
    marker_nullifiers: list[str] = Field(default_factory=lambda: list(MARKER_NULLIFIERS))
    max_sessions: int = Field(default=10, ge=1)

    def classifier(self) -> HotClassifier:
        return HotClassifier(
            phase_markers=tuple(self.compiling_markers),
            nullifiers=tuple(self.marker_nullifiers),
            active_cooldown=self.hot_timeout_compiling,
            normal_cooldown=self.hot_timeout_normal,
        )


class ShellPoolConfig(BaseModel):
    """Top-level shellpool configuration."""

    shell: ShellConfig = Field(default_factory=ShellConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellPoolConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SHELLPOOL_SHELL            - Shell command line (split like a shell would)
            SHELLPOOL_COMMAND_TIMEOUT  - Seconds to wait for a command to finish
            SHELLPOOL_MAX_SESSIONS     - Max live sessions in the registry
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        shell = config_data.get("shell", {})
        pool = config_data.get("pool", {})

        env_shell = os.environ.get("SHELLPOOL_SHELL")
        if env_shell:
            shell["command"] = shlex.split(env_shell)

        env_timeout = os.environ.get("SHELLPOOL_COMMAND_TIMEOUT")
        if env_timeout:
            pool["command_timeout"] = float(env_timeout)

        env_max_sessions = os.environ.get("SHELLPOOL_MAX_SESSIONS")
        if env_max_sessions:
            pool["max_sessions"] = int(env_max_sessions)

        if shell:
            config_data["shell"] = shell
        if pool:
            config_data["pool"] = pool

        return cls.model_validate(config_data)
