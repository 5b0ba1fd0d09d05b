"""Configuration: Pydantic models for execrec settings."""

from __future__ import annotations

import os
import tempfile
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "KUBECTL_EXECREC_"


def default_log_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "kubectl-execrec")


class UploadConfig(BaseModel):
    """Remote transcript upload via the ``aws`` CLI.

    Upload is enabled only when ``bucket`` is non-empty.
    """

    bucket: str = Field(default="", description="Target S3 bucket")
    endpoint: str = Field(default="", description="Custom --endpoint-url")
    cli: str = Field(default="aws", description="Upload-capable CLI on PATH")
    key_prefix: str = Field(default="logs")
    attempts: int = Field(default=3, ge=1, description="Total upload tries")

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)


class SessionConfig(BaseModel):
    """Remote-exec and relay settings."""

    exec_command: str = Field(default="kubectl")
    exec_subcommand: str = Field(default="exec")
    chunk_size: int = Field(default=4096, gt=0, description="Relay read size")
    drain_timeout: float = Field(
        default=2.0,
        gt=0,
        description="Seconds to wait for trailing output after the child exits",
    )
    forward_resize: bool = Field(
        default=True, description="Propagate SIGWINCH to the PTY during the session"
    )


class ExecrecConfig(BaseModel):
    """Top-level execrec configuration."""

    log_dir: str = Field(default_factory=default_log_dir)
    session: SessionConfig = Field(default_factory=SessionConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    debug: bool = Field(default=False, description="Enable debug diagnostics")
    diagnostics_file: str | None = Field(
        default=None, description="Write diagnostics here instead of stderr"
    )

    @classmethod
    def load(cls) -> ExecrecConfig:
        """Load config from env vars (and a ``.env`` file), or defaults.

        Env vars:
            KUBECTL_EXECREC_S3_BUCKET        - Upload bucket; enables upload when set
            KUBECTL_EXECREC_S3_ENDPOINT      - Custom endpoint for the upload CLI
            KUBECTL_EXECREC_LOG_DIR          - Transcript directory
            KUBECTL_EXECREC_KUBECTL          - Remote-exec executable (default: kubectl)
            KUBECTL_EXECREC_UPLOAD_ATTEMPTS  - Upload tries before giving up
            KUBECTL_EXECREC_FORWARD_RESIZE   - "0"/"false" disables live resize
            KUBECTL_EXECREC_DEBUG            - "1"/"true" enables debug diagnostics
            KUBECTL_EXECREC_DIAGNOSTICS      - Diagnostics log file
        """
        # Shell exports win over .env so a one-off bucket override works.
        load_dotenv(find_dotenv(usecwd=True), override=False)

        config_data: dict[str, Any] = {}
        upload: dict[str, Any] = {}
        session: dict[str, Any] = {}

        bucket = _env("S3_BUCKET")
        if bucket:
            upload["bucket"] = bucket

        endpoint = _env("S3_ENDPOINT")
        if endpoint:
            upload["endpoint"] = endpoint

        attempts = _env("UPLOAD_ATTEMPTS")
        if attempts:
            upload["attempts"] = int(attempts)

        log_dir = _env("LOG_DIR")
        if log_dir:
            config_data["log_dir"] = log_dir

        kubectl = _env("KUBECTL")
        if kubectl:
            session["exec_command"] = kubectl

        forward_resize = _env("FORWARD_RESIZE")
        if forward_resize:
            session["forward_resize"] = _truthy(forward_resize)

        debug = _env("DEBUG")
        if debug:
            config_data["debug"] = _truthy(debug)

        diagnostics = _env("DIAGNOSTICS")
        if diagnostics:
            config_data["diagnostics_file"] = diagnostics

        if upload:
            config_data["upload"] = upload
        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)


def _env(name: str) -> str:
    return os.environ.get(ENV_PREFIX + name, "").strip()


def _truthy(value: str) -> bool:
    return value.lower() not in ("0", "false", "no", "off", "")
