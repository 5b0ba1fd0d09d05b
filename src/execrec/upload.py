"""Transcript upload to S3 through the ``aws`` CLI."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from execrec.config import UploadConfig
from execrec.errors import UploadError

logger = logging.getLogger(__name__)


class CLIRunError(UploadError):
    """The upload CLI ran but exited non-zero (worth retrying)."""


class S3Uploader:
    """Copies a finished transcript to ``s3://<bucket>/<prefix>/<basename>``.

    The CLI's stdout is discarded and its stderr captured so a failure
    can be shown to the operator. A missing CLI fails immediately; a CLI
    that exits non-zero is retried with exponential backoff.
    """

    def __init__(self, config: UploadConfig, wait: wait_base | None = None) -> None:
        self.config = config
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=10)

    def key_for(self, path: str) -> str:
        return f"{self.config.key_prefix}/{os.path.basename(path)}"

    def destination(self, path: str) -> str:
        return f"s3://{self.config.bucket}/{self.key_for(path)}"

    def build_command(self, path: str) -> list[str]:
        cli = shutil.which(self.config.cli) or self.config.cli
        args = [cli]
        if self.config.endpoint:
            args += ["--endpoint-url", self.config.endpoint]
        args += ["s3", "cp", path, self.destination(path)]
        return args

    def upload(self, path: str) -> str:
        """Upload ``path`` and return the remote destination.

        Raises:
            UploadError: the CLI is not installed, or every attempt failed.
        """
        if shutil.which(self.config.cli) is None:
            raise UploadError(f"{self.config.cli} cli is not installed")

        command = self.build_command(path)
        retrying = Retrying(
            retry=retry_if_exception_type(CLIRunError),
            stop=stop_after_attempt(self.config.attempts),
            wait=self._wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self._run(command)

        destination = self.destination(path)
        logger.info("Uploaded %s to %s", path, destination)
        return destination

    def _run(self, command: list[str]) -> None:
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise UploadError(f"failed to run {command[0]}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise CLIRunError(
                f"{self.config.cli} exited with status {result.returncode}",
                stderr=stderr,
            )
