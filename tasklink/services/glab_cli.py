"""Subprocess wrapper for the glab issue-tracker CLI"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class GlabCliError(RuntimeError):
    """glab invocation failed, with a hint about whether the command may have taken effect."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out


@dataclass
class CliResult:
    returncode: int
    stdout: str
    stderr: str


def escape_shell_arg(value: str) -> str:
    """Quote one argument so it survives a POSIX shell unchanged."""
    return shlex.quote(str(value))


def format_command(args: list[str], *, limit: int = 200) -> str:
    """Shell-quoted rendition of an argv list, truncated for logs."""
    rendered = " ".join(escape_shell_arg(a) for a in args)
    if len(rendered) > limit:
        return rendered[:limit] + "..."
    return rendered


class GlabCli:
    """Run glab subcommands with a hard timeout.

    Arguments go to the process as an argv list, so no shell ever sees them.
    """

    def __init__(
        self,
        binary: str = "glab",
        *,
        timeout_s: float = 60.0,
        gitlab_url: str | None = None,
        token: str | None = None,
    ) -> None:
        self.binary = binary
        self.timeout_s = timeout_s
        self.gitlab_url = gitlab_url
        self.token = token

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        if self.gitlab_url:
            host = urlparse(self.gitlab_url).netloc or self.gitlab_url
            env.setdefault("GITLAB_HOST", host)
        if self.token:
            env.setdefault("GITLAB_TOKEN", self.token)
        # Keep output plain and non-interactive.
        env["NO_COLOR"] = "1"
        env["NO_PROMPT"] = "1"
        return env

    def run(self, args: list[str]) -> CliResult:
        """Run `glab <args>`; raise GlabCliError unless it exits 0."""
        argv = [self.binary, *args]
        logger.info(f"Running: {format_command(argv)}")
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                env=self._env(),
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise GlabCliError(
                f"glab timed out after {self.timeout_s}s: {format_command(argv, limit=80)}",
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
                timed_out=True,
            ) from e
        except FileNotFoundError as e:
            raise GlabCliError(f"glab binary not found: {self.binary}") from e

        if completed.returncode != 0:
            raise GlabCliError(
                f"glab exited with {completed.returncode}: {(completed.stderr or '').strip()[:300]}",
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
        return CliResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
