# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Typed external commands and the dry-run/verbose/retry execution policy."""

from __future__ import annotations

import json
import shlex
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, NamedTuple

import sh
from tenacity import RetryCallState, RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from asm_installer import console, logger
from asm_installer.constants import CREDENTIALS_MAX_ATTEMPTS, RETRY_BACKOFF_SECONDS
from asm_installer.errors import ExternalOperationError


class OperationKind(Enum):
    """Which external surface a command talks to."""

    LOCAL = "local"
    PROJECT = "project"
    CLUSTER = "cluster"


@dataclass(frozen=True)
class Command:
    """A single external operation.

    Attributes:
        program: Executable name or absolute path.
        args: Arguments passed to the program.
        kind: External surface the command targets.
        fresh_credentials: Refresh cluster credentials before each retry.
        read_only: Command changes nothing outside the workspace; it runs in dry-run too.
        stdin: Text fed to the program's standard input; never printed.
    """

    program: str
    args: tuple[str, ...] = ()
    kind: OperationKind = OperationKind.LOCAL
    fresh_credentials: bool = False
    read_only: bool = False
    stdin: str | None = None

    @classmethod
    def gcloud(cls, *args: str, read_only: bool = False) -> Command:
        """Project-level gcloud call."""
        return cls("gcloud", args, OperationKind.PROJECT, read_only=read_only)

    @classmethod
    def gcloud_cluster(cls, *args: str, read_only: bool = False) -> Command:
        """``gcloud container ...`` call against the cluster management surface."""
        return cls("gcloud", ("container", *args), OperationKind.CLUSTER,
                   fresh_credentials=True, read_only=read_only)

    @classmethod
    def kubectl(cls, *args: str, stdin: str | None = None, read_only: bool = False) -> Command:
        return cls("kubectl", args, OperationKind.CLUSTER,
                   fresh_credentials=True, read_only=read_only, stdin=stdin)

    @classmethod
    def istioctl(cls, binary: str, *args: str, read_only: bool = False) -> Command:
        return cls(binary, args, OperationKind.CLUSTER, fresh_credentials=True, read_only=read_only)

    @classmethod
    def local(cls, program: str, *args: str, read_only: bool = False, stdin: str | None = None) -> Command:
        return cls(program, args, OperationKind.LOCAL, read_only=read_only, stdin=stdin)

    def __str__(self) -> str:
        return shlex.join([self.program, *self.args])


class CommandResult(NamedTuple):
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


Runner = Callable[[Command], CommandResult]


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


def decode_json(cmd: Command, output: str, default: Any) -> Any:
    """Parse the JSON output of *cmd*; blank output yields *default*.

    Raises:
        ExternalOperationError: If the output is not valid JSON.
    """
    if not output.strip():
        return default
    try:
        return json.loads(output)
    except json.JSONDecodeError as err:
        raise ExternalOperationError(
            str(cmd), 0, str(err), message=f"Command returned output that is not valid JSON: {cmd}",
        ) from err


def run_with_sh(cmd: Command) -> CommandResult:
    """Run a command via sh and return its exit status and output.

    Args:
        cmd: Command to run.

    Returns:
        CommandResult; a missing executable is reported as exit status 127.
    """
    try:
        proc = sh.Command(cmd.program)(*cmd.args, _in=cmd.stdin, _tty_out=False, _return_cmd=True)
    except sh.CommandNotFound as err:
        return CommandResult(127, "", f"command not found: {err}")
    except sh.ErrorReturnCode as err:
        return CommandResult(err.exit_code, _decode(err.stdout), _decode(err.stderr))
    return CommandResult(proc.exit_code, _decode(proc.stdout), _decode(proc.stderr))


class Executor:
    """Runs external commands under the configured reporting and retry policy.

    Dry-run prints mutating commands and reports success without running
    them; verbose prints every command before and after it runs; otherwise
    commands run silently. Read-only commands always run.
    """

    def __init__(
        self,
        *,
        dry_run: bool = False,
        verbose: bool = False,
        runner: Runner = run_with_sh,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        credential_refresh: Command | None = None,
    ) -> None:
        self.dry_run = dry_run
        self.verbose = verbose and not dry_run
        self.runner = runner
        self.backoff_seconds = backoff_seconds
        self.credential_refresh = credential_refresh

    def _invoke(self, cmd: Command) -> CommandResult:
        if self.dry_run and not cmd.read_only:
            console.print(f"[cyan]DRY RUN: {cmd}[/cyan]")
            return CommandResult(0, "", "")
        if self.verbose:
            console.print(f"[dim]Running: {cmd}[/dim]")
        logger.debug("exec: %s", cmd)
        result = self.runner(cmd)
        if self.verbose:
            console.print(f"[dim]Finished (exit {result.exit_code}): {cmd}[/dim]")
        return result

    def execute(self, cmd: Command) -> int:
        """Run a command once and return its exit status (0 in dry-run)."""
        return self._invoke(cmd).exit_code

    def run(self, cmd: Command) -> CommandResult:
        """Run a command once.

        Raises:
            ExternalOperationError: If the command exits nonzero.
        """
        result = self._invoke(cmd)
        if not result.ok:
            raise ExternalOperationError(str(cmd), result.exit_code, result.stderr)
        return result

    def query(self, cmd: Command) -> str:
        """Run a read-only command, even in dry-run, and return its stdout.

        Raises:
            ExternalOperationError: If the command exits nonzero.
        """
        if not cmd.read_only:
            cmd = replace(cmd, read_only=True)
        return self.run(cmd).stdout

    def query_json(self, cmd: Command, default: Any) -> Any:
        """Run a read-only command and parse its JSON stdout."""
        return decode_json(cmd, self.query(cmd), default)

    def _warn_attempt_failed(self, cmd: Command, max_attempts: int, state: RetryCallState) -> None:
        result = state.outcome.result()
        console.print(
            f"[yellow]⚠️  Attempt {state.attempt_number}/{max_attempts} failed "
            f"(exit {result.exit_code}), retrying in {self.backoff_seconds}s: {cmd}[/yellow]"
        )

    def _refresh_before_retry(self, cmd: Command, state: RetryCallState) -> None:
        if state.attempt_number > 1 and cmd.fresh_credentials:
            self.refresh_credentials()

    def refresh_credentials(self) -> None:
        """Re-fetch cluster credentials into the scoped credential file.

        Raises:
            ExternalOperationError: If the credentials cannot be fetched.
        """
        if self.credential_refresh is None:
            return
        logger.info("Refreshing cluster credentials")
        self.retry(CREDENTIALS_MAX_ATTEMPTS, self.credential_refresh)

    def retry(self, max_attempts: int, cmd: Command) -> CommandResult:
        """Run a command up to *max_attempts* times with a fixed backoff.

        Args:
            max_attempts: Maximum number of attempts; 0 fails without running.
            cmd: Command to run.

        Returns:
            Result of the first successful attempt.

        Raises:
            ExternalOperationError: If every attempt fails.
        """
        if max_attempts < 1:
            raise ExternalOperationError(str(cmd), 1, "no attempts allowed", attempts=0)

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_result(lambda result: not result.ok),
            before=lambda state: self._refresh_before_retry(cmd, state),
            before_sleep=lambda state: self._warn_attempt_failed(cmd, max_attempts, state),
        )
        try:
            return retrying(self._invoke, cmd)
        except RetryError as err:
            last = err.last_attempt.result()
            raise ExternalOperationError(str(cmd), last.exit_code, last.stderr, attempts=max_attempts) from err
