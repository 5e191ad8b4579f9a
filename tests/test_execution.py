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

"""Tests for the execution policy, JSON decoding, and the sh-backed runner."""

from __future__ import annotations

import pytest

from asm_installer.errors import ExternalOperationError
from asm_installer.execution import Command, CommandResult, Executor, OperationKind, decode_json, run_with_sh

FAIL = CommandResult(1, "", "boom")
OK = CommandResult(0, "done", "")
REFRESH = Command("gcloud", ("container", "clusters", "get-credentials", "c"), read_only=True)


def make_executor(runner, **kwargs) -> Executor:
    kwargs.setdefault("backoff_seconds", 0)
    return Executor(runner=runner, **kwargs)


class TestCommand:
    def test_cluster_commands_request_fresh_credentials(self):
        assert Command.kubectl("get", "pods").fresh_credentials
        cmd = Command.gcloud_cluster("clusters", "update", "c")
        assert cmd.fresh_credentials
        assert cmd.kind is OperationKind.CLUSTER
        assert cmd.args[0] == "container"
        assert not Command.gcloud("projects", "list").fresh_credentials

    def test_stdin_is_not_printed(self):
        cmd = Command.local("curl", "--header", "@-", stdin="Authorization: Bearer tok123\n")
        assert "tok123" not in str(cmd)
        assert str(cmd) == "curl --header @-"


class TestExecute:
    def test_dry_run_skips_mutating_commands(self, runner):
        executor = make_executor(runner, dry_run=True)
        assert executor.execute(Command.kubectl("apply", "-f", "x.yaml")) == 0
        assert runner.calls == []

    def test_dry_run_still_runs_queries(self, runner):
        runner.on("kubectl", "get", stdout="ns/istio-system")
        executor = make_executor(runner, dry_run=True)
        assert executor.query(Command.kubectl("get", "namespaces")) == "ns/istio-system"
        assert len(runner.calls) == 1

    def test_dry_run_wins_over_verbose(self, runner):
        executor = make_executor(runner, dry_run=True, verbose=True)
        assert executor.verbose is False
        executor.execute(Command.kubectl("delete", "pod", "x"))
        assert runner.calls == []

    def test_execute_returns_real_status(self, runner):
        runner.on("kpt", exit_code=3)
        assert make_executor(runner, verbose=True).execute(Command.local("kpt", "version")) == 3

    def test_run_raises_on_failure(self, runner):
        runner.on("kpt", exit_code=4, stderr="warning\nfatal: no such package")
        with pytest.raises(ExternalOperationError) as excinfo:
            make_executor(runner).run(Command.local("kpt", "pkg", "get"))
        assert excinfo.value.exit_code == 4
        assert "fatal: no such package" in str(excinfo.value)
        assert excinfo.value.command == "kpt pkg get"

    def test_query_raises_on_failure(self, runner):
        runner.on("gcloud", exit_code=1)
        with pytest.raises(ExternalOperationError):
            make_executor(runner).query(Command.gcloud("projects", "list"))


class TestRetry:
    def test_zero_attempts_never_invokes(self, runner):
        with pytest.raises(ExternalOperationError):
            make_executor(runner).retry(0, Command.local("curl", "x"))
        assert runner.calls == []

    @pytest.mark.parametrize("attempts", [1, 3, 5])
    def test_exhaustion_invokes_exactly_n_times(self, runner, attempts):
        runner.on("curl", exit_code=7, stderr="connection refused")
        with pytest.raises(ExternalOperationError, match=f"after {attempts} attempt"):
            make_executor(runner).retry(attempts, Command.local("curl", "x"))
        assert len(runner.calls) == attempts

    def test_success_on_second_attempt(self, runner):
        runner.sequence("curl", results=[FAIL, OK])
        result = make_executor(runner).retry(3, Command.local("curl", "x"))
        assert result.stdout == "done"
        assert len(runner.calls) == 2

    def test_refresh_between_attempts_for_fresh_credential_commands(self, runner):
        runner.on("kubectl", exit_code=1)
        executor = make_executor(runner, credential_refresh=REFRESH)
        with pytest.raises(ExternalOperationError):
            executor.retry(3, Command.kubectl("apply", "-f", "x.yaml"))
        programs = [cmd.args[0] if cmd.program == "gcloud" else "kubectl" for cmd in runner.calls]
        assert programs == ["kubectl", "container", "kubectl", "container", "kubectl"]

    def test_no_refresh_for_plain_commands(self, runner):
        runner.on("curl", exit_code=1)
        executor = make_executor(runner, credential_refresh=REFRESH)
        with pytest.raises(ExternalOperationError):
            executor.retry(2, Command.local("curl", "x"))
        assert runner.invoked("gcloud") == []

    def test_refresh_failure_propagates(self, runner):
        runner.on("kubectl", exit_code=1)
        runner.on("gcloud", "container", "clusters", "get-credentials", exit_code=1)
        executor = make_executor(runner, credential_refresh=REFRESH)
        with pytest.raises(ExternalOperationError, match="get-credentials"):
            executor.retry(3, Command.kubectl("apply", "-f", "x.yaml"))
        assert len(runner.invoked("gcloud")) == 2

    def test_dry_run_retry_succeeds_without_invoking(self, runner):
        result = make_executor(runner, dry_run=True).retry(5, Command.kubectl("apply", "-f", "x.yaml"))
        assert result.ok
        assert runner.calls == []


class TestDecodeJson:
    CMD = Command.kubectl("get", "deployments", "-o", "json")

    def test_blank_output_gives_default(self):
        assert decode_json(self.CMD, "  \n", {"items": []}) == {"items": []}

    def test_valid_output(self):
        assert decode_json(self.CMD, '{"items": [1]}', {}) == {"items": [1]}

    def test_invalid_output_names_command(self):
        with pytest.raises(ExternalOperationError, match="not valid JSON") as excinfo:
            decode_json(self.CMD, "error: You must be logged in to the server", {})
        assert excinfo.value.command == "kubectl get deployments -o json"

    def test_query_json(self, runner):
        runner.on("kubectl", "get", stdout="<html>")
        with pytest.raises(ExternalOperationError):
            make_executor(runner).query_json(self.CMD, {})


class TestRunWithSh:
    def test_stdout_and_stderr_kept_apart(self):
        result = run_with_sh(Command.local("sh", "-c", "echo out; echo err >&2"))
        assert result == CommandResult(0, "out\n", "err\n")

    def test_nonzero_exit_keeps_output(self):
        result = run_with_sh(Command.local("sh", "-c", "echo out; echo err >&2; exit 3"))
        assert result.exit_code == 3
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert not result.ok

    def test_missing_program(self):
        result = run_with_sh(Command.local("asm-installer-no-such-tool"))
        assert result.exit_code == 127
        assert "asm-installer-no-such-tool" in result.stderr

    def test_stdin_delivered(self):
        result = run_with_sh(Command.local("cat", stdin="Authorization: Bearer tok\n"))
        assert result.stdout == "Authorization: Bearer tok\n"

    def test_failure_through_executor(self):
        with pytest.raises(ExternalOperationError, match="exit 3") as excinfo:
            Executor().run(Command.local("sh", "-c", "echo broken >&2; exit 3"))
        assert excinfo.value.stderr == "broken\n"
