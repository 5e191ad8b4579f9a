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

"""Shared fixtures: a scripted command runner and an isolated environment."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from asm_installer.config import RunConfig
from asm_installer.constants import REQUIRED_APIS
from asm_installer.execution import Command, CommandResult

CONFIG_ENV_VARS = [name.upper() for name in RunConfig.model_fields] + [
    "_CI_ASM_IMAGE_LOCATION",
    "_CI_ASM_IMAGE_TAG",
    "_CI_ASM_PKG_LOCATION",
    "KUBECONFIG",
]

PROJECT = "my-project"
CLUSTER = "my-cluster"
LOCATION = "us-central1-c"
PROJECT_NUMBER = "123456789"
OPERATOR = "operator@example.com"


class FakeRunner:
    """Command runner that answers from scripted rules and records every call.

    Rules match on a prefix of ``(basename(program), *args)``; the most
    recently added matching rule wins. Unmatched commands succeed silently.
    """

    def __init__(self) -> None:
        self.calls: list[Command] = []
        self.kubeconfigs: list[str | None] = []
        self._rules: list[tuple[tuple[str, ...], Callable[[Command], CommandResult]]] = []

    def on(self, *prefix: str, stdout: str = "", exit_code: int = 0, stderr: str = "") -> FakeRunner:
        result = CommandResult(exit_code, stdout, stderr)
        self._rules.insert(0, (prefix, lambda cmd: result))
        return self

    def sequence(self, *prefix: str, results: list[CommandResult]) -> FakeRunner:
        """Answer successive matching calls with *results*; the last one repeats."""
        pending = list(results)

        def answer(cmd: Command) -> CommandResult:
            return pending.pop(0) if len(pending) > 1 else pending[0]

        self._rules.insert(0, (prefix, answer))
        return self

    def __call__(self, cmd: Command) -> CommandResult:
        self.calls.append(cmd)
        self.kubeconfigs.append(os.environ.get("KUBECONFIG"))
        argv = (Path(cmd.program).name, *cmd.args)
        for prefix, answer in self._rules:
            if argv[:len(prefix)] == prefix:
                return answer(cmd)
        return CommandResult(0, "", "")

    def invoked(self, *prefix: str) -> list[Command]:
        return [
            cmd for cmd in self.calls
            if (Path(cmd.program).name, *cmd.args)[:len(prefix)] == prefix
        ]


def healthy_environment(runner: FakeRunner) -> FakeRunner:
    """Script a project and cluster that pass every check for a fresh install."""
    pools = [{"config": {"machineType": "e2-standard-4"}, "initialNodeCount": 2}]
    runner.on("gcloud", "projects", "list", stdout=f"{PROJECT}\n")
    runner.on("gcloud", "projects", "describe", stdout=f"{PROJECT_NUMBER}\n")
    runner.on("gcloud", "container", "clusters", "list", stdout=f"{CLUSTER}\n")
    runner.on("gcloud", "container", "node-pools", "list", stdout=json.dumps(pools))
    runner.on("kubectl", "get", "deployments", stdout=json.dumps({"items": []}))
    runner.on("gcloud", "services", "list", stdout="\n".join(REQUIRED_APIS))
    runner.on("gcloud", "config", "get-value", stdout=f"{OPERATOR}\n")
    runner.on("gcloud", "projects", "get-iam-policy", stdout=json.dumps({"bindings": []}))
    runner.on("gcloud", "container", "clusters", "describe",
              stdout=json.dumps({"resourceLabels": {"team": "payments"}}))
    runner.on("kubectl", "get", "namespaces", stdout="")
    runner.on("gcloud", "auth", "print-access-token", stdout="secret-token\n")
    return runner


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_config() -> Callable[..., RunConfig]:
    def _make(**overrides) -> RunConfig:
        values = {
            "project_id": PROJECT,
            "cluster_name": CLUSTER,
            "cluster_location": LOCATION,
            "mode": "install",
        }
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def supported_host(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("platform.machine", lambda: "x86_64")
    monkeypatch.setattr("platform.system", lambda: "Linux")
    monkeypatch.setattr("asm_installer.dependencies.tool_available", lambda name: True)
