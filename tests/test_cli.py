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

"""Command-line tests using typer's CliRunner."""

from __future__ import annotations

import sys

import pytest
from typer.testing import CliRunner

import install_asm
from asm_installer.errors import ResourceNotFoundError

cli = CliRunner()
REQUIRED_ARGS = ["-p", "my-project", "-n", "my-cluster", "-l", "us-central1-c"]


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list:
    configs = []
    monkeypatch.setattr(install_asm, "run", configs.append)
    return configs


def test_version():
    result = cli.invoke(install_asm.app, ["--version"])
    assert result.exit_code == 0
    assert "1.8.1-asm.5" in result.output


def test_help():
    result = cli.invoke(install_asm.app, ["-h"])
    assert result.exit_code == 0
    assert "Usage" in result.output


def test_install_resolves_config(captured):
    result = cli.invoke(install_asm.app, [*REQUIRED_ARGS, "-m", "install", "--dry-run"])
    assert result.exit_code == 0
    (cfg,) = captured
    assert cfg.ca == "mesh_ca"
    assert cfg.dry_run is True


def test_underscore_spellings(captured):
    args = ["--project_id", "p", "--cluster_name", "c", "--cluster_location", "l", "--mode", "install", "--enable_apis"]
    result = cli.invoke(install_asm.app, args)
    assert result.exit_code == 0
    assert captured[0].enable_apis is True


def test_migrate_without_ca_exits_2(captured):
    result = cli.invoke(install_asm.app, [*REQUIRED_ARGS, "-m", "migrate"])
    assert result.exit_code == 2
    assert captured == []


def test_missing_options_exit_2(captured):
    result = cli.invoke(install_asm.app, ["-m", "install"])
    assert result.exit_code == 2


def test_flags_override_environment(captured, monkeypatch):
    monkeypatch.setenv("PROJECT_ID", "env-project")
    monkeypatch.setenv("CLUSTER_NAME", "env-cluster")
    monkeypatch.setenv("CLUSTER_LOCATION", "env-location")
    monkeypatch.setenv("MODE", "install")
    result = cli.invoke(install_asm.app, ["-p", "cli-project"])
    assert result.exit_code == 0
    assert captured[0].project_id == "cli-project"
    assert captured[0].cluster_name == "env-cluster"


def test_installer_error_exits_2(monkeypatch):
    def fail(cfg):
        raise ResourceNotFoundError("Unable to find project my-project.")

    monkeypatch.setattr(install_asm, "run", fail)
    result = cli.invoke(install_asm.app, [*REQUIRED_ARGS, "-m", "install"])
    assert result.exit_code == 2


def test_unexpected_error_exits_1(monkeypatch):
    def crash(cfg):
        raise ValueError("unexpected")

    monkeypatch.setattr(install_asm, "run", crash)
    monkeypatch.setattr(sys, "argv", ["install_asm", *REQUIRED_ARGS, "-m", "install"])
    with pytest.raises(SystemExit) as excinfo:
        install_asm.main()
    assert excinfo.value.code == 1
