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

"""Tests for workspace acquisition and release."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from asm_installer.workspace import acquire, release, workspace_scope


def test_temporary_workspace_removed(tmp_path: Path):
    with workspace_scope() as ws:
        assert ws.temporary
        assert Path.cwd() == ws.path.resolve()
        assert os.environ["KUBECONFIG"] == str(ws.kubeconfig)
        assert ws.kubeconfig.is_file()
    assert not ws.path.exists()
    assert not ws.kubeconfig.exists()
    assert Path.cwd() == tmp_path


def test_output_dir_created_and_kept(tmp_path: Path):
    out = tmp_path / "nested" / "out"
    with workspace_scope(out) as ws:
        assert ws.path == out.resolve()
        assert not ws.temporary
        (ws.path / "asm").mkdir()
    assert (out / "asm").is_dir()
    assert not ws.kubeconfig.exists()


def test_previous_kubeconfig_restored(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KUBECONFIG", "/home/me/.kube/config")
    with workspace_scope():
        assert os.environ["KUBECONFIG"] != "/home/me/.kube/config"
    assert os.environ["KUBECONFIG"] == "/home/me/.kube/config"


def test_unset_kubeconfig_stays_unset():
    with workspace_scope():
        pass
    assert "KUBECONFIG" not in os.environ


def test_released_when_block_raises(tmp_path: Path):
    with pytest.raises(RuntimeError):
        with workspace_scope() as ws:
            raise RuntimeError("stage failed")
    assert not ws.path.exists()
    assert not ws.kubeconfig.exists()
    assert Path.cwd() == tmp_path


def test_acquire_release_pair(tmp_path: Path):
    ws = acquire(tmp_path / "out")
    try:
        assert Path.cwd() == ws.path.resolve()
    finally:
        release(ws)
    assert Path.cwd() == tmp_path
    assert ws.path.is_dir()
