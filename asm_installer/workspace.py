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

"""Run workspace: working directory, scoped kubeconfig, and cleanup."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from asm_installer import logger

KUBECONFIG_ENV = "KUBECONFIG"


@dataclass(frozen=True)
class Workspace:
    """Filesystem scope owned by a single run.

    Attributes:
        path: Absolute working directory holding downloaded artifacts.
        kubeconfig: Private credential file the run's cluster tools use.
        temporary: Whether ``path`` was created for this run and is removed on release.
        previous_cwd: Working directory to restore on release.
        previous_kubeconfig: Prior KUBECONFIG value, or None if it was unset.
    """

    path: Path
    kubeconfig: Path
    temporary: bool
    previous_cwd: Path
    previous_kubeconfig: str | None


def acquire(output_dir: Path | None = None) -> Workspace:
    """Create the run workspace and point cluster tools at a scoped kubeconfig.

    Args:
        output_dir: Directory to keep artifacts in, or None for a temporary one.

    Returns:
        The acquired Workspace; the process cwd is moved into it.
    """
    if output_dir is None:
        path = Path(tempfile.mkdtemp(prefix="asm-installer-"))
        temporary = True
    else:
        path = output_dir.expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        temporary = False

    fd, kubeconfig = tempfile.mkstemp(prefix="asm-kubeconfig-", suffix=".yaml")
    os.close(fd)

    workspace = Workspace(
        path=path,
        kubeconfig=Path(kubeconfig),
        temporary=temporary,
        previous_cwd=Path.cwd(),
        previous_kubeconfig=os.environ.get(KUBECONFIG_ENV),
    )
    os.environ[KUBECONFIG_ENV] = kubeconfig
    os.chdir(path)
    logger.debug("Acquired workspace %s (kubeconfig %s)", path, kubeconfig)
    return workspace


def release(workspace: Workspace) -> None:
    """Remove the scoped kubeconfig and restore the caller's environment.

    Args:
        workspace: Workspace returned by :func:`acquire`.
    """
    workspace.kubeconfig.unlink(missing_ok=True)
    if workspace.previous_kubeconfig is None:
        os.environ.pop(KUBECONFIG_ENV, None)
    else:
        os.environ[KUBECONFIG_ENV] = workspace.previous_kubeconfig
    os.chdir(workspace.previous_cwd)
    if workspace.temporary:
        shutil.rmtree(workspace.path, ignore_errors=True)
    logger.debug("Released workspace %s", workspace.path)


@contextmanager
def workspace_scope(output_dir: Path | None = None) -> Iterator[Workspace]:
    """Acquire a workspace for the duration of the block; always release it."""
    workspace = acquire(output_dir)
    try:
        yield workspace
    finally:
        release(workspace)
