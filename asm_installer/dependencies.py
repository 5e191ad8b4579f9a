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

"""Tool and platform checks, service identity login, and artifact fetching."""

from __future__ import annotations

import platform
from dataclasses import dataclass
from pathlib import Path

import sh
from rich.panel import Panel

from asm_installer import console
from asm_installer.config import InternalOverrides, ReleaseDescriptor, RunConfig
from asm_installer.constants import (
    PACKAGE_FETCH_MAX_ATTEMPTS,
    PLATFORM_SUFFIXES,
    REL_PACKAGE_DIR,
    SUPPORTED_ARCHITECTURES,
    release_value,
)
from asm_installer.errors import DependencyError
from asm_installer.execution import Command, Executor
from asm_installer.workspace import Workspace


# ============================================================================
# Tools and platform
# ============================================================================

@dataclass(frozen=True)
class RequiredTool:
    """External tool the run depends on.

    Attributes:
        name: Executable name looked up on PATH.
        hint: How to install it.
    """

    name: str
    hint: str


BASE_TOOLS = (
    RequiredTool("gcloud", "https://cloud.google.com/sdk/docs/install"),
    RequiredTool("kubectl", "gcloud components install kubectl"),
    RequiredTool("kpt", "gcloud components install kpt"),
    RequiredTool("curl", "install curl with your system package manager"),
    RequiredTool("tar", "install tar with your system package manager"),
)
GSUTIL_TOOL = RequiredTool("gsutil", "gcloud components install gsutil")


def required_tools(overrides: InternalOverrides) -> list[RequiredTool]:
    """Tools needed for this run; gsutil only for the authenticated artifact source."""
    tools = list(BASE_TOOLS)
    if overrides.asm_pkg_location:
        tools.append(GSUTIL_TOOL)
    return tools


def tool_available(name: str) -> bool:
    """Return True if *name* resolves to an executable on PATH."""
    try:
        sh.Command(name)
    except sh.CommandNotFound:
        return False
    return True


def ensure_tools_present(tools: list[RequiredTool]) -> None:
    """Probe every tool and report all missing ones together.

    Args:
        tools: Tool descriptors to probe.

    Raises:
        DependencyError: If any tool is missing.
    """
    missing = [tool for tool in tools if not tool_available(tool.name)]
    if missing:
        lines = "\n".join(f"  - {tool.name}: {tool.hint}" for tool in missing)
        raise DependencyError(
            f"Missing required tools: {', '.join(tool.name for tool in missing)}",
            remediation=f"Install the missing tools and retry:\n{lines}",
        )
    console.print("[green]✅ All required tools are available[/green]")


def ensure_supported_platform(machine: str | None = None, system: str | None = None) -> str:
    """Check the host is 64-bit x86 Linux or macOS.

    Args:
        machine: CPU architecture, defaults to ``platform.machine()``.
        system: OS name, defaults to ``platform.system()``.

    Returns:
        The release tarball platform suffix (``linux-amd64`` or ``osx``).

    Raises:
        DependencyError: If the architecture or OS is unsupported.
    """
    machine = (machine if machine is not None else platform.machine()).lower()
    system = (system if system is not None else platform.system()).lower()
    if machine not in SUPPORTED_ARCHITECTURES:
        raise DependencyError(f"Installation is only supported on x86_64 (found {machine or 'unknown'}).")
    if system not in PLATFORM_SUFFIXES:
        raise DependencyError(f"Installation is only supported on Linux or macOS (found {system or 'unknown'}).")
    return PLATFORM_SUFFIXES[system]


# ============================================================================
# Service identity
# ============================================================================

def authenticate_service_identity(executor: Executor, cfg: RunConfig) -> None:
    """Activate the configured service account for gcloud, if one was given.

    Args:
        executor: Command executor.
        cfg: Run configuration with the service account and key file.
    """
    if not cfg.uses_service_account:
        return
    console.print(f"[yellow]ℹ️  Authenticating as {cfg.service_account}...[/yellow]")
    executor.run(Command.gcloud(
        "auth", "activate-service-account", cfg.service_account,
        f"--key-file={cfg.key_file.resolve()}",
    ))


# ============================================================================
# Artifacts
# ============================================================================

@dataclass(frozen=True)
class Artifacts:
    """Installer artifacts inside the workspace.

    Attributes:
        istioctl: Path of the versioned istioctl binary.
        package_dir: Path of the fetched configuration package.
    """

    istioctl: Path
    package_dir: Path


def expected_artifacts(workspace: Workspace, release: ReleaseDescriptor) -> Artifacts:
    return Artifacts(
        istioctl=workspace.path / f"istio-{release.release}" / "bin" / "istioctl",
        package_dir=workspace.path / REL_PACKAGE_DIR,
    )


def _fetch_istioctl(
    executor: Executor,
    workspace: Workspace,
    release: ReleaseDescriptor,
    platform_suffix: str,
    overrides: InternalOverrides,
) -> None:
    tarball = f"istio-{release.release}-{platform_suffix}.tar.gz"
    target = workspace.path / tarball
    if overrides.asm_pkg_location:
        source = f"gs://{overrides.asm_pkg_location}/asm/{tarball}"
        fetch = Command.local("gsutil", "cp", source, str(target), read_only=True)
    else:
        source = f"{release_value('packages', 'tarball_base_url')}/{tarball}"
        fetch = Command.local("curl", "-fsSL", "-o", str(target), source, read_only=True)
    console.print(f"[yellow]ℹ️  Downloading {source}...[/yellow]")
    executor.retry(PACKAGE_FETCH_MAX_ATTEMPTS, fetch)
    executor.run(Command.local("tar", "xzf", str(target), "-C", str(workspace.path), read_only=True))
    target.unlink(missing_ok=True)


def _fetch_package(executor: Executor, release: ReleaseDescriptor, package_dir: Path) -> None:
    source = f"{release_value('packages', 'kpt_repo')}/{REL_PACKAGE_DIR}@{release.kpt_branch}"
    console.print(f"[yellow]ℹ️  Fetching configuration package {source}...[/yellow]")
    executor.retry(
        PACKAGE_FETCH_MAX_ATTEMPTS,
        Command.local("kpt", "pkg", "get", "--auto-set=false", source, str(package_dir), read_only=True),
    )


def ensure_artifacts(
    executor: Executor,
    workspace: Workspace,
    release: ReleaseDescriptor,
    platform_suffix: str,
    overrides: InternalOverrides,
) -> Artifacts:
    """Download istioctl and the configuration package unless already present.

    Args:
        executor: Command executor.
        workspace: Run workspace that receives the artifacts.
        release: Release whose artifacts are fetched.
        platform_suffix: Tarball platform suffix from :func:`ensure_supported_platform`.
        overrides: Internal overrides selecting the authenticated source.

    Returns:
        Paths of the artifacts in the workspace.

    Raises:
        ExternalOperationError: If a download fails after retries.
    """
    console.print(Panel.fit("Fetching installer artifacts", style="bold blue"))
    artifacts = expected_artifacts(workspace, release)
    if artifacts.istioctl.is_file() and artifacts.package_dir.is_dir():
        console.print(f"[green]✅ Reusing artifacts in {workspace.path}[/green]")
        return artifacts

    if not artifacts.istioctl.is_file():
        _fetch_istioctl(executor, workspace, release, platform_suffix, overrides)
    if not artifacts.package_dir.is_dir():
        _fetch_package(executor, release, artifacts.package_dir)
    console.print(f"[green]✅ Artifacts ready in {workspace.path}[/green]")
    return artifacts
