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

"""Precondition checks against the project, cluster, and existing control plane.

Each check either passes or raises a typed InstallerError; the first failure
aborts the run. Checks only read external state.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from rich.panel import Panel

from asm_installer import console
from asm_installer.config import ReleaseDescriptor, RunConfig, TargetContext
from asm_installer.constants import (
    CONTROL_PLANE_COMPONENT,
    ISTIO_VERSION_MAX_ATTEMPTS,
    MANAGED_DISTRIBUTION_MARKER,
    MIN_MACHINE_VCPUS,
    MIN_TOTAL_VCPUS,
    MODE_INSTALL,
    MODE_MIGRATE,
    NS_ISTIO_SYSTEM,
    REQUIRED_APIS,
)
from asm_installer.dependencies import Artifacts
from asm_installer.errors import (
    InstallerError,
    PermissionOrAPIError,
    ResourceInsufficientError,
    ResourceNotFoundError,
    TopologyError,
    VersionIncompatibleError,
)
from asm_installer.execution import Command, Executor, decode_json
from asm_installer.workspace import Workspace


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single check.

    Attributes:
        ok: Whether the check passed.
        message: Human-readable detail (diagnostic on failure).
    """

    ok: bool
    message: str

    @classmethod
    def passed(cls, message: str) -> ValidationResult:
        return cls(True, message)

    @classmethod
    def failed(cls, message: str) -> ValidationResult:
        return cls(False, message)


def _require(result: ValidationResult, error: type[InstallerError], remediation: str | None = None) -> None:
    if not result.ok:
        raise error(result.message, remediation=remediation)
    console.print(f"[green]  ✓ {result.message}[/green]")


# ============================================================================
# Pure evaluations
# ============================================================================

def machine_vcpus(machine_type: str) -> int | None:
    """Extract the vCPU count from a machine type name.

    ``e2-standard-4`` has 4 vCPUs; custom types (``n1-custom-6-23040``)
    carry the count right after ``custom``.

    Returns:
        The vCPU count, or None if the name does not encode one.
    """
    parts = machine_type.split("-")
    if "custom" in parts:
        idx = parts.index("custom") + 1
        candidate = parts[idx] if idx < len(parts) else ""
    else:
        candidate = parts[-1]
    return int(candidate) if re.fullmatch(r"\d+", candidate) else None


def effective_node_count(pool: dict) -> int:
    """Autoscaling maximum when autoscaling is enabled, else the node count."""
    autoscaling = pool.get("autoscaling") or {}
    if autoscaling.get("enabled"):
        return int(autoscaling.get("maxNodeCount", 0))
    return int(pool.get("initialNodeCount", 0))


def total_effective_vcpus(pools: Iterable[dict]) -> int:
    """Sum effective vCPUs over pools whose machines have at least 4 vCPUs."""
    total = 0
    for pool in pools:
        vcpus = machine_vcpus((pool.get("config") or {}).get("machineType", ""))
        if vcpus is None or vcpus < MIN_MACHINE_VCPUS:
            continue
        total += effective_node_count(pool) * vcpus
    return total


def evaluate_capacity(pools: Iterable[dict]) -> ValidationResult:
    total = total_effective_vcpus(pools)
    if total < MIN_TOTAL_VCPUS:
        return ValidationResult.failed(
            f"Node pools provide {total} vCPUs on machines with at least {MIN_MACHINE_VCPUS} vCPUs; "
            f"{MIN_TOTAL_VCPUS} are required."
        )
    return ValidationResult.passed(f"Node pools provide {total} eligible vCPUs")


def count_control_plane(deployments: Iterable[dict]) -> tuple[int, int]:
    """Count control-plane deployments overall and in the system namespace.

    Args:
        deployments: Deployment objects from ``kubectl get deployments -o json``.

    Returns:
        Tuple of (total_count, system_namespace_count).
    """
    total = 0
    in_system = 0
    for deployment in deployments:
        metadata = deployment.get("metadata") or {}
        if CONTROL_PLANE_COMPONENT not in metadata.get("name", ""):
            continue
        total += 1
        if metadata.get("namespace") == NS_ISTIO_SYSTEM:
            in_system += 1
    return total, in_system


def evaluate_namespace_discipline(total: int, in_system: int) -> ValidationResult:
    if total != in_system:
        return ValidationResult.failed(
            f"Found {total - in_system} {CONTROL_PLANE_COMPONENT} deployment(s) outside the "
            f"{NS_ISTIO_SYSTEM} namespace; only control planes in {NS_ISTIO_SYSTEM} are supported."
        )
    return ValidationResult.passed(f"No {CONTROL_PLANE_COMPONENT} deployments outside {NS_ISTIO_SYSTEM}")


def evaluate_mode_state(mode: str, in_system: int) -> ValidationResult:
    """Install needs no existing control plane; migrate needs at least one."""
    if mode == MODE_MIGRATE and in_system == 0:
        return ValidationResult.failed(
            f"Migration requires an existing control plane in {NS_ISTIO_SYSTEM}, but none was found."
        )
    if mode == MODE_INSTALL and in_system > 0:
        return ValidationResult.failed(
            f"Found an existing control plane in {NS_ISTIO_SYSTEM}; use --mode migrate instead."
        )
    return ValidationResult.passed(f"Existing control plane state is suitable for {mode}")


def evaluate_versions(versions: Iterable[str], release_line: str) -> ValidationResult:
    """Check reported control-plane versions are migratable to *release_line*.

    Any version carrying the managed distribution marker is rejected outright.
    Otherwise at least one version must start with the release line.
    """
    versions = list(versions)
    for version in versions:
        if MANAGED_DISTRIBUTION_MARKER in version:
            return ValidationResult.failed(
                f"Cannot migrate from version {version}; only migration from OSS Istio is supported."
            )
    if not any(version.startswith(release_line) for version in versions):
        found = ", ".join(versions) or "none"
        return ValidationResult.failed(
            f"Migration requires an existing {release_line}x control plane (found: {found})."
        )
    return ValidationResult.passed(f"Existing control plane version is on the {release_line}x line")


def missing_apis(enabled: Iterable[str]) -> list[str]:
    enabled = set(enabled)
    return [api for api in REQUIRED_APIS if api not in enabled]


def evaluate_apis(enabled: Iterable[str]) -> ValidationResult:
    missing = missing_apis(enabled)
    if missing:
        return ValidationResult.failed(
            "Required APIs are not enabled: " + ", ".join(missing)
        )
    return ValidationResult.passed("All required APIs are enabled")


def parse_mesh_versions(data: dict) -> list[str]:
    """Extract control-plane versions from parsed ``istioctl version -o json`` output."""
    return [
        entry["Info"]["version"]
        for entry in data.get("meshVersion") or []
        if (entry.get("Info") or {}).get("version")
    ]


# ============================================================================
# Checks
# ============================================================================

def check_project_exists(executor: Executor, cfg: RunConfig) -> None:
    out = executor.query(Command.gcloud(
        "projects", "list",
        f"--filter=project_id={cfg.project_id}",
        "--format=value(project_id)",
    ))
    if cfg.project_id not in out.split():
        raise ResourceNotFoundError(
            f"Unable to find project {cfg.project_id}.",
            remediation=f"Create it with: gcloud projects create {cfg.project_id}",
        )
    console.print(f"[green]  ✓ Project {cfg.project_id} exists[/green]")


def resolve_project_number(executor: Executor, cfg: RunConfig) -> str:
    number = executor.query(Command.gcloud(
        "projects", "describe", cfg.project_id, "--format=value(projectNumber)",
    )).strip()
    if not number:
        raise ResourceNotFoundError(f"Unable to resolve the project number of {cfg.project_id}.")
    console.print(f"[green]  ✓ Project number is {number}[/green]")
    return number


def check_cluster_exists(executor: Executor, cfg: RunConfig) -> None:
    out = executor.query(Command.gcloud_cluster(
        "clusters", "list",
        f"--project={cfg.project_id}",
        f"--filter=name = {cfg.cluster_name} AND location = {cfg.cluster_location}",
        "--format=value(name)",
    ))
    if cfg.cluster_name not in out.split():
        raise ResourceNotFoundError(
            f"Unable to find cluster {cfg.cluster_location}/{cfg.cluster_name} in project {cfg.project_id}.",
            remediation=(
                f"Create it with: gcloud container clusters create {cfg.cluster_name} "
                f"--project={cfg.project_id} --location={cfg.cluster_location} "
                f"--machine-type=e2-standard-4 --num-nodes=2"
            ),
        )
    console.print(f"[green]  ✓ Cluster {cfg.cluster_location}/{cfg.cluster_name} exists[/green]")


def check_node_pool_capacity(executor: Executor, cfg: RunConfig) -> None:
    pools = executor.query_json(Command.gcloud_cluster(
        "node-pools", "list",
        f"--project={cfg.project_id}",
        f"--location={cfg.cluster_location}",
        f"--cluster={cfg.cluster_name}",
        "--format=json",
    ), [])
    _require(
        evaluate_capacity(pools),
        ResourceInsufficientError,
        remediation="Add a node pool of at least e2-standard-4 machines, or raise the node count.",
    )


def check_control_plane_state(executor: Executor, cfg: RunConfig) -> None:
    data = executor.query_json(Command.kubectl("get", "deployments", "--all-namespaces", "-o", "json"), {})
    deployments = data.get("items") or []
    total, in_system = count_control_plane(deployments)
    _require(evaluate_namespace_discipline(total, in_system), TopologyError)
    _require(evaluate_mode_state(cfg.mode, in_system), TopologyError)


def check_istio_version(executor: Executor, artifacts: Artifacts, release: ReleaseDescriptor) -> None:
    cmd = Command.istioctl(str(artifacts.istioctl), "version", "-o", "json", read_only=True)
    result = executor.retry(ISTIO_VERSION_MAX_ATTEMPTS, cmd)
    versions = parse_mesh_versions(decode_json(cmd, result.stdout, {}))
    _require(evaluate_versions(versions, release.release_line), VersionIncompatibleError)


def check_required_apis(executor: Executor, cfg: RunConfig) -> None:
    out = executor.query(Command.gcloud(
        "services", "list", "--enabled",
        f"--project={cfg.project_id}",
        "--format=value(config.name)",
    ))
    missing = missing_apis(out.split())
    _require(
        evaluate_apis(out.split()),
        PermissionOrAPIError,
        remediation=(
            f"Enable them with: gcloud services enable --project={cfg.project_id} {' '.join(missing)}\n"
            "or re-run with --enable-apis."
        ),
    )


def validate(
    executor: Executor,
    cfg: RunConfig,
    release: ReleaseDescriptor,
    artifacts: Artifacts,
    workspace: Workspace,
) -> TargetContext:
    """Run every precondition check in order.

    Args:
        executor: Command executor.
        cfg: Run configuration.
        release: Target release.
        artifacts: Fetched artifacts (istioctl is used for the version check).
        workspace: Run workspace holding the scoped kubeconfig.

    Returns:
        Identifiers resolved while validating.

    Raises:
        InstallerError: On the first failed check.
    """
    console.print(Panel.fit("Validating preconditions", style="bold blue"))
    check_project_exists(executor, cfg)
    project_number = resolve_project_number(executor, cfg)
    check_cluster_exists(executor, cfg)
    executor.refresh_credentials()
    check_node_pool_capacity(executor, cfg)
    check_control_plane_state(executor, cfg)
    if cfg.mode == MODE_MIGRATE:
        check_istio_version(executor, artifacts, release)
    if cfg.only_validate or not cfg.enable_apis:
        check_required_apis(executor, cfg)
    console.print("[green]✅ All preconditions satisfied[/green]")
    return TargetContext(project_number=project_number, kubeconfig=workspace.kubeconfig)
