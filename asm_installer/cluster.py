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

"""Cluster preparation: labels, workload identity, telemetry, RBAC, and namespace."""

from __future__ import annotations

import yaml
from rich.panel import Panel

from asm_installer import console
from asm_installer.config import ReleaseDescriptor, RunConfig, TargetContext
from asm_installer.constants import (
    CLUSTER_ADMIN_BINDING,
    CLUSTER_UPDATE_MAX_ATTEMPTS,
    LABEL_ASM_VERSION,
    LABEL_MESH_ID,
    NS_ISTIO_SYSTEM,
    WORKLOAD_POOL_SUFFIX,
)
from asm_installer.execution import Command, Executor


def _cluster_args(cfg: RunConfig) -> tuple[str, ...]:
    return (cfg.cluster_name, f"--project={cfg.project_id}", f"--location={cfg.cluster_location}")


# ============================================================================
# Labels
# ============================================================================

def current_labels(executor: Executor, cfg: RunConfig) -> dict[str, str]:
    """Read the cluster's resource labels."""
    data = executor.query_json(Command.gcloud_cluster(
        "clusters", "describe", *_cluster_args(cfg), "--format=json(resourceLabels)",
    ), {})
    return data.get("resourceLabels") or {}


def mesh_labels(release: ReleaseDescriptor, project_number: str) -> dict[str, str]:
    return {
        LABEL_ASM_VERSION: release.version_label,
        LABEL_MESH_ID: f"proj-{project_number}",
    }


def label_cluster(executor: Executor, cfg: RunConfig, release: ReleaseDescriptor, target: TargetContext) -> None:
    """Add the installer version and mesh identity labels, keeping existing labels.

    Args:
        executor: Command executor.
        cfg: Run configuration.
        release: Release being installed.
        target: Resolved identifiers with the project number.
    """
    existing = current_labels(executor, cfg)
    merged = {**existing, **mesh_labels(release, target.project_number)}
    if merged == existing:
        console.print("[yellow]   Cluster labels already up to date[/yellow]")
        return
    labels = ",".join(f"{key}={value}" for key, value in merged.items())
    executor.retry(CLUSTER_UPDATE_MAX_ATTEMPTS, Command.gcloud_cluster(
        "clusters", "update", *_cluster_args(cfg), f"--update-labels={labels}",
    ))
    console.print(f"[green]  ✓ Cluster labeled ({labels})[/green]")


# ============================================================================
# Cluster features
# ============================================================================

def enable_workload_identity(executor: Executor, cfg: RunConfig) -> None:
    executor.retry(CLUSTER_UPDATE_MAX_ATTEMPTS, Command.gcloud_cluster(
        "clusters", "update", *_cluster_args(cfg),
        f"--workload-pool={cfg.project_id}.{WORKLOAD_POOL_SUFFIX}",
    ))
    console.print("[green]  ✓ Workload identity enabled[/green]")


def enable_telemetry_integration(executor: Executor, cfg: RunConfig) -> None:
    executor.retry(CLUSTER_UPDATE_MAX_ATTEMPTS, Command.gcloud_cluster(
        "clusters", "update", *_cluster_args(cfg), "--enable-stackdriver-kubernetes",
    ))
    console.print("[green]  ✓ Cloud Operations integration enabled[/green]")


# ============================================================================
# RBAC and namespace
# ============================================================================

def cluster_admin_binding(identity: str) -> dict:
    """Build the ClusterRoleBinding granting cluster-admin to *identity*.

    Args:
        identity: Operator account or service account email.

    Returns:
        Kubernetes ClusterRoleBinding as a dictionary ready for YAML serialization.
    """
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": CLUSTER_ADMIN_BINDING},
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "cluster-admin",
        },
        "subjects": [
            {"apiGroup": "rbac.authorization.k8s.io", "kind": "User", "name": identity},
        ],
    }


def grant_cluster_admin(executor: Executor, identity: str) -> None:
    """Apply the cluster-admin binding; re-applying leaves it unchanged."""
    manifest = yaml.safe_dump(cluster_admin_binding(identity), default_flow_style=False)
    executor.run(Command.kubectl("apply", "-f", "-", stdin=manifest))
    console.print(f"[green]  ✓ cluster-admin granted to {identity}[/green]")


def ensure_system_namespace(executor: Executor) -> None:
    """Create the control-plane namespace unless it already exists."""
    out = executor.query(Command.kubectl(
        "get", "namespaces", f"--field-selector=metadata.name={NS_ISTIO_SYSTEM}", "-o", "name",
    ))
    if out.split():
        console.print(f"[yellow]   Namespace {NS_ISTIO_SYSTEM} already exists[/yellow]")
        return
    executor.run(Command.kubectl("create", "namespace", NS_ISTIO_SYSTEM))
    console.print(f"[green]  ✓ Namespace {NS_ISTIO_SYSTEM} created[/green]")


def prepare_cluster(
    executor: Executor,
    cfg: RunConfig,
    release: ReleaseDescriptor,
    target: TargetContext,
    identity: str,
) -> None:
    """Label the cluster, enable its mesh features, and set up RBAC and namespace."""
    console.print(Panel.fit(f"Preparing cluster {cfg.cluster_location}/{cfg.cluster_name}", style="bold blue"))
    label_cluster(executor, cfg, release, target)
    enable_workload_identity(executor, cfg)
    enable_telemetry_integration(executor, cfg)
    grant_cluster_admin(executor, identity)
    ensure_system_namespace(executor)
