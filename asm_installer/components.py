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

"""Package configuration, control plane install, canonical service, and summary."""

from __future__ import annotations

from rich.panel import Panel

from asm_installer import console
from asm_installer.config import InternalOverrides, ReleaseDescriptor, RunConfig, TargetContext
from asm_installer.constants import (
    CA_CITADEL,
    CANONICAL_APPLY_MAX_ATTEMPTS,
    CANONICAL_CONTROLLER_DEPLOYMENT,
    CANONICAL_WAIT_TIMEOUT_SECONDS,
    CONTROL_PLANE_INSTALL_MAX_ATTEMPTS,
    MODE_MIGRATE,
    NS_ASM_SYSTEM,
    NS_ISTIO_SYSTEM,
    REL_CANONICAL_MANIFEST,
    REL_CITADEL_OPTIONS,
    REL_OPERATOR_MANIFEST,
    SETTER_CLUSTER,
    SETTER_IMAGE_HUB,
    SETTER_IMAGE_TAG,
    SETTER_LOCATION,
    SETTER_PROJECT,
    SETTER_PROJECT_NUMBER,
)
from asm_installer.dependencies import Artifacts
from asm_installer.execution import Command, Executor
from asm_installer.workspace import Workspace


# ============================================================================
# Package configuration
# ============================================================================

def package_setters(cfg: RunConfig, target: TargetContext, overrides: InternalOverrides) -> list[tuple[str, str]]:
    """Build the kpt setter values for the configuration package.

    Args:
        cfg: Run configuration.
        target: Resolved identifiers with the project number.
        overrides: Internal overrides; image setters are added when both are set.

    Returns:
        List of (setter, value) pairs.
    """
    setters = [
        (SETTER_CLUSTER, cfg.cluster_name),
        (SETTER_PROJECT, cfg.project_id),
        (SETTER_PROJECT_NUMBER, target.project_number),
        (SETTER_LOCATION, cfg.cluster_location),
    ]
    if overrides.asm_image_location and overrides.asm_image_tag:
        setters += [
            (SETTER_IMAGE_HUB, overrides.asm_image_location),
            (SETTER_IMAGE_TAG, overrides.asm_image_tag),
        ]
    return setters


def configure_package(
    executor: Executor,
    cfg: RunConfig,
    target: TargetContext,
    artifacts: Artifacts,
    overrides: InternalOverrides,
) -> None:
    """Write the resolved parameters into the fetched configuration package."""
    console.print(Panel.fit("Configuring package", style="bold blue"))
    for setter, value in package_setters(cfg, target, overrides):
        executor.run(Command.local("kpt", "cfg", "set", str(artifacts.package_dir), setter, value))
    console.print("[green]✅ Package configured[/green]")


# ============================================================================
# Control plane
# ============================================================================

def control_plane_install_args(
    cfg: RunConfig,
    release: ReleaseDescriptor,
    artifacts: Artifacts,
    target: TargetContext,
) -> list[str]:
    """Build the ``istioctl install`` arguments.

    The operator overlay is included only if it exists on disk.
    """
    args = ["install", "-f", str(artifacts.package_dir / REL_OPERATOR_MANIFEST)]
    if cfg.ca == CA_CITADEL:
        args += ["-f", str(artifacts.package_dir / REL_CITADEL_OPTIONS)]
    if cfg.operator_overlay is not None:
        if cfg.operator_overlay.is_file():
            args += ["-f", str(cfg.operator_overlay)]
        else:
            console.print(f"[yellow]⚠️  Overlay {cfg.operator_overlay} not found, installing without it[/yellow]")
    args += [
        "--set", f"revision={release.revision_label}",
        "--kubeconfig", str(target.kubeconfig),
        "-y",
    ]
    return args


def install_control_plane(
    executor: Executor,
    cfg: RunConfig,
    release: ReleaseDescriptor,
    artifacts: Artifacts,
    target: TargetContext,
) -> None:
    """Install the control plane revision with istioctl.

    Raises:
        ExternalOperationError: If the install fails after retries.
    """
    console.print(Panel.fit(f"Installing control plane {release.release}", style="bold blue"))
    args = control_plane_install_args(cfg, release, artifacts, target)
    executor.retry(CONTROL_PLANE_INSTALL_MAX_ATTEMPTS, Command.istioctl(str(artifacts.istioctl), *args))
    console.print(f"[green]✅ Control plane {release.revision_label} installed[/green]")


# ============================================================================
# Canonical service controller
# ============================================================================

def install_auxiliary_controller(executor: Executor, cfg: RunConfig, artifacts: Artifacts) -> None:
    """Install the canonical service controller and wait until it is available.

    Raises:
        ExternalOperationError: If the apply fails after retries or the wait times out.
    """
    if cfg.disable_canonical_service:
        console.print("[yellow]   Skipping canonical service controller[/yellow]")
        return
    console.print(Panel.fit("Installing canonical service controller", style="bold blue"))
    executor.retry(
        CANONICAL_APPLY_MAX_ATTEMPTS,
        Command.kubectl("apply", "-f", str(artifacts.package_dir / REL_CANONICAL_MANIFEST)),
    )
    console.print("[yellow]ℹ️  Waiting for the canonical service controller to be available...[/yellow]")
    executor.run(Command.kubectl(
        "wait", "--for=condition=available",
        f"--timeout={CANONICAL_WAIT_TIMEOUT_SECONDS}s",
        f"deployment/{CANONICAL_CONTROLLER_DEPLOYMENT}",
        "-n", NS_ASM_SYSTEM,
    ))
    console.print("[green]✅ Canonical service controller is available[/green]")


# ============================================================================
# Summary
# ============================================================================

def print_summary(
    cfg: RunConfig,
    release: ReleaseDescriptor,
    artifacts: Artifacts,
    workspace: Workspace,
) -> None:
    """Print mode-specific next steps and, for human operators, artifact locations."""
    rev = release.revision_label
    istioctl = "istioctl" if workspace.temporary else str(artifacts.istioctl)
    if cfg.mode == MODE_MIGRATE:
        console.print(Panel.fit(
            f"Installed ASM {release.release} alongside the existing control plane.\n\n"
            "Verify the new control plane, then migrate each namespace:\n"
            f"  kubectl label namespace <ns> istio-injection- istio.io/rev={rev} --overwrite\n"
            "  kubectl rollout restart deployment -n <ns>\n\n"
            "Once every workload runs on the new revision, remove the old control plane:\n"
            f"  {istioctl} x uninstall --revision default\n"
            f"  kubectl delete Service,Deployment,HorizontalPodAutoscaler,PodDisruptionBudget "
            f"istiod -n {NS_ISTIO_SYSTEM} --ignore-not-found=true",
            title="Migration complete", style="green",
        ))
    else:
        console.print(Panel.fit(
            f"Installed ASM {release.release} (revision {rev}).\n\n"
            "Enable sidecar injection on your namespaces and restart their workloads:\n"
            f"  kubectl label namespace <ns> istio-injection- istio.io/rev={rev} --overwrite\n"
            "  kubectl rollout restart deployment -n <ns>",
            title="Installation complete", style="green",
        ))
    if cfg.dry_run:
        console.print("[cyan]Dry run: no changes were made.[/cyan]")

    if cfg.uses_service_account:
        return
    if workspace.temporary:
        console.print("[yellow]Installer artifacts were temporary; pass --output-dir to keep them.[/yellow]")
        return
    console.print(f"The ASM package used for installation is at: {artifacts.package_dir}")
    console.print(f"The matching istioctl is at: {artifacts.istioctl}")
