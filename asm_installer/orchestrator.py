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

"""Orchestration that composes the stages into the install/migrate pipeline."""

from __future__ import annotations

from rich.panel import Panel

from asm_installer import console
from asm_installer.cluster import prepare_cluster
from asm_installer.components import (
    configure_package,
    install_auxiliary_controller,
    install_control_plane,
    print_summary,
)
from asm_installer.config import InternalOverrides, ReleaseDescriptor, RunConfig, display_config
from asm_installer.constants import RETRY_BACKOFF_SECONDS
from asm_installer.dependencies import (
    authenticate_service_identity,
    ensure_artifacts,
    ensure_supported_platform,
    ensure_tools_present,
    required_tools,
)
from asm_installer.execution import Command, Executor, OperationKind, Runner, run_with_sh
from asm_installer.project import prepare_project, resolve_operator_identity
from asm_installer.validation import validate
from asm_installer.workspace import workspace_scope


def credentials_command(cfg: RunConfig) -> Command:
    """Command that writes the cluster credentials into the active KUBECONFIG."""
    return Command(
        "gcloud",
        (
            "container", "clusters", "get-credentials", cfg.cluster_name,
            f"--project={cfg.project_id}",
            f"--location={cfg.cluster_location}",
        ),
        OperationKind.CLUSTER,
        fresh_credentials=False,
        read_only=True,
    )


def run(
    cfg: RunConfig,
    *,
    runner: Runner = run_with_sh,
    backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    overrides: InternalOverrides | None = None,
) -> None:
    """Run the full pipeline: dependencies, validation, preparation, install.

    Nothing is mutated before every precondition check has passed. The
    workspace is released on every exit path.

    Args:
        cfg: Validated run configuration.
        runner: Function that runs a single external command.
        backoff_seconds: Fixed wait between retry attempts.
        overrides: Internal overrides, or None to read them from the environment.

    Raises:
        InstallerError: If any stage fails.
    """
    release = ReleaseDescriptor.pinned()
    if overrides is None:
        overrides = InternalOverrides()
    executor = Executor(
        dry_run=cfg.dry_run,
        verbose=cfg.verbose,
        runner=runner,
        backoff_seconds=backoff_seconds,
        credential_refresh=credentials_command(cfg),
    )

    display_config(cfg, release)

    console.print(Panel.fit("Checking dependencies", style="bold blue"))
    ensure_tools_present(required_tools(overrides))
    platform_suffix = ensure_supported_platform()

    with workspace_scope(cfg.output_dir) as workspace:
        authenticate_service_identity(executor, cfg)
        artifacts = ensure_artifacts(executor, workspace, release, platform_suffix, overrides)

        target = validate(executor, cfg, release, artifacts, workspace)
        if cfg.only_validate:
            console.print("[green]✅ Successfully validated all requirements to install ASM[/green]")
            return

        identity = resolve_operator_identity(executor, cfg)
        prepare_project(executor, cfg, identity)
        prepare_cluster(executor, cfg, release, target, identity)

        configure_package(executor, cfg, target, artifacts, overrides)
        install_control_plane(executor, cfg, release, artifacts, target)
        install_auxiliary_controller(executor, cfg, artifacts)
        print_summary(cfg, release, artifacts, workspace)
