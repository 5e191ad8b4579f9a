#!/usr/bin/env python3
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

"""
install_asm.py - Install or migrate to Anthos Service Mesh on a GKE cluster.

Validates the project, cluster, node pools, enabled APIs and any existing
control plane, then prepares the project and cluster and installs the
managed control plane. Safe to re-run: every step is idempotent.

Environment Variables:
    Every option can also be set through its uppercase environment variable
    (PROJECT_ID, CLUSTER_NAME, CLUSTER_LOCATION, MODE, CA, OPERATOR_OVERLAY,
    SERVICE_ACCOUNT, KEY_FILE, OUTPUT_DIR, ENABLE_APIS, DISABLE_CANONICAL_SERVICE,
    DRY_RUN, VERBOSE, ONLY_VALIDATE). Command-line flags take precedence.

Examples:
    # Fresh install with Mesh CA
    ./install_asm.py -p my-project -n my-cluster -l us-central1-c -m install

    # Migrate from OSS Istio, keeping the artifacts
    ./install_asm.py -p my-project -n my-cluster -l us-central1-c -m migrate -c citadel -D ./asm-out

    # Only check the preconditions
    ./install_asm.py -p my-project -n my-cluster -l us-central1-c -m install --only-validate

Exit status is 0 on success and 2 on any validation, configuration,
dependency or external command failure.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer
from rich.markup import escape

from asm_installer import PROG_NAME, console, logger
from asm_installer.config import ReleaseDescriptor, resolve_config
from asm_installer.errors import InstallerError
from asm_installer.orchestrator import run

EXIT_FATAL = 2

app = typer.Typer(
    help="Install or migrate to Anthos Service Mesh on a GKE cluster.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(ReleaseDescriptor.pinned().release)
        raise typer.Exit()


def _report_fatal(err: InstallerError) -> None:
    console.print(f"[red]{PROG_NAME}: ❌ {escape(str(err))}[/red]")
    if err.remediation:
        console.print(f"[yellow]{PROG_NAME}: {escape(err.remediation)}[/yellow]")


@app.command()
def install(
    cluster_location: str | None = typer.Option(
        None, "-l", "--cluster-location", "--cluster_location", help="Zone or region of the cluster"),
    cluster_name: str | None = typer.Option(
        None, "-n", "--cluster-name", "--cluster_name", help="Name of the cluster"),
    project_id: str | None = typer.Option(
        None, "-p", "--project-id", "--project_id", help="Project that owns the cluster"),
    mode: str | None = typer.Option(
        None, "-m", "--mode", help="install or migrate"),
    ca: str | None = typer.Option(
        None, "-c", "--ca", help="citadel or mesh_ca (default for install: mesh_ca)"),
    operator_overlay: Path | None = typer.Option(
        None, "-o", "--operator-overlay", "--operator_overlay", help="IstioOperator overlay file"),
    service_account: str | None = typer.Option(
        None, "-s", "--service-account", "--service_account", help="Service account to act as"),
    key_file: Path | None = typer.Option(
        None, "-k", "--key-file", "--key_file", help="Key file for the service account"),
    output_dir: Path | None = typer.Option(
        None, "-D", "--output-dir", "--output_dir", help="Directory to keep the package and istioctl in"),
    enable_apis: bool = typer.Option(
        False, "-e", "--enable-apis", "--enable_apis", help="Enable required APIs on the project"),
    disable_canonical_service: bool = typer.Option(
        False, "--disable-canonical-service", "--disable_canonical_service",
        help="Do not install the canonical service controller"),
    dry_run: bool = typer.Option(
        False, "--dry-run", "--dry_run", help="Print mutating commands instead of running them"),
    verbose: bool = typer.Option(
        False, "-v", "--verbose", help="Print every command before and after running it"),
    only_validate: bool = typer.Option(
        False, "--only-validate", "--only_validate", help="Run the precondition checks and exit"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Print the ASM release and exit"),
) -> None:
    """Validate the environment, then install or migrate the mesh control plane."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        cfg = resolve_config(
            cluster_location=cluster_location,
            cluster_name=cluster_name,
            project_id=project_id,
            mode=mode,
            ca=ca,
            operator_overlay=operator_overlay,
            service_account=service_account,
            key_file=key_file,
            output_dir=output_dir,
            enable_apis=enable_apis,
            disable_canonical_service=disable_canonical_service,
            dry_run=dry_run,
            verbose=verbose,
            only_validate=only_validate,
        )
        if cfg.verbose:
            logger.setLevel(logging.DEBUG)
        run(cfg)
    except InstallerError as err:
        _report_fatal(err)
        raise typer.Exit(code=EXIT_FATAL) from err


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]{PROG_NAME}: ❌ {escape(str(e))}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
