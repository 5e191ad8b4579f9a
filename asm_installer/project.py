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

"""Project preparation: operator IAM roles, API enablement, and Mesh CA init."""

from __future__ import annotations

from rich.panel import Panel

from asm_installer import console
from asm_installer.config import RunConfig
from asm_installer.constants import (
    CA_MESH_CA,
    MESH_CA_INIT_TIMEOUT,
    MESH_CA_INIT_URL,
    OPERATOR_ROLES,
    REQUIRED_APIS,
    SERVICE_ACCOUNT_DOMAIN,
)
from asm_installer.errors import ConfigurationError
from asm_installer.execution import Command, Executor


def resolve_operator_identity(executor: Executor, cfg: RunConfig) -> str:
    """Return the configured service account, or the active gcloud account.

    Raises:
        ConfigurationError: If no account is active.
    """
    if cfg.service_account:
        return cfg.service_account
    account = executor.query(Command.gcloud("config", "get-value", "core/account")).strip()
    if not account:
        raise ConfigurationError(
            "No active gcloud account found.",
            remediation="Log in with: gcloud auth login",
        )
    return account


def iam_member(identity: str) -> str:
    """IAM member string for *identity* (``serviceAccount:`` or ``user:``)."""
    kind = "serviceAccount" if identity.endswith(SERVICE_ACCOUNT_DOMAIN) else "user"
    return f"{kind}:{identity}"


def held_roles(policy: dict, member: str) -> set[str]:
    """Roles granted to *member* by unconditional bindings in an IAM policy."""
    return {
        binding["role"]
        for binding in policy.get("bindings") or []
        if member in (binding.get("members") or []) and not binding.get("condition")
    }


def bind_operator_roles(executor: Executor, cfg: RunConfig, identity: str) -> None:
    """Grant the operator every required project role it does not hold yet.

    Args:
        executor: Command executor.
        cfg: Run configuration.
        identity: Operator account or service account email.
    """
    member = iam_member(identity)
    policy = executor.query_json(Command.gcloud(
        "projects", "get-iam-policy", cfg.project_id, "--format=json",
    ), {})
    held = held_roles(policy, member)
    for role in OPERATOR_ROLES:
        if role in held:
            console.print(f"[yellow]   {role} already granted[/yellow]")
            continue
        executor.run(Command.gcloud(
            "projects", "add-iam-policy-binding", cfg.project_id,
            f"--member={member}",
            f"--role={role}",
            "--condition=None",
            "--format=none",
        ))
        console.print(f"[green]  ✓ Granted {role} to {member}[/green]")


def enable_required_apis(executor: Executor, cfg: RunConfig) -> None:
    """Enable every required API in one call, when permitted."""
    if not cfg.enable_apis:
        return
    console.print("[yellow]ℹ️  Enabling required APIs...[/yellow]")
    executor.run(Command.gcloud("services", "enable", f"--project={cfg.project_id}", *REQUIRED_APIS))
    console.print("[green]  ✓ Required APIs enabled[/green]")


def initialize_managed_ca(executor: Executor, cfg: RunConfig) -> None:
    """Ask the Mesh CA provisioning endpoint to initialize the project."""
    if cfg.ca != CA_MESH_CA:
        return
    console.print("[yellow]ℹ️  Initializing Mesh CA...[/yellow]")
    token = executor.query(Command.gcloud("auth", "print-access-token")).strip()
    # The bearer header is read from stdin so the token never appears in the process list.
    executor.run(Command.local(
        "curl", "--request", "POST", "--silent", "--show-error", "--fail-with-body",
        "--header", f"X-Server-Timeout: {MESH_CA_INIT_TIMEOUT}",
        "--header", "Content-Type: application/json",
        "--header", "@-",
        "--data", "",
        MESH_CA_INIT_URL.format(project_id=cfg.project_id),
        stdin=f"Authorization: Bearer {token}\n",
    ))
    console.print("[green]  ✓ Mesh CA initialized[/green]")


def prepare_project(executor: Executor, cfg: RunConfig, identity: str) -> None:
    """Bind operator roles, enable APIs, and initialize Mesh CA."""
    console.print(Panel.fit(f"Preparing project {cfg.project_id}", style="bold blue"))
    bind_operator_roles(executor, cfg, identity)
    enable_required_apis(executor, cfg)
    initialize_managed_ca(executor, cfg)
