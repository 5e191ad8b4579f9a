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

"""Configuration classes, release descriptor, and config resolution/display."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from asm_installer import console
from asm_installer.constants import CA_MESH_CA, MODE_INSTALL, MODE_MIGRATE, release_value
from asm_installer.errors import ConfigurationError


# ============================================================================
# Configuration classes
# ============================================================================

class RunConfig(BaseSettings):
    """Run configuration, auto-loaded from same-named env vars (e.g. PROJECT_ID).

    Values passed to the constructor take precedence over the environment.
    The model is frozen; no stage mutates it after resolution.

    Attributes:
        project_id: Cloud project that owns the cluster.
        cluster_name: Name of the target cluster.
        cluster_location: Zone or region of the target cluster.
        mode: ``install`` for a fresh install, ``migrate`` for an OSS migration.
        ca: Certificate authority, ``citadel`` or ``mesh_ca``.
        operator_overlay: Optional IstioOperator overlay file.
        service_account: Optional service account to act as.
        key_file: Key file for ``service_account``.
        output_dir: Directory that keeps the fetched package and istioctl.
        enable_apis: Allow enabling the required APIs on the project.
        disable_canonical_service: Skip the canonical service controller.
        dry_run: Print mutating commands instead of running them.
        verbose: Print every command before and after running it.
        only_validate: Stop after the precondition checks.
    """

    model_config = SettingsConfigDict(extra="ignore", frozen=True)

    project_id: str
    cluster_name: str
    cluster_location: str
    mode: Literal["install", "migrate"]
    ca: Literal["citadel", "mesh_ca"] | None = None
    operator_overlay: Path | None = None
    service_account: str | None = None
    key_file: Path | None = None
    output_dir: Path | None = None
    enable_apis: bool = False
    disable_canonical_service: bool = False
    dry_run: bool = False
    verbose: bool = False
    only_validate: bool = False

    @model_validator(mode="before")
    @classmethod
    def _default_ca(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {key: value for key, value in data.items() if value != ""}
        if data.get("mode") == MODE_INSTALL and data.get("ca") is None:
            data["ca"] = CA_MESH_CA
        return data

    @field_validator("operator_overlay", "key_file", "output_dir")
    @classmethod
    def _absolute_path(cls, value: Path | None) -> Path | None:
        # The run later changes directory into its workspace.
        return value.expanduser().resolve() if value is not None else None

    @model_validator(mode="after")
    def _check_dependent_options(self) -> RunConfig:
        if self.mode == MODE_MIGRATE and self.ca is None:
            raise ValueError("--ca is required when --mode is migrate")
        if bool(self.service_account) != bool(self.key_file):
            raise ValueError("--service-account and --key-file must be supplied together")
        if self.key_file is not None and not self.key_file.is_file():
            raise ValueError(f"Couldn't find key file {self.key_file}")
        return self

    @property
    def uses_service_account(self) -> bool:
        return self.service_account is not None


class InternalOverrides(BaseSettings):
    """Non-production overrides, auto-loaded from _CI_* env vars.

    Attributes:
        asm_image_location: Image hub override for the control plane.
        asm_image_tag: Image tag override for the control plane.
        asm_pkg_location: ``gs://`` bucket path serving release tarballs.
    """

    model_config = SettingsConfigDict(env_prefix="_CI_", extra="ignore", frozen=True)

    asm_image_location: str | None = None
    asm_image_tag: str | None = None
    asm_pkg_location: str | None = None


# ============================================================================
# Release descriptor
# ============================================================================

@dataclass(frozen=True)
class ReleaseDescriptor:
    """Release identifiers derived from the pinned version numbers.

    Attributes:
        major: Major version.
        minor: Minor version.
        point: Patch version.
        rev: Managed distribution revision.
    """

    major: int
    minor: int
    point: int
    rev: int

    @classmethod
    def pinned(cls) -> ReleaseDescriptor:
        """Build the descriptor for the release pinned in release.yaml."""
        return cls(
            major=int(release_value("release", "major")),
            minor=int(release_value("release", "minor")),
            point=int(release_value("release", "point")),
            rev=int(release_value("release", "rev")),
        )

    @property
    def release(self) -> str:
        return f"{self.major}.{self.minor}.{self.point}-asm.{self.rev}"

    @property
    def release_line(self) -> str:
        """Major.minor prefix (trailing dot included) used for migration matching."""
        return f"{self.major}.{self.minor}."

    @property
    def revision_label(self) -> str:
        return f"asm-{self.major}{self.minor}{self.point}-{self.rev}"

    @property
    def kpt_branch(self) -> str:
        return f"release-{self.major}.{self.minor}-asm"

    @property
    def version_label(self) -> str:
        """Release string in a form accepted as a cluster label value."""
        return self.release.replace(".", "-")


@dataclass(frozen=True)
class TargetContext:
    """Identifiers resolved during validation and consumed by later stages.

    Attributes:
        project_number: Numeric project identifier.
        kubeconfig: Scoped credential file holding the cluster credentials.
    """

    project_number: str
    kubeconfig: Path


# ============================================================================
# Config resolution
# ============================================================================

def _describe_error(err: dict) -> str:
    loc = ".".join(str(part) for part in err["loc"])
    if err["type"] == "missing":
        return f"--{loc.replace('_', '-')} is required"
    msg = err["msg"].removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg


def resolve_config(**overrides: Any) -> RunConfig:
    """Merge CLI overrides, environment variables, and defaults into a RunConfig.

    Resolution priority: CLI arguments > environment variables > defaults.
    ``None`` and ``False`` overrides are treated as "not given" so the
    environment can still supply the value.

    Args:
        **overrides: RunConfig field values taken from the command line.

    Returns:
        Validated, frozen RunConfig.

    Raises:
        ConfigurationError: If any option is missing, invalid, or inconsistent.
    """
    given = {key: value for key, value in overrides.items() if value is not None and value is not False}
    try:
        return RunConfig(**given)
    except ValidationError as exc:
        problems = "\n".join(f"  - {_describe_error(err)}" for err in exc.errors())
        raise ConfigurationError(
            f"Invalid configuration:\n{problems}",
            remediation="Run with --help for usage.",
        ) from exc


# ============================================================================
# Display
# ============================================================================

def display_config(cfg: RunConfig, release: ReleaseDescriptor) -> None:
    """Print the resolved configuration.

    Args:
        cfg: Resolved run configuration.
        release: Release being installed.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print(f"  project_id      : {cfg.project_id}")
    console.print(f"  cluster         : {cfg.cluster_name} ({cfg.cluster_location})")
    console.print(f"  mode            : {cfg.mode}")
    console.print(f"  ca              : {cfg.ca}")
    console.print(f"  release         : {release.release} (revision {release.revision_label})")
    if cfg.operator_overlay:
        console.print(f"  overlay         : {cfg.operator_overlay}")
    if cfg.service_account:
        console.print(f"  service_account : {cfg.service_account}")
    console.print(f"  output_dir      : {cfg.output_dir or '(temporary)'}")
    flags = [
        name for name, enabled in (
            ("enable-apis", cfg.enable_apis),
            ("disable-canonical-service", cfg.disable_canonical_service),
            ("dry-run", cfg.dry_run),
            ("verbose", cfg.verbose),
            ("only-validate", cfg.only_validate),
        ) if enabled
    ]
    if flags:
        console.print(f"  flags           : {', '.join(flags)}")
