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

"""Fatal error taxonomy. Every error here aborts the run with exit status 2."""

from __future__ import annotations


class InstallerError(RuntimeError):
    """Base class for fatal installer errors.

    Attributes:
        remediation: Optional follow-up command or guidance for the operator.
    """

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation


class ConfigurationError(InstallerError):
    """Bad or missing arguments, or dependent options supplied partially."""


class DependencyError(InstallerError):
    """A required tool is missing or the host platform is unsupported."""


class ResourceNotFoundError(InstallerError):
    """The project or cluster does not exist."""


class ResourceInsufficientError(InstallerError):
    """The cluster node pools do not provide enough capacity."""


class TopologyError(InstallerError):
    """Existing control plane is in an unsupported namespace or state."""


class VersionIncompatibleError(InstallerError):
    """The existing control plane cannot be migrated."""


class PermissionOrAPIError(InstallerError):
    """Required APIs are not enabled on the project."""


class ExternalOperationError(InstallerError):
    """An external command failed after exhausting its attempts, or its output was unusable.

    Attributes:
        command: Printable form of the failed command.
        exit_code: Exit status of the last attempt.
        stderr: Captured standard error of the last attempt.
    """

    def __init__(
        self,
        command: str,
        exit_code: int,
        stderr: str = "",
        attempts: int = 1,
        message: str | None = None,
    ) -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        if message is None:
            message = f"Command failed after {attempts} attempt(s) (exit {exit_code}): {command}"
        if detail:
            message = f"{message}\n  {detail}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
