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

"""Constants, release loading, and release_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

RELEASE_FILE = Path(__file__).resolve().parent / "release.yaml"


def load_release(path: Path = RELEASE_FILE) -> dict:
    """Read the pinned ASM version numbers and artifact sources.

    ``release.yaml`` holds a ``release`` mapping (major, minor, point, rev)
    and a ``packages`` mapping with the kpt repository and tarball bucket.
    """
    return yaml.safe_load(path.read_text()) or {}


RELEASE = load_release()


def release_value(*keys: str, default: Any = None) -> Any:
    """Look up a nested release.yaml entry, e.g. ``release_value("packages", "kpt_repo")``.

    Returns *default* when any level of the path is absent.
    """
    node: Any = RELEASE
    for key in keys:
        node = node.get(key) if isinstance(node, dict) else None
        if node is None:
            return default
    return node


# -- Modes and certificate authorities --
MODE_INSTALL = "install"
MODE_MIGRATE = "migrate"
CA_CITADEL = "citadel"
CA_MESH_CA = "mesh_ca"

# -- Retry policy --
RETRY_BACKOFF_SECONDS = 2
CREDENTIALS_MAX_ATTEMPTS = 2
PACKAGE_FETCH_MAX_ATTEMPTS = 3
ISTIO_VERSION_MAX_ATTEMPTS = 3
CLUSTER_UPDATE_MAX_ATTEMPTS = 2
CONTROL_PLANE_INSTALL_MAX_ATTEMPTS = 5
CANONICAL_APPLY_MAX_ATTEMPTS = 3
CANONICAL_WAIT_TIMEOUT_SECONDS = 600

# -- Capacity requirements --
MIN_MACHINE_VCPUS = 4
MIN_TOTAL_VCPUS = 8

# -- Platforms --
SUPPORTED_ARCHITECTURES = ("x86_64", "amd64")
PLATFORM_SUFFIXES = {"linux": "linux-amd64", "darwin": "osx"}

# -- Namespaces and workloads --
NS_ISTIO_SYSTEM = "istio-system"
NS_ASM_SYSTEM = "asm-system"
CONTROL_PLANE_COMPONENT = "istiod"
CANONICAL_CONTROLLER_DEPLOYMENT = "canonical-service-controller-manager"
CLUSTER_ADMIN_BINDING = "cluster-admin-binding"

# -- Version markers --
MANAGED_DISTRIBUTION_MARKER = "asm"

# -- Cluster labels --
LABEL_ASM_VERSION = "asmv"
LABEL_MESH_ID = "mesh_id"

# -- Package layout --
REL_PACKAGE_DIR = "asm"
# Relative to the package directory
REL_OPERATOR_MANIFEST = "istio/istio-operator.yaml"
REL_CITADEL_OPTIONS = "istio/options/citadel-ca.yaml"
REL_CANONICAL_MANIFEST = "canonical-service/controller.yaml"

# -- kpt setters --
SETTER_CLUSTER = "gcloud.container.cluster"
SETTER_PROJECT = "gcloud.core.project"
SETTER_PROJECT_NUMBER = "gcloud.project.environProjectNumber"
SETTER_LOCATION = "gcloud.compute.location"
SETTER_IMAGE_HUB = "anthos.servicemesh.hub"
SETTER_IMAGE_TAG = "anthos.servicemesh.tag"

# -- Endpoints --
MESH_CA_INIT_URL = "https://meshconfig.googleapis.com/v1alpha1/projects/{project_id}:initialize"
MESH_CA_INIT_TIMEOUT = "600"
WORKLOAD_POOL_SUFFIX = "svc.id.goog"
SERVICE_ACCOUNT_DOMAIN = "gserviceaccount.com"

REQUIRED_APIS = (
    "container.googleapis.com",
    "compute.googleapis.com",
    "monitoring.googleapis.com",
    "logging.googleapis.com",
    "cloudtrace.googleapis.com",
    "meshca.googleapis.com",
    "meshtelemetry.googleapis.com",
    "meshconfig.googleapis.com",
    "iamcredentials.googleapis.com",
    "anthos.googleapis.com",
    "gkeconnect.googleapis.com",
    "gkehub.googleapis.com",
    "cloudresourcemanager.googleapis.com",
)

OPERATOR_ROLES = (
    "roles/editor",
    "roles/compute.admin",
    "roles/container.admin",
    "roles/resourcemanager.projectIamAdmin",
    "roles/iam.serviceAccountAdmin",
    "roles/iam.serviceAccountKeyAdmin",
    "roles/gkehub.admin",
)
