"""Installation of the cluster operator baseline a test class runs against."""

from __future__ import annotations

import copy
import logging
import pathlib
import re
from typing import Any

import yaml

from .config import HarnessSettings
from .kubernetes_controller import KubernetesController, KubernetesControllerException
from .models import GLOBAL_POLL_INTERVAL_SECONDS, GLOBAL_TIMEOUT_SECONDS
from .poller import PredicateCondition, wait_for
from .resources import ResourceTracker

# Installed separately by apply_role_bindings / deploy_cluster_operator
EXCLUDED_MANIFEST_PATTERN = re.compile(r".*(Binding|Deployment)-.*")

ROLE_BINDING_FILES: tuple[str, ...] = (
    "020-RoleBinding-strimzi-cluster-operator.yaml",
    "021-ClusterRoleBinding-strimzi-cluster-operator.yaml",
    "030-ClusterRoleBinding-strimzi-cluster-operator-kafka-broker-delegation.yaml",
    "031-RoleBinding-strimzi-cluster-operator-entity-operator-delegation.yaml",
    "032-RoleBinding-strimzi-cluster-operator-topic-operator-delegation.yaml",
)

OPERATOR_DEPLOYMENT_FILE: str = "050-Deployment-strimzi-cluster-operator.yaml"

WATCHED_NAMESPACES_ENV: str = "STRIMZI_NAMESPACE"


def load_manifest(path: pathlib.Path) -> list[dict[str, Any]]:
    """Load every non-empty YAML document in ``path``."""
    with path.open(encoding="utf-8") as f:
        return [doc for doc in yaml.safe_load_all(f) if doc]


def install_manifests(install_dir: pathlib.Path) -> list[pathlib.Path]:
    """Return the installation manifests in name order, without bindings and deployments."""
    return [
        path
        for path in sorted(install_dir.iterdir())
        if path.suffix in (".yaml", ".yml") and not EXCLUDED_MANIFEST_PATTERN.match(path.name)
    ]


class BaselineInstaller:
    """Applies installation manifests, RBAC bindings and the operator deployment.

    Args:
        k8s_controller: API wrapper used to create objects.
        settings: Harness settings; ``install_dir`` locates the manifests.
    """

    def __init__(self, k8s_controller: KubernetesController, settings: HarnessSettings | None = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.k8s_controller = k8s_controller
        self.settings = settings or HarnessSettings()

    @property
    def install_dir(self) -> pathlib.Path:
        return pathlib.Path(self.settings.install_dir)

    def apply_install_manifests(self, namespace: str) -> list[pathlib.Path]:
        """Apply the baseline installation manifests into ``namespace``."""
        applied = install_manifests(self.install_dir)
        for path in applied:
            self.logger.info(f"creating possibly modified version of {path}")
            for document in load_manifest(path):
                self.k8s_controller.apply_manifest(document, namespace=namespace)
        return applied

    def apply_role_bindings(self, tracker: ResourceTracker, namespace: str, *client_namespaces: str) -> None:
        """Bind the operator's service account in ``namespace`` to each client namespace.

        Args:
            tracker: Tracker that will delete the bindings.
            namespace: Namespace the cluster operator runs in.
            client_namespaces: Namespaces the operator must manage; defaults to ``namespace``.
        """
        for client_namespace in client_namespaces or (namespace,):
            for file_name in ROLE_BINDING_FILES:
                for document in load_manifest(self.install_dir / file_name):
                    binding = self._bind_subjects(document, namespace)
                    kind = binding.get("kind")
                    name = binding["metadata"]["name"]
                    if kind == "RoleBinding":
                        binding["metadata"]["namespace"] = client_namespace
                        self.k8s_controller.apply_manifest(binding, namespace=client_namespace)
                        tracker.delete_later("RoleBinding", name, namespace=client_namespace)
                    elif kind == "ClusterRoleBinding":
                        self.k8s_controller.apply_manifest(binding)
                        tracker.delete_later("ClusterRoleBinding", name, cluster_scoped=True)
                    else:
                        raise KubernetesControllerException(f"{file_name} does not contain a binding: {kind}")

    @staticmethod
    def _bind_subjects(document: dict[str, Any], namespace: str) -> dict[str, Any]:
        binding = copy.deepcopy(document)
        for subject in binding.get("subjects") or []:
            subject["namespace"] = namespace
        return binding

    def deploy_cluster_operator(
        self,
        tracker: ResourceTracker,
        namespace: str,
        watched_namespaces: tuple[str, ...] | list[str] = (),
        poll_interval: float = GLOBAL_POLL_INTERVAL_SECONDS,
        timeout: float = GLOBAL_TIMEOUT_SECONDS,
    ) -> str:
        """Create the cluster operator deployment and wait until it is ready.

        Returns:
            The deployment name.
        """
        documents = load_manifest(self.install_dir / OPERATOR_DEPLOYMENT_FILE)
        if not documents:
            raise KubernetesControllerException(f"{OPERATOR_DEPLOYMENT_FILE} is empty")
        deployment = copy.deepcopy(documents[0])
        watched = ",".join(watched_namespaces or (namespace,))
        containers = deployment["spec"]["template"]["spec"]["containers"]
        env = containers[0].setdefault("env", [])
        for variable in env:
            if variable.get("name") == WATCHED_NAMESPACES_ENV:
                variable.pop("valueFrom", None)
                variable["value"] = watched
                break
        else:
            env.append({"name": WATCHED_NAMESPACES_ENV, "value": watched})

        name = deployment["metadata"]["name"]
        deployment["metadata"]["namespace"] = namespace
        self.k8s_controller.create_deployment(deployment, namespace=namespace)
        tracker.delete_later("Deployment", name, namespace=namespace)
        self.logger.info(f"Cluster operator {name} deployed in {namespace} watching {watched}")

        def _ready() -> bool:
            current = self.k8s_controller.read_deployment(name=name, namespace=namespace)
            if current is None or current.status is None:
                return False
            desired = current.spec.replicas if current.spec.replicas is not None else 1
            return (current.status.ready_replicas or 0) >= desired

        wait_for(f"deployment {name} readiness", poll_interval, timeout, PredicateCondition(_ready))
        return name
