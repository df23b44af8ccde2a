"""Kubernetes API controller for kafkaprobe.

Provides a unified interface to the Kubernetes API for the objects the harness
creates, inspects and cleans up: pods, jobs, config maps, secrets, namespaces,
events, deployments and RBAC bindings.  Also runs commands inside containers
and applies YAML manifests.  Supports both in-cluster and local kubeconfig
authentication.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import kubernetes
import kubernetes.client
import kubernetes.config
import kubernetes.utils
from kubernetes.client import (
    CoreV1Event,
    V1ConfigMap,
    V1Deployment,
    V1Job,
    V1Namespace,
    V1ObjectMeta,
    V1Pod,
    V1Secret,
)
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from .models import ExecResult

_NOT_FOUND = 404
_CONFLICT = 409
_TOO_MANY_REQUESTS = 429


class KubernetesControllerException(Exception):
    """Base exception for KubernetesController errors."""


class KubernetesController:
    """Thin wrapper around the Kubernetes Python client.

    Handles configuration loading (in-cluster or kubeconfig) and provides
    convenience methods for the namespaced objects the harness works with.
    Reads of missing objects return ``None`` and deletes of missing objects
    are no-ops, so that teardown can run more than once.

    Args:
        context: Kubeconfig context name to use directly for cluster connection.
        insecure: When ``True``, disable SSL certificate verification.
    """

    def __init__(self, context: str | None = None, insecure: bool = False) -> None:
        self.logger = logging.getLogger(__name__)

        # Reduce noise from kubernetes client REST logging (only set once)
        k8s_rest_logger = logging.getLogger("kubernetes.client.rest")
        if not k8s_rest_logger.level or k8s_rest_logger.level == logging.NOTSET:
            k8s_rest_logger.setLevel(logging.INFO)

        self._context = context
        self._insecure = insecure

        self._api_client: kubernetes.client.ApiClient | None = None
        self._core_v1: kubernetes.client.CoreV1Api | None = None
        self._apps_v1: kubernetes.client.AppsV1Api | None = None
        self._batch_v1: kubernetes.client.BatchV1Api | None = None
        self._rbac_v1: kubernetes.client.RbacAuthorizationV1Api | None = None

        self._client_lock = threading.Lock()

        self._initialize_client()

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------

    def _initialize_client(self) -> None:
        """Initialise the Kubernetes client.

        Resolution logic:
            - If ``context`` is provided → load kubeconfig with that context.
            - Otherwise → try in-cluster config first, then fall back to the
              default kubeconfig context.
        """
        with self._client_lock:
            if self._api_client:
                return

            try:
                if self._context:
                    kubernetes.config.load_kube_config(context=self._context)
                    self.logger.info(f"Successfully loaded kubeconfig for context: {self._context}")
                else:
                    try:
                        kubernetes.config.load_incluster_config()
                        self.logger.info("Successfully loaded in-cluster configuration.")
                    except kubernetes.config.ConfigException:
                        self.logger.info("In-cluster config not found. Falling back to default kubeconfig context.")
                        kubernetes.config.load_kube_config()
                        self.logger.info("Successfully loaded default kubeconfig context.")

                configuration = kubernetes.client.Configuration.get_default_copy()
                if self._insecure:
                    configuration.verify_ssl = False
                    configuration.assert_hostname = False

                self._api_client = kubernetes.client.ApiClient(configuration)
                self._core_v1 = kubernetes.client.CoreV1Api(self._api_client)
                self._apps_v1 = kubernetes.client.AppsV1Api(self._api_client)
                self._batch_v1 = kubernetes.client.BatchV1Api(self._api_client)
                self._rbac_v1 = kubernetes.client.RbacAuthorizationV1Api(self._api_client)

            except Exception as e:
                identifier = self._context or "in-cluster/default"
                error_msg = f"Failed to initialize Kubernetes client for {identifier}: {e}"
                self.logger.error(error_msg)
                raise KubernetesControllerException(error_msg) from e

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _labels_to_selector(match_labels: dict[str, str]) -> str:
        """Convert a label dict to a comma-separated Kubernetes label selector string."""
        return ",".join(f"{k}={v}" for k, v in match_labels.items())

    def _read_or_none(self, read_fn: Callable[..., Any], resource_label: str, **kwargs: Any) -> Any:
        """Read a single object, returning ``None`` when it does not exist.

        Raises:
            KubernetesControllerException: On any API error other than 404.
        """
        try:
            return read_fn(**kwargs)
        except ApiException as e:
            if e.status == _NOT_FOUND:
                return None
            raise KubernetesControllerException(f"Failed to read {resource_label} {kwargs.get('name')}: {e}") from e

    def _delete_ignoring_missing(self, delete_fn: Callable[..., Any], resource_label: str, **kwargs: Any) -> bool:
        """Delete a single object; a missing object is not an error.

        Returns:
            ``True`` if a delete request was accepted, ``False`` if the object was already gone.

        Raises:
            KubernetesControllerException: On any API error other than 404.
        """
        try:
            delete_fn(**kwargs)
            return True
        except ApiException as e:
            if e.status == _NOT_FOUND:
                self.logger.debug(f"{resource_label} {kwargs.get('name')} already deleted")
                return False
            raise KubernetesControllerException(f"Failed to delete {resource_label} {kwargs.get('name')}: {e}") from e

    def _create(self, create_fn: Callable[..., Any], resource_label: str, **kwargs: Any) -> Any:
        try:
            return create_fn(**kwargs)
        except ApiException as e:
            raise KubernetesControllerException(f"Failed to create {resource_label}: {e}") from e

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    def list_pods(
        self,
        namespace: str,
        labels: dict[str, str] | None = None,
        limit: int = 100,
        timeout: int = 30,
    ) -> list[V1Pod]:
        """Return pods in ``namespace``, optionally filtered by labels."""
        label_selector = self._labels_to_selector(labels) if labels else None
        return self._list_pods_with_selector(
            namespace=namespace, label_selector=label_selector, limit=limit, timeout=timeout,
        )

    def read_pod(self, name: str, namespace: str) -> V1Pod | None:
        return self._read_or_none(self._core_v1.read_namespaced_pod, "Pod", name=name, namespace=namespace)

    def delete_pod(self, name: str, namespace: str) -> bool:
        return self._delete_ignoring_missing(
            self._core_v1.delete_namespaced_pod, "Pod", name=name, namespace=namespace,
        )

    def read_pod_log(
        self, name: str, namespace: str, container: str | None = None, since_seconds: int | None = None,
    ) -> str:
        """Return the log of a pod, or of one of its containers, optionally only its last ``since_seconds``."""
        kwargs: dict[str, Any] = {"name": name, "namespace": namespace}
        if container:
            kwargs["container"] = container
        if since_seconds is not None:
            kwargs["since_seconds"] = since_seconds
        try:
            return self._core_v1.read_namespaced_pod_log(**kwargs)
        except ApiException as e:
            target = f"{name}/{container}" if container else name
            raise KubernetesControllerException(f"Could not read log of pod {target}: {e}") from e

    def pod_name_with_labels(self, namespace: str, labels: dict[str, str]) -> str:
        """Return the name of the single pod carrying ``labels``.

        Raises:
            KubernetesControllerException: If zero or several pods match.
        """
        pods = self.list_pods(namespace=namespace, labels=labels)
        if len(pods) != 1:
            raise KubernetesControllerException(f"There are {len(pods)} pods with labels {labels}")
        return pods[0].metadata.name

    def exec_in_pod(
        self,
        name: str,
        namespace: str,
        command: list[str],
        container: str | None = None,
    ) -> ExecResult:
        """Run ``command`` in a running container and capture its output.

        Returns:
            ``ExecResult`` with stdout, stderr and the command's exit status.

        Raises:
            KubernetesControllerException: If the exec channel cannot be opened.
        """
        kwargs: dict[str, Any] = {
            "command": command,
            "stderr": True,
            "stdin": False,
            "stdout": True,
            "tty": False,
            "_preload_content": False,
        }
        if container:
            kwargs["container"] = container
        try:
            resp = stream(self._core_v1.connect_get_namespaced_pod_exec, name, namespace, **kwargs)
        except ApiException as e:
            raise KubernetesControllerException(f"Could not exec {command} in pod {name}: {e}") from e

        stdout: list[str] = []
        stderr: list[str] = []
        while resp.is_open():
            resp.update(timeout=1)
            if resp.peek_stdout():
                stdout.append(resp.read_stdout())
            if resp.peek_stderr():
                stderr.append(resp.read_stderr())
        resp.close()
        return ExecResult(stdout="".join(stdout), stderr="".join(stderr), return_code=resp.returncode)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: V1Job, namespace: str) -> V1Job:
        return self._create(self._batch_v1.create_namespaced_job, "Job", namespace=namespace, body=job)

    def read_job(self, name: str, namespace: str) -> V1Job | None:
        return self._read_or_none(self._batch_v1.read_namespaced_job, "Job", name=name, namespace=namespace)

    def delete_job(self, name: str, namespace: str) -> bool:
        # Background propagation removes the job's pods along with it
        return self._delete_ignoring_missing(
            self._batch_v1.delete_namespaced_job,
            "Job",
            name=name,
            namespace=namespace,
            propagation_policy="Background",
        )

    # ------------------------------------------------------------------
    # Config maps / secrets
    # ------------------------------------------------------------------

    def list_config_maps(self, namespace: str) -> list[V1ConfigMap]:
        try:
            return self._core_v1.list_namespaced_config_map(namespace=namespace).items
        except ApiException as e:
            raise KubernetesControllerException(f"Failed to list ConfigMaps in {namespace}: {e}") from e

    def delete_config_map(self, name: str, namespace: str) -> bool:
        return self._delete_ignoring_missing(
            self._core_v1.delete_namespaced_config_map, "ConfigMap", name=name, namespace=namespace,
        )

    def read_secret(self, name: str, namespace: str) -> V1Secret | None:
        return self._read_or_none(self._core_v1.read_namespaced_secret, "Secret", name=name, namespace=namespace)

    def delete_secret(self, name: str, namespace: str) -> bool:
        return self._delete_ignoring_missing(
            self._core_v1.delete_namespaced_secret, "Secret", name=name, namespace=namespace,
        )

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def read_namespace(self, name: str) -> V1Namespace | None:
        return self._read_or_none(self._core_v1.read_namespace, "Namespace", name=name)

    def create_namespace(self, name: str) -> V1Namespace:
        body = V1Namespace(metadata=V1ObjectMeta(name=name))
        return self._create(self._core_v1.create_namespace, "Namespace", body=body)

    def delete_namespace(self, name: str) -> bool:
        return self._delete_ignoring_missing(self._core_v1.delete_namespace, "Namespace", name=name)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(self, namespace: str) -> list[CoreV1Event]:
        try:
            return self._core_v1.list_namespaced_event(namespace=namespace).items
        except ApiException as e:
            raise KubernetesControllerException(f"Failed to list events in {namespace}: {e}") from e

    def get_events(self, namespace: str, kind: str, name: str) -> list[CoreV1Event]:
        """Return the events whose involved object is ``kind``/``name``."""
        return [
            event
            for event in self.list_events(namespace=namespace)
            if event.involved_object.kind == kind and event.involved_object.name == name
        ]

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def create_deployment(self, deployment: V1Deployment | dict[str, Any], namespace: str) -> V1Deployment:
        return self._create(
            self._apps_v1.create_namespaced_deployment, "Deployment", namespace=namespace, body=deployment,
        )

    def read_deployment(self, name: str, namespace: str) -> V1Deployment | None:
        return self._read_or_none(
            self._apps_v1.read_namespaced_deployment, "Deployment", name=name, namespace=namespace,
        )

    def delete_deployment(self, name: str, namespace: str) -> bool:
        return self._delete_ignoring_missing(
            self._apps_v1.delete_namespaced_deployment, "Deployment", name=name, namespace=namespace,
        )

    # ------------------------------------------------------------------
    # RBAC
    # ------------------------------------------------------------------

    def delete_role_binding(self, name: str, namespace: str) -> bool:
        return self._delete_ignoring_missing(
            self._rbac_v1.delete_namespaced_role_binding, "RoleBinding", name=name, namespace=namespace,
        )

    def delete_cluster_role_binding(self, name: str) -> bool:
        return self._delete_ignoring_missing(
            self._rbac_v1.delete_cluster_role_binding, "ClusterRoleBinding", name=name,
        )

    # ------------------------------------------------------------------
    # Generic dispatch used by the resource tracker
    # ------------------------------------------------------------------

    def delete_object(self, kind: str, name: str, namespace: str | None = None) -> bool:
        """Delete an object by kind and name.

        Raises:
            KubernetesControllerException: If ``kind`` is not supported.
        """
        namespaced: dict[str, Callable[[str, str], bool]] = {
            "Pod": self.delete_pod,
            "Job": self.delete_job,
            "ConfigMap": self.delete_config_map,
            "Secret": self.delete_secret,
            "Deployment": self.delete_deployment,
            "RoleBinding": self.delete_role_binding,
        }
        if kind in namespaced:
            if not namespace:
                raise KubernetesControllerException(f"{kind} {name} requires a namespace")
            return namespaced[kind](name, namespace)
        if kind == "ClusterRoleBinding":
            return self.delete_cluster_role_binding(name)
        if kind == "Namespace":
            return self.delete_namespace(name)
        raise KubernetesControllerException(f"Unsupported kind for deletion: {kind}")

    def apply_manifest(self, document: dict[str, Any], namespace: str | None = None) -> list[Any]:
        """Create the objects described by one YAML document.

        Objects that already exist are left as they are.

        Raises:
            KubernetesControllerException: On any failure other than a conflict.
        """
        try:
            return kubernetes.utils.create_from_dict(self._api_client, document, namespace=namespace)
        except kubernetes.utils.FailToCreateError as e:
            failures = [exc for exc in e.api_exceptions if exc.status != _CONFLICT]
            if failures:
                raise KubernetesControllerException(
                    f"Failed to apply {document.get('kind')} {document.get('metadata', {}).get('name')}: {failures}"
                ) from e
            self.logger.info(f"{document.get('kind')} {document.get('metadata', {}).get('name')} already exists")
            return []

    # ------------------------------------------------------------------
    # Pod listing with pagination
    # ------------------------------------------------------------------

    def _list_pods_with_selector(
        self, namespace: str, label_selector: str | None, limit: int, timeout: int,
    ) -> list[V1Pod]:
        """List pods matching a label selector with pagination and timeout.

        Server-side errors and dropped connections are retried until ``timeout``
        expires; a client error (4xx other than 429) fails at once.  A partial
        listing is never returned.

        Args:
            namespace: Kubernetes namespace.
            label_selector: Comma-separated ``key=value`` label selector, or ``None`` for all pods.
            limit: Maximum pods per API page.
            timeout: Total timeout in seconds for the paginated listing.

        Returns:
            Aggregated list of ``V1Pod`` objects.

        Raises:
            KubernetesControllerException: If the listing is refused or does not finish in time.
        """
        start = time.time()
        pods: list[V1Pod] = []
        _continue: str | None = None
        last_error: Exception | None = None

        while time.time() - start < timeout:
            try:
                kwargs: dict[str, Any] = {"namespace": namespace, "_continue": _continue, "limit": limit}
                if label_selector:
                    kwargs["label_selector"] = label_selector
                ret = self._core_v1.list_namespaced_pod(**kwargs)
                pods.extend(ret.items)
                _continue = ret.metadata._continue
                if not _continue:
                    return pods
                continue
            except ApiException as e:
                if e.status is not None and e.status < 500 and e.status != _TOO_MANY_REQUESTS:
                    raise KubernetesControllerException(
                        f"Failed to list pods in {namespace} with selector {label_selector}: {e}"
                    ) from e
                last_error = e
            except Exception as e:
                last_error = e
            self.logger.warning(f"Error listing pods with selector {label_selector}: {last_error}")
            time.sleep(1)

        raise KubernetesControllerException(
            f"Listing pods in {namespace} with selector {label_selector} did not finish within {timeout}s: {last_error}"
        ) from last_error
