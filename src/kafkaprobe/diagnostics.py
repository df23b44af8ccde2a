"""Diagnostic capture for kafkaprobe.

Collects cluster-state snapshots (events, config maps, container logs) into a
fresh timestamped directory, and runs ad-hoc diagnostic dumps with per-task
error isolation so that one missing artifact never hides another, nor the
failure that triggered the collection.  Also searches the cluster operator
log for errors logged during a scenario.
"""

from __future__ import annotations

import logging
import pathlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import kubernetes.client
import yaml
from kubernetes.client import CoreV1Event

from .exceptions import UnexpectedErrorsLoggedError
from .kubernetes_controller import KubernetesController, KubernetesControllerException
from .models import DiagnosticSnapshot, DiagnosticTaskResult

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT: str = "%Y%m%d_%H%M%S"

EVENTS_DIR: str = "events"
CONFIG_MAPS_DIR: str = "configMaps"

CLUSTER_OPERATOR_DEPLOYMENT: str = "strimzi-cluster-operator"
OPERATOR_ERROR_TERMS: tuple[str, ...] = ("Exception", "Error", "Throwable")


@dataclass(frozen=True)
class DiagnosticTask:
    """A named, independent diagnostic action."""

    name: str
    action: Callable[[], Any]


def run_isolated(tasks: Iterable[DiagnosticTask]) -> list[DiagnosticTaskResult]:
    """Run every task, logging and recording failures instead of raising them."""
    results: list[DiagnosticTaskResult] = []
    for task in tasks:
        try:
            task.action()
            results.append(DiagnosticTaskResult(name=task.name, succeeded=True))
        except Exception as e:
            logger.info(f"{task.name} not available: {e}")
            results.append(DiagnosticTaskResult(name=task.name, succeeded=False, error=str(e)))
    return results


def to_yaml(obj: Any) -> str:
    """Render a Kubernetes client model (or plain data) as YAML."""
    data = kubernetes.client.ApiClient().sanitize_for_serialization(obj)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def indent(text: str, prefix: str = "    ") -> str:
    return "".join(prefix + line for line in text.splitlines(keepends=True))


def format_events(events: list[CoreV1Event]) -> str:
    """Render events one per line, oldest first, like ``kubectl get events``."""

    def _sort_key(event: CoreV1Event) -> str:
        return str(event.last_timestamp or event.event_time or event.metadata.creation_timestamp or "")

    lines = ["LAST SEEN\tTYPE\tREASON\tOBJECT\tMESSAGE"]
    for event in sorted(events, key=_sort_key):
        involved = event.involved_object
        lines.append(
            f"{_sort_key(event)}\t{event.type}\t{event.reason}\t"
            f"{involved.kind}/{involved.name}\t{(event.message or '').strip()}"
        )
    return "\n".join(lines) + "\n"


class LogCollector:
    """Writes the diagnostic state of one namespace to disk.

    Args:
        k8s_controller: API wrapper used to read cluster state.
        namespace: Namespace to collect from.
        clock: Returns the current time; used for the directory timestamp.
    """

    def __init__(
        self,
        k8s_controller: KubernetesController,
        namespace: str,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.k8s_controller = k8s_controller
        self.namespace = namespace
        self._clock = clock

    def _run_directory(self, root: pathlib.Path, test_class: str, test_name: str) -> pathlib.Path:
        """Return a directory for this run that does not exist yet."""
        timestamp = self._clock().strftime(TIMESTAMP_FORMAT)
        base_name = f"{test_class}.{test_name}_{timestamp}" if test_name else timestamp
        candidate = root / base_name
        suffix = 1
        while candidate.exists():
            candidate = root / f"{base_name}_{suffix}"
            suffix += 1
        return candidate

    def collect(self, root: str | pathlib.Path, test_class: str = "", test_name: str = "") -> DiagnosticSnapshot:
        """Collect events, config maps and container logs under ``root``.

        Each artifact class is collected independently; a failure in one is
        recorded in the returned snapshot and does not stop the others.

        Args:
            root: Parent directory of all collections.
            test_class: Name of the test class, part of the directory name.
            test_name: Name of the test, part of the directory name.

        Returns:
            ``DiagnosticSnapshot`` listing files written and per-class errors.
        """
        log_dir = self._run_directory(pathlib.Path(root), test_class, test_name)
        (log_dir / EVENTS_DIR).mkdir(parents=True)
        (log_dir / CONFIG_MAPS_DIR).mkdir()
        snapshot = DiagnosticSnapshot(root=str(log_dir))

        collectors: dict[str, Callable[[pathlib.Path, DiagnosticSnapshot], None]] = {
            "events": self._collect_events,
            "configMaps": self._collect_config_maps,
            "logs": self._collect_logs_from_pods,
        }
        for artifact, collector in collectors.items():
            try:
                collector(log_dir, snapshot)
            except Exception as e:
                self.logger.warning(f"Collecting {artifact} in namespace {self.namespace} failed: {e}")
                snapshot.errors.setdefault(artifact, str(e))

        return snapshot

    @staticmethod
    def _write(path: pathlib.Path, content: str, snapshot: DiagnosticSnapshot) -> None:
        path.write_text(content, encoding="utf-8")
        snapshot.files.append(str(path))

    def _collect_events(self, log_dir: pathlib.Path, snapshot: DiagnosticSnapshot) -> None:
        self.logger.info(f"Collecting events in namespace {self.namespace}")
        events = self.k8s_controller.list_events(namespace=self.namespace)
        self._write(
            log_dir / EVENTS_DIR / f"events-in-namespace{self.namespace}.log",
            format_events(events),
            snapshot,
        )

    def _collect_config_maps(self, log_dir: pathlib.Path, snapshot: DiagnosticSnapshot) -> None:
        self.logger.info(f"Collecting configmaps in namespace {self.namespace}")
        for config_map in self.k8s_controller.list_config_maps(namespace=self.namespace):
            self._write(
                log_dir / CONFIG_MAPS_DIR / f"{config_map.metadata.name}-{self.namespace}.log",
                to_yaml(config_map),
                snapshot,
            )

    def _collect_logs_from_pods(self, log_dir: pathlib.Path, snapshot: DiagnosticSnapshot) -> None:
        self.logger.info(f"Collecting logs for pods in namespace {self.namespace}")
        for pod in self.k8s_controller.list_pods(namespace=self.namespace):
            pod_name = pod.metadata.name
            for container in pod.spec.containers or []:
                try:
                    log = self.k8s_controller.read_pod_log(
                        name=pod_name, namespace=self.namespace, container=container.name,
                    )
                except Exception as e:
                    self.logger.warning(f"Log of {pod_name}/{container.name} will not be stored: {e}")
                    snapshot.errors.setdefault("logs", str(e))
                    continue
                self._write(
                    log_dir / f"logs-pod-{pod_name}-container-{container.name}.log",
                    log or "",
                    snapshot,
                )


# ---------------------------------------------------------------------------
# Log searches
# ---------------------------------------------------------------------------


def search_deployment_log(
    k8s_controller: KubernetesController,
    namespace: str,
    deployment_name: str,
    since_seconds: int,
    *terms: str,
) -> list[str]:
    """Return the log lines of a deployment's pods from the last ``since_seconds`` that contain any of ``terms``.

    Raises:
        KubernetesControllerException: If the deployment does not exist or its pods cannot be read.
    """
    deployment = k8s_controller.read_deployment(name=deployment_name, namespace=namespace)
    if deployment is None:
        raise KubernetesControllerException(f"Deployment {deployment_name} not found in namespace {namespace}")
    labels = deployment.spec.selector.match_labels or {}

    matches: list[str] = []
    for pod in k8s_controller.list_pods(namespace=namespace, labels=labels):
        log = k8s_controller.read_pod_log(name=pod.metadata.name, namespace=namespace, since_seconds=since_seconds)
        matches.extend(line for line in (log or "").splitlines() if any(term in line for term in terms))
    return matches


def assert_no_operator_errors_logged(
    k8s_controller: KubernetesController,
    namespace: str,
    since_seconds: int,
    deployment_name: str = CLUSTER_OPERATOR_DEPLOYMENT,
    ignore: Iterable[str] = (),
) -> None:
    """Fail if the cluster operator logged an exception or error in the last ``since_seconds``.

    Args:
        k8s_controller: API wrapper.
        namespace: Namespace the cluster operator runs in.
        since_seconds: How far back to search its log.
        deployment_name: Name of the cluster operator deployment.
        ignore: Substrings marking error lines that are expected in this scenario.

    Raises:
        UnexpectedErrorsLoggedError: Listing every offending line.
    """
    logger.info(f"Search in {deployment_name} log for errors in last {since_seconds} seconds")
    ignored = tuple(ignore)
    lines = [
        line
        for line in search_deployment_log(k8s_controller, namespace, deployment_name, since_seconds, *OPERATOR_ERROR_TERMS)
        if not any(expected in line for expected in ignored)
    ]
    if lines:
        raise UnexpectedErrorsLoggedError(deployment_name, lines)
