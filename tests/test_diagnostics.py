"""Unit tests for diagnostic dumps and the ``LogCollector``."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import yaml
from kubernetes.client import (
    CoreV1Event,
    V1ConfigMap,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1ObjectReference,
    V1PodTemplateSpec,
)

from kafkaprobe.diagnostics import (
    DiagnosticTask,
    LogCollector,
    assert_no_operator_errors_logged,
    format_events,
    indent,
    run_isolated,
    search_deployment_log,
    to_yaml,
)
from kafkaprobe.exceptions import UnexpectedErrorsLoggedError
from kafkaprobe.kubernetes_controller import KubernetesControllerException

FIXED_NOW = datetime(2026, 10, 19, 12, 30, 45)


def _event(name: str, reason: str, when: str) -> CoreV1Event:
    return CoreV1Event(
        metadata=V1ObjectMeta(name=name),
        involved_object=V1ObjectReference(kind="Pod", name="my-cluster-kafka-0"),
        reason=reason,
        type="Normal",
        message=f"{reason} message",
        last_timestamp=when,
    )


@pytest.fixture()
def collector(k8s_controller: MagicMock) -> LogCollector:
    return LogCollector(k8s_controller, "myproject", clock=lambda: FIXED_NOW)


@pytest.fixture()
def populated_controller(k8s_controller: MagicMock, make_pod) -> MagicMock:
    """Controller mock with 2 pods of 2 containers, 1 event and 2 config maps."""
    k8s_controller.list_pods.return_value = [
        make_pod("my-cluster-kafka-0", containers=("kafka", "tls-sidecar")),
        make_pod("my-cluster-zookeeper-0", containers=("zookeeper", "tls-sidecar")),
    ]
    k8s_controller.read_pod_log.side_effect = lambda name, namespace, container=None: f"log of {name}/{container}\n"
    k8s_controller.list_events.return_value = [_event("e1", "Started", "2026-10-19T12:00:00Z")]
    k8s_controller.list_config_maps.return_value = [
        V1ConfigMap(metadata=V1ObjectMeta(name="my-cluster-kafka-config"), data={"log4j.properties": "x"}),
        V1ConfigMap(metadata=V1ObjectMeta(name="my-cluster-zookeeper-config"), data={}),
    ]
    return k8s_controller


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestRunIsolated:
    """Tests for per-task error isolation."""

    def test_failures_are_recorded_and_later_tasks_still_run(self) -> None:
        calls: list[str] = []

        def _fail() -> None:
            calls.append("Job")
            raise KubernetesControllerException("Job not found")

        results = run_isolated([
            DiagnosticTask("Job", _fail),
            DiagnosticTask("Pod", lambda: calls.append("Pod")),
        ])

        assert calls == ["Job", "Pod"]
        assert [r.succeeded for r in results] == [False, True]
        assert results[0].error == "Job not found"


class TestFormatting:
    def test_to_yaml_uses_api_field_names(self) -> None:
        config_map = V1ConfigMap(api_version="v1", kind="ConfigMap", metadata=V1ObjectMeta(name="cm"), data={"a": "b"})

        assert yaml.safe_load(to_yaml(config_map)) == {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "cm"},
            "data": {"a": "b"},
        }

    def test_indent(self) -> None:
        assert indent("a\nb\n") == "    a\n    b\n"

    def test_format_events_sorted_oldest_first(self) -> None:
        events = [
            _event("late", "Killing", "2026-10-19T12:05:00Z"),
            _event("early", "Pulled", "2026-10-19T12:00:00Z"),
        ]

        lines = format_events(events).splitlines()

        assert lines[0].startswith("LAST SEEN")
        assert "Pulled" in lines[1]
        assert "Killing" in lines[2]
        assert "Pod/my-cluster-kafka-0" in lines[1]


# ---------------------------------------------------------------------------
# LogCollector
# ---------------------------------------------------------------------------


class TestLogCollector:
    """Tests for ``LogCollector.collect`` layout and isolation."""

    def test_collects_every_artifact(self, tmp_path, populated_controller: MagicMock, collector: LogCollector) -> None:
        """Verify 2 pods x 2 containers give 4 log files plus 1 events file and the config maps."""
        snapshot = collector.collect(tmp_path, "KafkaST", "testSendMessages")

        run_dir = tmp_path / "KafkaST.testSendMessages_20261019_123045"
        assert snapshot.root == str(run_dir)
        assert snapshot.errors == {}

        logs = sorted(p.name for p in run_dir.glob("logs-pod-*.log"))
        assert logs == [
            "logs-pod-my-cluster-kafka-0-container-kafka.log",
            "logs-pod-my-cluster-kafka-0-container-tls-sidecar.log",
            "logs-pod-my-cluster-zookeeper-0-container-tls-sidecar.log",
            "logs-pod-my-cluster-zookeeper-0-container-zookeeper.log",
        ]
        assert (run_dir / "logs-pod-my-cluster-kafka-0-container-kafka.log").read_text() == "log of my-cluster-kafka-0/kafka\n"
        assert [p.name for p in (run_dir / "events").iterdir()] == ["events-in-namespacemyproject.log"]
        assert sorted(p.name for p in (run_dir / "configMaps").iterdir()) == [
            "my-cluster-kafka-config-myproject.log",
            "my-cluster-zookeeper-config-myproject.log",
        ]
        assert len(snapshot.files) == 7

    def test_events_failure_still_writes_other_artifacts(
        self, tmp_path, populated_controller: MagicMock, collector: LogCollector,
    ) -> None:
        populated_controller.list_events.side_effect = KubernetesControllerException("forbidden")

        snapshot = collector.collect(tmp_path, "KafkaST", "testSendMessages")

        run_dir = tmp_path / "KafkaST.testSendMessages_20261019_123045"
        assert "events" in snapshot.errors
        assert list((run_dir / "events").iterdir()) == []
        assert len(list(run_dir.glob("logs-pod-*.log"))) == 4
        assert len(list((run_dir / "configMaps").iterdir())) == 2

    def test_pod_listing_failure_is_recorded_under_logs(
        self, tmp_path, populated_controller: MagicMock, collector: LogCollector,
    ) -> None:
        """Verify an unreadable pod list leaves the logs class marked as failed."""
        populated_controller.list_pods.side_effect = KubernetesControllerException("Failed to list pods in myproject")

        snapshot = collector.collect(tmp_path, "KafkaST", "testSendMessages")

        run_dir = tmp_path / "KafkaST.testSendMessages_20261019_123045"
        assert snapshot.errors == {"logs": "Failed to list pods in myproject"}
        assert list(run_dir.glob("logs-pod-*.log")) == []
        assert len(list((run_dir / "events").iterdir())) == 1
        assert len(list((run_dir / "configMaps").iterdir())) == 2

    def test_one_container_log_failure_keeps_the_rest(
        self, tmp_path, populated_controller: MagicMock, collector: LogCollector,
    ) -> None:
        def _read_log(name: str, namespace: str, container: str | None = None) -> str:
            if container == "tls-sidecar" and name == "my-cluster-kafka-0":
                raise KubernetesControllerException("container not started")
            return "ok"

        populated_controller.read_pod_log.side_effect = _read_log

        snapshot = collector.collect(tmp_path, "KafkaST", "testSendMessages")

        assert "logs" in snapshot.errors
        assert len(list((tmp_path / "KafkaST.testSendMessages_20261019_123045").glob("logs-pod-*.log"))) == 3

    def test_never_overwrites_previous_collection(
        self, tmp_path, populated_controller: MagicMock, collector: LogCollector,
    ) -> None:
        first = collector.collect(tmp_path, "KafkaST", "testSendMessages")
        second = collector.collect(tmp_path, "KafkaST", "testSendMessages")

        assert first.root != second.root
        assert second.root.endswith("KafkaST.testSendMessages_20261019_123045_1")

    def test_directory_without_test_name_is_timestamp(
        self, tmp_path, populated_controller: MagicMock, collector: LogCollector,
    ) -> None:
        snapshot = collector.collect(tmp_path)

        assert snapshot.root == str(tmp_path / "20261019_123045")


# ---------------------------------------------------------------------------
# Cluster operator log search
# ---------------------------------------------------------------------------


OPERATOR_LOG = "\n".join([
    "2026-10-19 12:00:00 INFO  ClusterOperator:120 - Creating ClusterOperator for namespace myproject",
    "2026-10-19 12:00:05 ERROR AbstractOperator:238 - Reconciliation #1(watch) Kafka(myproject/my-cluster): Error while reconciling",
    "io.strimzi.operator.cluster.operator.resource.TimeoutException: Exceeded timeout of 300000ms",
    "2026-10-19 12:00:06 INFO  KafkaAssemblyOperator:300 - Kafka my-cluster reconciled",
])


class TestOperatorLogSearch:
    """Tests for ``search_deployment_log`` and ``assert_no_operator_errors_logged``."""

    @pytest.fixture()
    def operator_controller(self, k8s_controller: MagicMock, make_pod) -> MagicMock:
        k8s_controller.read_deployment.return_value = V1Deployment(
            metadata=V1ObjectMeta(name="strimzi-cluster-operator"),
            spec=V1DeploymentSpec(
                selector=V1LabelSelector(match_labels={"name": "strimzi-cluster-operator"}),
                template=V1PodTemplateSpec(),
            ),
        )
        k8s_controller.list_pods.return_value = [make_pod("strimzi-cluster-operator-5d8f-abcde")]
        k8s_controller.read_pod_log.return_value = OPERATOR_LOG
        return k8s_controller

    def test_search_reads_bounded_log_of_deployment_pods(self, operator_controller: MagicMock) -> None:
        lines = search_deployment_log(operator_controller, "myproject", "strimzi-cluster-operator", 600, "Exception")

        assert lines == [OPERATOR_LOG.splitlines()[2]]
        operator_controller.list_pods.assert_called_once_with(
            namespace="myproject", labels={"name": "strimzi-cluster-operator"},
        )
        operator_controller.read_pod_log.assert_called_once_with(
            name="strimzi-cluster-operator-5d8f-abcde", namespace="myproject", since_seconds=600,
        )

    def test_errors_are_reported(self, operator_controller: MagicMock) -> None:
        with pytest.raises(UnexpectedErrorsLoggedError) as excinfo:
            assert_no_operator_errors_logged(operator_controller, "myproject", 600)

        assert excinfo.value.lines == OPERATOR_LOG.splitlines()[1:3]

    def test_expected_errors_can_be_ignored(self, operator_controller: MagicMock) -> None:
        assert_no_operator_errors_logged(
            operator_controller, "myproject", 600, ignore=["Reconciliation #1", "TimeoutException"],
        )

    def test_clean_log(self, operator_controller: MagicMock) -> None:
        operator_controller.read_pod_log.return_value = OPERATOR_LOG.splitlines()[0]

        assert_no_operator_errors_logged(operator_controller, "myproject", 600)

    def test_missing_deployment(self, k8s_controller: MagicMock) -> None:
        k8s_controller.read_deployment.return_value = None

        with pytest.raises(KubernetesControllerException, match="not found"):
            assert_no_operator_errors_logged(k8s_controller, "myproject", 600)
