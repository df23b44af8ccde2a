"""Shared pytest fixtures for kafkaprobe test suite."""

from __future__ import annotations

import pathlib
from collections.abc import Callable
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import (
    V1Container,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)

from kafkaprobe.config import HarnessSettings
from kafkaprobe.environment import ClusterEnvironment
from kafkaprobe.resources import ResourceTracker


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def fake_clock() -> FakeClock:
    """Patch the poller's ``time`` module with a ``FakeClock``.

    Returns:
        The clock driving ``time.monotonic`` and ``time.sleep`` in ``kafkaprobe.poller``.
    """
    clock = FakeClock()
    with patch("kafkaprobe.poller.time") as mock_time:
        mock_time.monotonic.side_effect = clock.monotonic
        mock_time.sleep.side_effect = clock.sleep
        yield clock


@pytest.fixture()
def k8s_controller() -> MagicMock:
    """Return a ``MagicMock`` standing in for ``KubernetesController``."""
    return MagicMock()


@pytest.fixture()
def settings(tmp_path) -> HarnessSettings:
    """Return settings isolated from ``KAFKAPROBE_*`` variables of the developer's shell."""
    return HarnessSettings(
        test_log_dir=str(tmp_path / "logs"),
        docker_org="strimzi",
        docker_tag="latest",
        install_dir=str(tmp_path / "install"),
        operator_prefix="strimzi",
        default_namespace="myproject",
        cluster_name="my-cluster",
        teardown_wait_seconds=10,
    )


@pytest.fixture()
def cluster_env(k8s_controller: MagicMock) -> ClusterEnvironment:
    """Return the environment of a test class running in ``myproject``."""
    return ClusterEnvironment(
        namespace="myproject",
        operator_namespace="myproject",
        cluster_name="my-cluster",
        class_resources=ResourceTracker(k8s_controller, "myproject"),
        test_class="KafkaST",
        test_name="testSendMessages",
    )


@pytest.fixture()
def make_pod() -> Callable[..., V1Pod]:
    """Return a factory for ``V1Pod`` objects.

    Returns:
        ``make_pod(name, containers=("main",), phase="Running")``.
    """

    def _make_pod(name: str, containers: tuple[str, ...] = ("main",), phase: str = "Running") -> V1Pod:
        return V1Pod(
            metadata=V1ObjectMeta(name=name, namespace="myproject"),
            spec=V1PodSpec(containers=[V1Container(name=container, image="busybox") for container in containers]),
            status=V1PodStatus(phase=phase),
        )

    return _make_pod


_ROLE_BINDING = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: {kind}
metadata:
  name: {name}
  labels:
    app: strimzi
subjects:
  - kind: ServiceAccount
    name: strimzi-cluster-operator
    namespace: myproject
roleRef:
  kind: ClusterRole
  name: strimzi-cluster-operator-namespaced
  apiGroup: rbac.authorization.k8s.io
"""

_OPERATOR_DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: strimzi-cluster-operator
spec:
  replicas: 1
  template:
    spec:
      serviceAccountName: strimzi-cluster-operator
      containers:
        - name: strimzi-cluster-operator
          image: strimzi/cluster-operator:latest
          env:
            - name: STRIMZI_NAMESPACE
              valueFrom:
                fieldRef:
                  fieldPath: metadata.namespace
            - name: STRIMZI_FULL_RECONCILIATION_INTERVAL_MS
              value: "120000"
"""


@pytest.fixture()
def install_dir(settings: HarnessSettings) -> pathlib.Path:
    """Write a minimal cluster operator installation into ``settings.install_dir``.

    Returns:
        The installation directory as a ``pathlib.Path``.
    """
    path = pathlib.Path(settings.install_dir)
    path.mkdir(parents=True)
    (path / "010-ServiceAccount-strimzi-cluster-operator.yaml").write_text(
        "apiVersion: v1\nkind: ServiceAccount\nmetadata:\n  name: strimzi-cluster-operator\n"
    )
    bindings = {
        "020-RoleBinding-strimzi-cluster-operator.yaml": ("RoleBinding", "strimzi-cluster-operator"),
        "021-ClusterRoleBinding-strimzi-cluster-operator.yaml": ("ClusterRoleBinding", "strimzi-cluster-operator"),
        "030-ClusterRoleBinding-strimzi-cluster-operator-kafka-broker-delegation.yaml": (
            "ClusterRoleBinding",
            "strimzi-cluster-operator-kafka-broker-delegation",
        ),
        "031-RoleBinding-strimzi-cluster-operator-entity-operator-delegation.yaml": (
            "RoleBinding",
            "strimzi-cluster-operator-entity-operator-delegation",
        ),
        "032-RoleBinding-strimzi-cluster-operator-topic-operator-delegation.yaml": (
            "RoleBinding",
            "strimzi-cluster-operator-topic-operator-delegation",
        ),
    }
    for file_name, (kind, name) in bindings.items():
        (path / file_name).write_text(_ROLE_BINDING.format(kind=kind, name=name))
    (path / "040-Crd-kafka.yaml").write_text(
        "apiVersion: apiextensions.k8s.io/v1beta1\nkind: CustomResourceDefinition\n"
        "metadata:\n  name: kafkas.kafka.strimzi.io\n---\n"
    )
    (path / "050-Deployment-strimzi-cluster-operator.yaml").write_text(_OPERATOR_DEPLOYMENT)
    (path / "README.md").write_text("not a manifest\n")
    return path
