"""Unit tests for ``ResourceTracker``."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from kafkaprobe.kubernetes_controller import KubernetesControllerException
from kafkaprobe.resources import ResourceTracker, TrackedResource


class TestResourceTracker:
    """Tests for teardown ordering and idempotence."""

    def test_deletes_newest_first(self, k8s_controller: MagicMock) -> None:
        tracker = ResourceTracker(k8s_controller, "myproject")
        tracker.delete_later("Deployment", "strimzi-cluster-operator")
        tracker.delete_later("ClusterRoleBinding", "strimzi-cluster-operator", cluster_scoped=True)
        tracker.delete_later("Job", "hello-world-producer", namespace="other")

        tracker.delete_resources()

        assert k8s_controller.delete_object.call_args_list == [
            call("Job", "hello-world-producer", "other"),
            call("ClusterRoleBinding", "strimzi-cluster-operator", None),
            call("Deployment", "strimzi-cluster-operator", "myproject"),
        ]
        assert tracker.resources == []

    def test_duplicate_registration_is_ignored(self, k8s_controller: MagicMock) -> None:
        tracker = ResourceTracker(k8s_controller, "myproject")
        tracker.delete_later("Job", "p")
        tracker.delete_later("Job", "p")

        assert tracker.resources == [TrackedResource("Job", "p", "myproject")]

    def test_second_teardown_is_noop(self, k8s_controller: MagicMock) -> None:
        tracker = ResourceTracker(k8s_controller, "myproject")
        tracker.delete_later("Job", "p")

        tracker.delete_resources()
        tracker.delete_resources()

        k8s_controller.delete_object.assert_called_once()

    def test_error_keeps_unprocessed_resources(self, k8s_controller: MagicMock) -> None:
        tracker = ResourceTracker(k8s_controller, "myproject")
        tracker.delete_later("Deployment", "d")
        tracker.delete_later("Job", "j")
        k8s_controller.delete_object.side_effect = [True, KubernetesControllerException("forbidden")]

        with pytest.raises(KubernetesControllerException):
            tracker.delete_resources()

        assert tracker.resources == [TrackedResource("Deployment", "d", "myproject")]
