"""Post-teardown environment verification and recovery.

After every scoped teardown the operator namespace should contain nothing but
infrastructure pods.  When it does not, the namespace and its baseline are
recreated so the next test class starts clean, and the current scenario is
still reported as failed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from kubernetes.client import V1Pod

from .baseline import BaselineInstaller
from .cluster_waits import wait_for_namespace_deletion
from .config import HarnessSettings
from .environment import ClusterEnvironment
from .exceptions import EnvironmentInconsistentError, KafkaProbeError
from .kubernetes_controller import KubernetesController
from .models import RecoveryState
from .resources import ResourceTracker


class EnvironmentRecoveryController:
    """Stable → Verifying → (Stable | Recovering) check run at teardown boundaries.

    Args:
        k8s_controller: API wrapper.
        installer: Re-creates the baseline during recovery.
        settings: Harness settings (operator pod prefix, teardown wait).
        sleep: Blocking sleep used for the teardown grace period.
    """

    def __init__(
        self,
        k8s_controller: KubernetesController,
        installer: BaselineInstaller,
        settings: HarnessSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.k8s_controller = k8s_controller
        self.installer = installer
        self.settings = settings or HarnessSettings()
        self._sleep = sleep
        self.state = RecoveryState.STABLE
        self.history: list[RecoveryState] = [RecoveryState.STABLE]

    def _transition(self, state: RecoveryState) -> None:
        self.logger.debug(f"Environment check: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def unexpected_pods(self, namespace: str) -> list[V1Pod]:
        """Pods in ``namespace`` that do not belong to the operator infrastructure."""
        prefix = self.settings.operator_prefix
        return [
            pod
            for pod in self.k8s_controller.list_pods(namespace=namespace)
            if not pod.metadata.name.startswith(prefix)
        ]

    def verify_and_recover(
        self,
        env: ClusterEnvironment,
        co_namespace: str | None = None,
        *bindings_namespaces: str,
    ) -> ClusterEnvironment:
        """Check that teardown left the operator namespace clean, recreating it if not.

        Args:
            env: Environment of the test class being torn down.
            co_namespace: Namespace the cluster operator runs in; defaults to ``env.operator_namespace``.
            bindings_namespaces: Namespaces the operator manages; defaults to ``co_namespace``.

        Returns:
            ``env`` unchanged when the namespace is clean.

        Raises:
            EnvironmentInconsistentError: Always, when leftover pods were found.
                The recreated environment is attached as ``recovered_environment``.
            KafkaProbeError: If leftover pods remain even after recovery.
        """
        co_namespace = co_namespace or env.operator_namespace
        bindings = bindings_namespaces or (co_namespace,)

        self._transition(RecoveryState.VERIFYING)
        wait = self.settings.teardown_wait_seconds
        self.logger.info(f"Wait for {wait:g} s after cleanup to make sure everything is deleted")
        self._sleep(wait)

        leftovers = self.unexpected_pods(co_namespace)
        if not leftovers:
            self._transition(RecoveryState.STABLE)
            return env

        non_terminated = [f"{pod.metadata.name} - {pod.status.phase if pod.status else 'Unknown'}" for pod in leftovers]
        self._transition(RecoveryState.RECOVERING)
        recovered = self.recreate_test_env(env, co_namespace, *bindings)

        remaining = self.unexpected_pods(co_namespace)
        if remaining:
            raise KafkaProbeError(
                f"Recreated namespace {co_namespace} still has unexpected pods: "
                f"{[pod.metadata.name for pod in remaining]}"
            )
        self._transition(RecoveryState.STABLE)

        raise EnvironmentInconsistentError(co_namespace, non_terminated, recovered_environment=recovered)

    def recreate_test_env(self, env: ClusterEnvironment, co_namespace: str, *bindings_namespaces: str) -> ClusterEnvironment:
        """Delete and recreate ``co_namespace`` with its baseline installation.

        Errors propagate: a recovery that cannot complete leaves test isolation
        unguaranteed.

        Returns:
            A new environment whose class-scoped tracker owns the recreated baseline.
        """
        self.logger.info("There are some unexpected pods! Cleanup is not finished properly! Wait till env will be recreated.")
        env.class_resources.delete_resources()

        self.k8s_controller.delete_namespace(co_namespace)
        wait_for_namespace_deletion(self.k8s_controller, co_namespace)
        self.k8s_controller.create_namespace(co_namespace)

        self.installer.apply_install_manifests(co_namespace)

        tracker = ResourceTracker(self.k8s_controller, co_namespace)
        bindings = bindings_namespaces or (co_namespace,)
        self.installer.apply_role_bindings(tracker, co_namespace, *bindings)
        self.installer.deploy_cluster_operator(tracker, co_namespace, bindings)
        self.logger.info("Env recreated.")

        return env.with_class_resources(tracker).in_namespace(co_namespace)
