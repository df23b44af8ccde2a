"""Per-class and per-test lifecycle of a verification scenario."""

from __future__ import annotations

import logging

from .baseline import BaselineInstaller
from .config import HarnessSettings
from .diagnostics import LogCollector
from .environment import ClusterEnvironment
from .exceptions import EnvironmentInconsistentError, KafkaProbeError
from .kubernetes_controller import KubernetesController
from .models import DiagnosticSnapshot
from .recovery import EnvironmentRecoveryController
from .resources import ResourceTracker


class Scenario:
    """Owns the environment and trackers of one test class.

    Typical use from a test framework's hooks::

        scenario = Scenario(k8s_controller)
        env = scenario.before_all("KafkaST", install_baseline=True)
        env = scenario.before_each("testSendMessages")
        ...  # submit workloads with scenario.test_resources
        scenario.after_each()
        scenario.after_all()

    Args:
        k8s_controller: API wrapper shared by every helper.
        settings: Harness settings; loaded from the environment when omitted.
        recovery: Controller checking the namespace after each test; no check when ``None``.
        installer: Baseline installer; built from ``settings`` when omitted.
    """

    def __init__(
        self,
        k8s_controller: KubernetesController,
        settings: HarnessSettings | None = None,
        recovery: EnvironmentRecoveryController | None = None,
        installer: BaselineInstaller | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.k8s_controller = k8s_controller
        self.settings = settings or HarnessSettings()
        self.installer = installer or BaselineInstaller(k8s_controller, self.settings)
        self.recovery = recovery
        self.bindings_namespaces: tuple[str, ...] = ()
        self._env: ClusterEnvironment | None = None
        self._test_resources: ResourceTracker | None = None

    @property
    def env(self) -> ClusterEnvironment:
        if self._env is None:
            raise KafkaProbeError("before_all() has not been called")
        return self._env

    @property
    def test_resources(self) -> ResourceTracker:
        """Tracker for objects that live for the current test only."""
        if self._test_resources is None:
            raise KafkaProbeError("before_each() has not been called")
        return self._test_resources

    def before_all(
        self,
        test_class: str,
        namespace: str | None = None,
        bindings_namespaces: tuple[str, ...] | list[str] = (),
        install_baseline: bool = False,
    ) -> ClusterEnvironment:
        """Establish the class-scoped environment.

        Args:
            test_class: Name used in diagnostic directory names.
            namespace: Operator namespace; defaults to ``settings.default_namespace``.
            bindings_namespaces: Namespaces the operator manages; defaults to ``namespace``.
            install_baseline: Create the namespace and install the operator baseline into it.
        """
        namespace = namespace or self.settings.default_namespace
        self.bindings_namespaces = tuple(bindings_namespaces) or (namespace,)
        tracker = ResourceTracker(self.k8s_controller, namespace)

        if install_baseline:
            self.logger.info(f"Installing cluster operator baseline in {namespace}")
            if self.k8s_controller.read_namespace(name=namespace) is None:
                self.k8s_controller.create_namespace(namespace)
                tracker.delete_later("Namespace", namespace, cluster_scoped=True)
            self.installer.apply_install_manifests(namespace)
            self.installer.apply_role_bindings(tracker, namespace, *self.bindings_namespaces)
            self.installer.deploy_cluster_operator(tracker, namespace, self.bindings_namespaces)

        self._env = ClusterEnvironment(
            namespace=namespace,
            operator_namespace=namespace,
            cluster_name=self.settings.cluster_name,
            class_resources=tracker,
            test_class=test_class,
        )
        return self._env

    def before_each(self, test_name: str) -> ClusterEnvironment:
        self._env = self.env.for_test(test_name)
        self._test_resources = ResourceTracker(self.k8s_controller, self._env.namespace)
        return self._env

    def after_each(self, collect_logs: bool = True) -> DiagnosticSnapshot | None:
        """Collect diagnostics, delete the test's objects and verify the namespace.

        Test objects are deleted even when collection fails.

        Raises:
            EnvironmentInconsistentError: If objects were left behind; the
                recreated environment replaces the current one before the raise.
        """
        env = self.env
        snapshot = None
        try:
            if collect_logs:
                collector = LogCollector(self.k8s_controller, env.namespace)
                snapshot = collector.collect(self.settings.test_log_dir, env.test_class, env.test_name)
                self.logger.info(f"Diagnostics of {env.test_name or env.test_class} stored in {snapshot.root}")
        finally:
            if self._test_resources is not None:
                self._test_resources.delete_resources()
            self._env = env.for_test("")

        if self.recovery is not None:
            try:
                self._env = self.recovery.verify_and_recover(self._env, env.operator_namespace, *self.bindings_namespaces)
            except EnvironmentInconsistentError as e:
                if e.recovered_environment is not None:
                    self._env = e.recovered_environment
                raise
        return snapshot

    def after_all(self) -> None:
        """Delete the class-scoped objects, the baseline included."""
        self.env.class_resources.delete_resources()
