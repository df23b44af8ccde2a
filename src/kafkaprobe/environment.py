"""Explicit cluster context threaded through waits, builders and teardown."""

from __future__ import annotations

from dataclasses import dataclass, replace

from .resources import ResourceTracker


@dataclass(frozen=True)
class ClusterEnvironment:
    """Which namespace is active and what the baseline resources of a test class are.

    One instance is established per test class.  Switching namespace produces
    a new value instead of mutating shared state, so a scenario that looks at
    another namespace cannot leak that choice into the next one.

    Attributes:
        namespace: Namespace operations default to.
        operator_namespace: Namespace the cluster operator is deployed in.
        cluster_name: Name of the Kafka cluster under test.
        class_resources: Tracker owning the class-scoped baseline resources.
        test_class: Test class name, used for diagnostic directory names.
        test_name: Current test name, empty outside a test.
    """

    namespace: str
    operator_namespace: str
    cluster_name: str
    class_resources: ResourceTracker
    test_class: str = ""
    test_name: str = ""

    def in_namespace(self, namespace: str) -> ClusterEnvironment:
        return replace(self, namespace=namespace)

    def for_test(self, test_name: str) -> ClusterEnvironment:
        return replace(self, test_name=test_name)

    def with_class_resources(self, tracker: ResourceTracker) -> ClusterEnvironment:
        return replace(self, class_resources=tracker)
