"""Lifecycle tracking of the objects a test creates."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .kubernetes_controller import KubernetesController


@dataclass(frozen=True)
class TrackedResource:
    kind: str
    name: str
    namespace: str | None = None


class ResourceTracker:
    """Records objects to delete at teardown and deletes them newest-first.

    Deleting an object that is already gone is a no-op, so
    :meth:`delete_resources` may be called any number of times.
    """

    def __init__(self, k8s_controller: KubernetesController, namespace: str) -> None:
        self.logger = logging.getLogger(__name__)
        self.k8s_controller = k8s_controller
        self.namespace = namespace
        self._resources: list[TrackedResource] = []

    @property
    def resources(self) -> list[TrackedResource]:
        return list(self._resources)

    def delete_later(self, kind: str, name: str, namespace: str | None = None, cluster_scoped: bool = False) -> None:
        """Register an object for deletion; namespaced objects default to the tracker's namespace."""
        resource = TrackedResource(kind=kind, name=name, namespace=None if cluster_scoped else namespace or self.namespace)
        if resource not in self._resources:
            self._resources.append(resource)

    def delete_resources(self) -> None:
        """Delete every tracked object in reverse creation order.

        The first API error other than "not found" propagates; objects not yet
        processed stay tracked so that a retry picks them up.
        """
        while self._resources:
            resource = self._resources[-1]
            self.logger.info(f"Deleting {resource.kind} {resource.name}")
            self.k8s_controller.delete_object(resource.kind, resource.name, resource.namespace)
            self._resources.pop()
