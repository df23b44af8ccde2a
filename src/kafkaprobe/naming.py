"""Naming conventions of the objects the operator creates for a Kafka cluster."""

from __future__ import annotations

from .models import ZK_CLIENT_PORT

PLAIN_BOOTSTRAP_PORT: int = 9092
TLS_BOOTSTRAP_PORT: int = 9093


def kafka_cluster_name(cluster: str) -> str:
    return f"{cluster}-kafka"


def kafka_pod_name(cluster: str, pod_id: int) -> str:
    return f"{kafka_cluster_name(cluster)}-{pod_id}"


def kafka_bootstrap_service_name(cluster: str) -> str:
    return f"{cluster}-kafka-bootstrap"


def kafka_headless_service_name(cluster: str) -> str:
    return f"{cluster}-kafka-brokers"


def plain_bootstrap_address(cluster: str) -> str:
    return f"{kafka_bootstrap_service_name(cluster)}:{PLAIN_BOOTSTRAP_PORT}"


def tls_bootstrap_address(cluster: str) -> str:
    return f"{kafka_bootstrap_service_name(cluster)}:{TLS_BOOTSTRAP_PORT}"


def bootstrap_address(cluster: str, tls: bool) -> str:
    """Return the TLS or plain listener bootstrap address of ``cluster``."""
    return tls_bootstrap_address(cluster) if tls else plain_bootstrap_address(cluster)


def zookeeper_cluster_name(cluster: str) -> str:
    return f"{cluster}-zookeeper"


def zookeeper_pod_name(cluster: str, pod_id: int) -> str:
    return f"{zookeeper_cluster_name(cluster)}-{pod_id}"


def zookeeper_client_port(pod_id: int) -> int:
    """Port of the TLS-sidecar-local ZooKeeper client endpoint inside pod ``pod_id``."""
    return ZK_CLIENT_PORT * 10 + pod_id


def entity_operator_deployment_name(cluster: str) -> str:
    return f"{cluster}-entity-operator"


def cluster_ca_cert_secret_name(cluster: str) -> str:
    return f"{cluster}-cluster-ca-cert"
