"""Runs of the verifiable producer and consumer clients and checks on the JSON lines they print."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from kubernetes.client import V1Job

from . import naming
from .cluster_waits import job_pod_name
from .diagnostics import indent
from .environment import ClusterEnvironment
from .exceptions import MessageFlowError
from .kubernetes_controller import KubernetesController
from .models import ExecResult, MessageFlowResult

logger = logging.getLogger(__name__)

_JSON_LINE = re.compile(r"^\{.*\}$", re.MULTILINE)


def parse_client_output(log: str) -> MessageFlowResult:
    """Extract producer and consumer counts from a client pod log.

    ``tool_data`` lines carry the producer's ``sent`` and ``acked`` totals;
    ``records_consumed`` lines carry per-batch consumer counts, which are summed.
    Lines that are not valid JSON are ignored.
    """
    result = MessageFlowResult()
    for match in _JSON_LINE.finditer(log):
        try:
            record = json.loads(match.group())
        except json.JSONDecodeError:
            continue
        name = record.get("name")
        if name == "tool_data":
            result.sent = int(record.get("sent", 0))
            result.acked = int(record.get("acked", 0))
        elif name == "records_consumed":
            result.consumed = (result.consumed or 0) + int(record.get("count", 0))
    return result


def check_pings(log: str, message_count: int, pod_name: str = "") -> MessageFlowResult:
    """Verify that a ping workload produced, acknowledged and consumed ``message_count`` records.

    Raises:
        MessageFlowError: If either side did not report, or reported another count.
    """
    result = parse_client_output(log)
    if not result.producer_reported or not result.consumer_reported:
        logger.info(f"log from pod {pod_name}:\n----\n{indent(log)}\n----")
    if not result.producer_reported:
        raise MessageFlowError("The producer didn't send any messages (no tool_data message)")
    if not result.consumer_reported:
        raise MessageFlowError("The consumer didn't consume any messages (no records_consumed message)")
    if result.sent != message_count or result.acked != message_count:
        raise MessageFlowError(
            f"Expected {message_count} sent and acked records, got sent={result.sent} acked={result.acked}"
        )
    if result.consumed != message_count:
        raise MessageFlowError(f"Expected {message_count} consumed records, got {result.consumed}")
    return result


def check_records_for_consumer(log: str, message_count: int, pod_name: str = "") -> MessageFlowResult:
    """Verify that a consumer workload consumed ``message_count`` records.

    Raises:
        MessageFlowError: If the consumer did not report, or reported another count.
    """
    result = parse_client_output(log)
    if not result.consumer_reported:
        logger.info(f"log from pod {pod_name}:\n----\n{indent(log)}\n----")
        raise MessageFlowError("The consumer didn't consume any messages (no records_consumed message)")
    if result.consumed != message_count:
        raise MessageFlowError(f"Expected {message_count} consumed records, got {result.consumed}")
    return result


def check_job_pings(k8s_controller: KubernetesController, namespace: str, job: V1Job, message_count: int) -> MessageFlowResult:
    """Read the log of ``job``'s pod and run :func:`check_pings` on it."""
    pod_name = job_pod_name(k8s_controller, namespace, job)
    return check_pings(k8s_controller.read_pod_log(name=pod_name, namespace=namespace), message_count, pod_name)


def check_job_records_for_consumer(
    k8s_controller: KubernetesController, namespace: str, job: V1Job, message_count: int,
) -> MessageFlowResult:
    """Read the log of ``job``'s pod and run :func:`check_records_for_consumer` on it."""
    pod_name = job_pod_name(k8s_controller, namespace, job)
    return check_records_for_consumer(
        k8s_controller.read_pod_log(name=pod_name, namespace=namespace), message_count, pod_name,
    )


# ---------------------------------------------------------------------------
# Verifiable clients run inside a broker pod
# ---------------------------------------------------------------------------


def send_messages(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    pod_name: str,
    topic: str,
    message_count: int,
) -> ExecResult:
    """Run ``kafka-verifiable-producer.sh`` in ``pod_name`` against the plain listener.

    Raises:
        MessageFlowError: If the producer exits with a non-zero status.
    """
    logger.info("Sending messages")
    command = (
        f"sh bin/kafka-verifiable-producer.sh --broker-list {naming.plain_bootstrap_address(env.cluster_name)} "
        f"--topic {topic} --max-messages {message_count}"
    )
    logger.info(f"Command for kafka-verifiable-producer.sh {command}")
    result = k8s_controller.exec_in_pod(name=pod_name, namespace=env.namespace, command=["/bin/bash", "-c", command])
    if not result.ok:
        raise MessageFlowError(
            f"kafka-verifiable-producer.sh in {pod_name} exited with {result.return_code}: {result.stderr.strip()}"
        )
    return result


def consume_messages(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    topic: str,
    group_id: int | str,
    timeout: int,
    kafka_pod_id: int = 0,
) -> list[dict[str, Any]]:
    """Run ``kafka-verifiable-consumer.sh`` in a broker pod for ``timeout`` seconds.

    The consumer is stopped after ``timeout`` seconds; it never exits on its own.

    Returns:
        The JSON records it printed, in order.
    """
    logger.info("Consuming messages")
    command = (
        f"bin/kafka-verifiable-consumer.sh --broker-list {naming.plain_bootstrap_address(env.cluster_name)} "
        f"--topic {topic} --group-id {group_id} & sleep {timeout}; kill %1"
    )
    result = k8s_controller.exec_in_pod(
        name=naming.kafka_pod_name(env.cluster_name, kafka_pod_id),
        namespace=env.namespace,
        command=["/bin/bash", "-c", command],
    )
    records: list[dict[str, Any]] = []
    for match in _JSON_LINE.finditer(result.stdout):
        try:
            records.append(json.loads(match.group()))
        except json.JSONDecodeError:
            logger.debug(f"Skipping consumer output line {match.group()}")
    logger.info(f"Output for kafka-verifiable-consumer.sh {json.dumps(records)}")
    return records
