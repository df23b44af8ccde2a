"""Cluster-state waits and in-pod checks built on :mod:`kafkaprobe.poller`."""

from __future__ import annotations

import logging
import re
import time

from kubernetes.client import V1Job

from . import naming
from .diagnostics import DiagnosticTask, indent, to_yaml
from .environment import ClusterEnvironment
from .kubernetes_controller import KubernetesController, KubernetesControllerException
from .models import (
    BROKER_API_POLL_INTERVAL_SECONDS,
    BROKER_API_TIMEOUT_SECONDS,
    GLOBAL_POLL_INTERVAL_SECONDS,
    GLOBAL_TIMEOUT_SECONDS,
    SECRET_SETTLE_SECONDS,
    TOPIC_POLL_INTERVAL_SECONDS,
    TOPIC_TIMEOUT_SECONDS,
    ZK_MNTR_POLL_INTERVAL_SECONDS,
    ZK_MNTR_TIMEOUT_SECONDS,
    ConditionResult,
    ExecResult,
)
from .poller import JobCompletionCondition, PredicateCondition, ZookeeperMntrCondition, wait_for, wait_for_or_fail

logger = logging.getLogger(__name__)

USER_OPERATOR_CONTAINER: str = "user-operator"


def job_pod_name(k8s_controller: KubernetesController, namespace: str, job: V1Job) -> str:
    """Return the name of the pod a Job created, found through its template labels."""
    return k8s_controller.pod_name_with_labels(namespace=namespace, labels=job.spec.template.metadata.labels)


def user_operator_pod_name(k8s_controller: KubernetesController, env: ClusterEnvironment) -> str:
    return k8s_controller.pod_name_with_labels(
        namespace=env.namespace,
        labels={"strimzi.io/name": naming.entity_operator_deployment_name(env.cluster_name)},
    )


def _job_timeout_diagnostics(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    job: V1Job,
    condition: JobCompletionCondition,
) -> list[DiagnosticTask]:
    namespace = env.namespace
    job_name = job.metadata.name

    def _dump_job() -> None:
        last_known = k8s_controller.read_job(name=job_name, namespace=namespace) or condition.last_job
        if last_known is None:
            raise KubernetesControllerException(f"Job {job_name} not found")
        logger.info(f"Job: {indent(to_yaml(last_known))}")

    def _dump_pod() -> None:
        pod = k8s_controller.read_pod(name=job_pod_name(k8s_controller, namespace, job), namespace=namespace)
        logger.info(f"Pod: {indent(to_yaml(pod))}")

    def _dump_pod_log() -> None:
        log = k8s_controller.read_pod_log(name=job_pod_name(k8s_controller, namespace, job), namespace=namespace)
        logger.info(f"Job timeout: Job Pod logs\n----\n{indent(log)}\n----")

    def _dump_user_operator_log() -> None:
        log = k8s_controller.read_pod_log(
            name=user_operator_pod_name(k8s_controller, env),
            namespace=namespace,
            container=USER_OPERATOR_CONTAINER,
        )
        logger.info(f"Job timeout: User Operator Pod logs\n----\n{indent(log)}\n----")

    return [
        DiagnosticTask("Job", _dump_job),
        DiagnosticTask("Pod", _dump_pod),
        DiagnosticTask("Pod logs", _dump_pod_log),
        DiagnosticTask("User Operator Pod logs", _dump_user_operator_log),
    ]


def wait_for_job_success(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    job: V1Job,
    poll_interval: float = GLOBAL_POLL_INTERVAL_SECONDS,
    timeout: float = GLOBAL_TIMEOUT_SECONDS,
) -> V1Job:
    """Wait for ``job`` to complete successfully.

    A failed pod aborts the wait at once with ``HardFailureError``.  On
    timeout the job, its pod, the pod log and the user operator log are dumped
    to the log, each independently, before ``WaitTimeoutError`` is raised.

    Returns:
        The completed Job as last read from the API.
    """
    job_name = job.metadata.name
    logger.debug(f"Waiting for Job completion: {job_name}")
    condition = JobCompletionCondition(lambda: k8s_controller.read_job(name=job_name, namespace=env.namespace))
    return wait_for_or_fail(
        f"Job {job_name} completion",
        poll_interval,
        timeout,
        condition,
        diagnostics=_job_timeout_diagnostics(k8s_controller, env, job, condition),
    )


def wait_for_zk_mntr(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    pattern: re.Pattern[str] | str,
    pod_indexes: list[int],
    poll_interval: float = ZK_MNTR_POLL_INTERVAL_SECONDS,
    timeout: float = ZK_MNTR_TIMEOUT_SECONDS,
) -> dict[int, str]:
    """Wait until the ``mntr`` output of each listed ensemble member matches ``pattern``.

    Members are polled one after another, each with its own deadline.

    Returns:
        The matching ``mntr`` output keyed by member index.
    """
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
    outputs: dict[int, str] = {}

    for pod_index in pod_indexes:
        pod = naming.zookeeper_pod_name(env.cluster_name, pod_index)
        condition = ZookeeperMntrCondition(
            exec_fn=lambda name, command: k8s_controller.exec_in_pod(name=name, namespace=env.namespace, command=command),
            pod=pod,
            port=naming.zookeeper_client_port(pod_index),
            pattern=compiled,
        )

        def _log_last_output(condition: ZookeeperMntrCondition = condition) -> None:
            logger.info(
                f"zookeeper `mntr` output at the point of timeout does not match "
                f"{condition.pattern.pattern}:\n{indent(condition.last_output)}"
            )

        outputs[pod_index] = wait_for("mntr", poll_interval, timeout, condition, on_timeout=_log_last_output)

    return outputs


def get_broker_api_versions(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    pod_name: str,
    poll_interval: float = BROKER_API_POLL_INTERVAL_SECONDS,
    timeout: float = BROKER_API_TIMEOUT_SECONDS,
) -> str:
    """Run ``kafka-broker-api-versions.sh`` in ``pod_name`` until it succeeds and return its output."""
    command = ["/opt/kafka/bin/kafka-broker-api-versions.sh", "--bootstrap-server", "localhost:9092"]

    class _ApiVersionsCondition:
        def evaluate(self) -> ConditionResult:
            try:
                result = k8s_controller.exec_in_pod(name=pod_name, namespace=env.namespace, command=command)
            except KubernetesControllerException as e:
                logger.debug(f"{command[0]}: {e}")
                return ConditionResult.pending(str(e))
            if not result.ok:
                return ConditionResult.pending(result.stderr.strip() or f"exit code {result.return_code}")
            return ConditionResult.success(result.stdout)

    return wait_for("kafka-broker-api-versions.sh success", poll_interval, timeout, _ApiVersionsCondition())


def wait_for_pod_deletion(
    k8s_controller: KubernetesController,
    namespace: str,
    pod_name: str,
    poll_interval: float = GLOBAL_POLL_INTERVAL_SECONDS,
    timeout: float = GLOBAL_TIMEOUT_SECONDS,
) -> None:
    logger.info(f"Waiting when Pod {pod_name} will be deleted")
    wait_for(
        f"pod {pod_name} deletion",
        poll_interval,
        timeout,
        PredicateCondition(lambda: k8s_controller.read_pod(name=pod_name, namespace=namespace) is None),
    )


def wait_for_namespace_deletion(
    k8s_controller: KubernetesController,
    namespace: str,
    poll_interval: float = GLOBAL_POLL_INTERVAL_SECONDS,
    timeout: float = GLOBAL_TIMEOUT_SECONDS,
) -> None:
    logger.info(f"Waiting for Namespace {namespace} deletion")
    wait_for(
        f"namespace {namespace} deletion",
        poll_interval,
        timeout,
        PredicateCondition(lambda: k8s_controller.read_namespace(name=namespace) is None),
    )


def wait_till_secret_exists(
    k8s_controller: KubernetesController,
    namespace: str,
    secret_name: str,
    poll_interval: float = GLOBAL_POLL_INTERVAL_SECONDS,
    timeout: float = GLOBAL_TIMEOUT_SECONDS,
    settle: float = SECRET_SETTLE_SECONDS,
) -> None:
    """Wait for a secret to appear, then give its consumers ``settle`` seconds to pick it up."""
    wait_for(
        f"secret {secret_name} exists",
        poll_interval,
        timeout,
        PredicateCondition(lambda: k8s_controller.read_secret(name=secret_name, namespace=namespace) is not None),
    )
    if settle > 0:
        time.sleep(settle)


# ---------------------------------------------------------------------------
# Topic CLI helpers run inside a ZooKeeper pod
# ---------------------------------------------------------------------------


def _topics_cli(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    zk_pod_id: int,
    arguments: str,
) -> ExecResult:
    pod = naming.zookeeper_pod_name(env.cluster_name, zk_pod_id)
    port = naming.zookeeper_client_port(zk_pod_id)
    return k8s_controller.exec_in_pod(
        name=pod,
        namespace=env.namespace,
        command=["/bin/bash", "-c", f"bin/kafka-topics.sh --zookeeper localhost:{port} {arguments}"],
    )


def list_topics(k8s_controller: KubernetesController, env: ClusterEnvironment, zk_pod_id: int = 0) -> list[str]:
    return _topics_cli(k8s_controller, env, zk_pod_id, "--list").stdout.split()


def create_topic(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    topic: str,
    replication_factor: int,
    partitions: int,
    zk_pod_id: int = 0,
) -> str:
    arguments = f"--create --topic {topic} --replication-factor {replication_factor} --partitions {partitions}"
    return _topics_cli(k8s_controller, env, zk_pod_id, arguments).stdout


def delete_topic(k8s_controller: KubernetesController, env: ClusterEnvironment, topic: str, zk_pod_id: int = 0) -> str:
    return _topics_cli(k8s_controller, env, zk_pod_id, f"--delete --topic {topic}").stdout


def describe_topic(
    k8s_controller: KubernetesController, env: ClusterEnvironment, topic: str, zk_pod_id: int = 0,
) -> list[str]:
    return _topics_cli(k8s_controller, env, zk_pod_id, f"--describe --topic {topic}").stdout.split()


def update_topic_partitions(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    topic: str,
    partitions: int,
    zk_pod_id: int = 0,
) -> str:
    return _topics_cli(k8s_controller, env, zk_pod_id, f"--alter --topic {topic} --partitions {partitions}").stdout


def wait_for_topic_in_cluster(
    k8s_controller: KubernetesController,
    env: ClusterEnvironment,
    topic: str,
    zk_pod_id: int = 0,
    poll_interval: float = TOPIC_POLL_INTERVAL_SECONDS,
    timeout: float = TOPIC_TIMEOUT_SECONDS,
) -> None:
    wait_for(
        f"topic '{topic}' to be created in Kafka",
        poll_interval,
        timeout,
        PredicateCondition(lambda: topic in list_topics(k8s_controller, env, zk_pod_id)),
    )
