"""Ephemeral verification workloads for kafkaprobe.

Builds producer, consumer and combined "ping" client workloads.  The client
configuration of each role is expanded from a :class:`SecurityProfile` (the
listener encryption and SASL choice) plus an optional TLS-client identity,
which only adds key-store material on top of whatever protocol was chosen.
"""

from __future__ import annotations

import base64
import binascii
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field

from kubernetes.client import (
    V1Container,
    V1EnvVar,
    V1Job,
    V1JobSpec,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from . import naming
from .config import HarnessSettings
from .exceptions import ConfigurationError
from .kubernetes_controller import KubernetesController
from .models import (
    CA_SECRET_MOUNT_PATH,
    CA_SECRET_VOLUME,
    CONSUMER_GROUP_SUFFIX_BOUND,
    KEYSTORE_LOCATION,
    TRUSTSTORE_LOCATION,
    USER_SECRET_MOUNT_PATH,
    USER_SECRET_VOLUME,
    AuthMechanism,
    EnvBinding,
    KafkaUserIdentity,
    SecretVolume,
    SecurityProfile,
    VolumeMount,
    WorkloadRole,
    WorkloadSpec,
)
from .resources import ResourceTracker

logger = logging.getLogger(__name__)

PasswordLookup = Callable[[str], str]

_BASE_CONFIGURATION: dict[WorkloadRole, str] = {
    WorkloadRole.PRODUCER: "acks=all",
    WorkloadRole.CONSUMER: "auto.offset.reset=earliest",
}

_ENV_PREFIX: dict[WorkloadRole, str] = {
    WorkloadRole.PRODUCER: "PRODUCER",
    WorkloadRole.CONSUMER: "CONSUMER",
}


def secret_password_lookup(k8s_controller: KubernetesController, namespace: str) -> PasswordLookup:
    """Return a lookup reading the SCRAM password from the user's secret in ``namespace``."""

    def _lookup(user_name: str) -> str:
        secret = k8s_controller.read_secret(name=user_name, namespace=namespace)
        if secret is None:
            raise ConfigurationError(f"The Secret {user_name} does not exist in namespace {namespace}")
        encoded = (secret.data or {}).get("password")
        if encoded is None:
            logger.info(f"Secret {user_name} has keys: {sorted((secret.data or {}).keys())}")
            raise ConfigurationError(f"The Secret {user_name} lacks the 'password' key")
        try:
            return base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(f"The 'password' key of Secret {user_name} is not valid base64: {e}") from e

    return _lookup


def sasl_configs(user_name: str, password: str) -> list[str]:
    """Client properties authenticating ``user_name`` with SCRAM-SHA-512."""
    return [
        "sasl.mechanism=SCRAM-SHA-512",
        "sasl.jaas.config=org.apache.kafka.common.security.scram.ScramLoginModule required \\",
        f'username="{user_name}" \\',
        f'password="{password}";',
    ]


@dataclass
class ClientSecurity:
    """Configuration and pod attachments produced for one client role."""

    configuration: str
    env: list[EnvBinding] = field(default_factory=list)
    volume_mounts: list[VolumeMount] = field(default_factory=list)
    volumes: list[SecretVolume] = field(default_factory=list)
    tls_client_identity: bool = False


def expand_security(
    role: WorkloadRole,
    profile: SecurityProfile,
    identity: KafkaUserIdentity | None,
    ca_secret_name: str,
    password: str | None = None,
) -> ClientSecurity:
    """Expand a security profile into the client configuration of one role.

    Lines are appended in a fixed order: the role's base line, the
    ``security.protocol`` line (plus SCRAM credentials for SASL profiles),
    trust-store lines for encrypted profiles, then key-store lines for a
    TLS-client identity.

    Args:
        role: ``PRODUCER`` or ``CONSUMER``.
        profile: Protocol derived from listener encryption and SASL use.
        identity: KafkaUser the client authenticates as, if any.
        ca_secret_name: Secret holding the cluster CA certificate.
        password: SCRAM password, required for SASL profiles.

    Raises:
        ConfigurationError: If a SASL profile has no identity or password.
    """
    prefix = _ENV_PREFIX[role]
    lines = [_BASE_CONFIGURATION[role], f"security.protocol={profile.value}"]
    security = ClientSecurity(configuration="")
    tls_flag = EnvBinding(f"{prefix}_TLS", "TRUE")

    if profile.uses_sasl:
        if identity is None or password is None:
            raise ConfigurationError(f"{profile.value} requires a SCRAM-SHA-512 user with a password")
        lines.extend(sasl_configs(identity.name, password))

    if profile.encrypted:
        lines.extend([f"ssl.truststore.location={TRUSTSTORE_LOCATION}", "ssl.truststore.type=pkcs12"])
        security.volume_mounts.append(VolumeMount(CA_SECRET_VOLUME, CA_SECRET_MOUNT_PATH))
        security.volumes.append(SecretVolume(CA_SECRET_VOLUME, ca_secret_name))
        security.env.extend([
            tls_flag,
            EnvBinding("CA_LOCATION", CA_SECRET_MOUNT_PATH),
            EnvBinding("TRUSTSTORE_LOCATION", TRUSTSTORE_LOCATION),
        ])

    if identity is not None and identity.auth == AuthMechanism.TLS:
        lines.extend([f"ssl.keystore.location={KEYSTORE_LOCATION}", "ssl.keystore.type=pkcs12"])
        security.volume_mounts.append(VolumeMount(USER_SECRET_VOLUME, USER_SECRET_MOUNT_PATH))
        security.volumes.append(SecretVolume(USER_SECRET_VOLUME, identity.name))
        if tls_flag not in security.env:
            security.env.append(tls_flag)
        security.env.append(EnvBinding("USER_LOCATION", USER_SECRET_MOUNT_PATH))
        if profile.encrypted:
            security.env.append(EnvBinding("KEYSTORE_LOCATION", KEYSTORE_LOCATION))
        security.tls_client_identity = True

    security.configuration = "\n".join(lines) + "\n"
    security.env.append(EnvBinding(f"{prefix}_CONFIGURATION", security.configuration))
    return security


def _resolve_password(identity: KafkaUserIdentity | None, password_lookup: PasswordLookup | None) -> str | None:
    if identity is None or identity.auth != AuthMechanism.SCRAM_SHA_512:
        return None
    if password_lookup is None:
        raise ConfigurationError(f"No password lookup configured for SCRAM-SHA-512 user {identity.name}")
    return password_lookup(identity.name)


def _profile(tls_listener: bool, identity: KafkaUserIdentity | None) -> SecurityProfile:
    return SecurityProfile.resolve(tls_listener, identity.auth if identity else AuthMechanism.NONE)


def _producer_opts(bootstrap: str, topic: str, message_count: int) -> str:
    return f"--broker-list {bootstrap} --topic {topic} --max-messages {message_count}"


def _consumer_opts(bootstrap: str, group: str, topic: str, message_count: int) -> str:
    return f"--broker-list {bootstrap} --group-id {group} --verbose --topic {topic} --max-messages {message_count}"


def _assemble(
    spec: WorkloadSpec,
    securities: list[ClientSecurity],
    identity: KafkaUserIdentity | None,
) -> WorkloadSpec:
    """Merge the per-role security attachments into ``spec``, dropping duplicates."""
    for security in securities:
        for binding in security.env:
            if binding not in spec.env:
                spec.env.append(binding)
        for mount in security.volume_mounts:
            if mount not in spec.volume_mounts:
                spec.volume_mounts.append(mount)
        for volume in security.volumes:
            if volume not in spec.volumes:
                spec.volumes.append(volume)
        spec.tls_client_identity = spec.tls_client_identity or security.tls_client_identity
    if identity is not None:
        spec.env.append(EnvBinding("KAFKA_USER", identity.name))
    spec.labels = {"job": spec.name}
    return spec


def build_producer_spec(
    name: str,
    topic: str,
    message_count: int,
    cluster_name: str,
    tls_listener: bool = False,
    identity: KafkaUserIdentity | None = None,
    password_lookup: PasswordLookup | None = None,
    settings: HarnessSettings | None = None,
) -> WorkloadSpec:
    """Build a workload sending ``message_count`` records to ``topic``."""
    settings = settings or HarnessSettings()
    profile = _profile(tls_listener, identity)
    bootstrap = naming.bootstrap_address(cluster_name, tls_listener)
    security = expand_security(
        WorkloadRole.PRODUCER,
        profile,
        identity,
        naming.cluster_ca_cert_secret_name(cluster_name),
        _resolve_password(identity, password_lookup),
    )
    spec = WorkloadSpec(
        name=name,
        role=WorkloadRole.PRODUCER,
        topic=topic,
        message_count=message_count,
        bootstrap_address=bootstrap,
        security=profile,
        image=settings.change_org_and_tag(settings.test_client_image),
        command=["/opt/kafka/producer.sh"],
        container_name="send-records",
        identity=identity.name if identity else None,
        env=[EnvBinding("PRODUCER_OPTS", _producer_opts(bootstrap, topic, message_count))],
    )
    return _assemble(spec, [security], identity)


def build_consumer_spec(
    name: str,
    topic: str,
    message_count: int,
    cluster_name: str,
    tls_listener: bool = False,
    identity: KafkaUserIdentity | None = None,
    password_lookup: PasswordLookup | None = None,
    settings: HarnessSettings | None = None,
) -> WorkloadSpec:
    """Build a workload reading ``message_count`` records from ``topic`` in group ``<name>-my-group``."""
    settings = settings or HarnessSettings()
    profile = _profile(tls_listener, identity)
    bootstrap = naming.bootstrap_address(cluster_name, tls_listener)
    group = f"{name}-my-group"
    security = expand_security(
        WorkloadRole.CONSUMER,
        profile,
        identity,
        naming.cluster_ca_cert_secret_name(cluster_name),
        _resolve_password(identity, password_lookup),
    )
    spec = WorkloadSpec(
        name=name,
        role=WorkloadRole.CONSUMER,
        topic=topic,
        message_count=message_count,
        bootstrap_address=bootstrap,
        security=profile,
        image=settings.change_org_and_tag(settings.test_client_image),
        command=["/opt/kafka/consumer.sh"],
        container_name="read-messages",
        identity=identity.name if identity else None,
        consumer_group=group,
        env=[EnvBinding("CONSUMER_OPTS", _consumer_opts(bootstrap, group, topic, message_count))],
    )
    return _assemble(spec, [security], identity)


def build_combined_spec(
    name: str,
    topic: str,
    message_count: int,
    cluster_name: str,
    tls_listener: bool = False,
    identity: KafkaUserIdentity | None = None,
    password_lookup: PasswordLookup | None = None,
    settings: HarnessSettings | None = None,
    rng: random.Random | None = None,
) -> WorkloadSpec:
    """Build a "ping" workload that produces and then consumes ``message_count`` records.

    The consumer group is ``<name>-<n>`` with ``n`` drawn at random for each
    call, so repeated runs do not share committed offsets.  This makes
    collisions unlikely, not impossible.
    """
    settings = settings or HarnessSettings()
    profile = _profile(tls_listener, identity)
    bootstrap = naming.bootstrap_address(cluster_name, tls_listener)
    group = f"{name}-{(rng or random).randrange(CONSUMER_GROUP_SUFFIX_BOUND)}"  # noqa: S311
    ca_secret_name = naming.cluster_ca_cert_secret_name(cluster_name)
    password = _resolve_password(identity, password_lookup)

    producer = expand_security(WorkloadRole.PRODUCER, profile, identity, ca_secret_name, password)
    consumer = expand_security(WorkloadRole.CONSUMER, profile, identity, ca_secret_name, password)

    spec = WorkloadSpec(
        name=name,
        role=WorkloadRole.COMBINED,
        topic=topic,
        message_count=message_count,
        bootstrap_address=bootstrap,
        security=profile,
        image=settings.change_org_and_tag(settings.ping_client_image),
        command=["/opt/kafka/ping.sh"],
        container_name="ping",
        identity=identity.name if identity else None,
        consumer_group=group,
        env=[
            EnvBinding("PRODUCER_OPTS", _producer_opts(bootstrap, topic, message_count)),
            EnvBinding("CONSUMER_OPTS", _consumer_opts(bootstrap, group, topic, message_count)),
        ],
    )
    return _assemble(spec, [producer, consumer], identity)


def to_job(spec: WorkloadSpec) -> V1Job:
    """Render a workload as a single-container ``V1Job``."""
    container = V1Container(
        name=spec.container_name,
        image=spec.image,
        command=list(spec.command),
        env=[V1EnvVar(name=binding.name, value=binding.value) for binding in spec.env],
        volume_mounts=[V1VolumeMount(name=mount.name, mount_path=mount.mount_path) for mount in spec.volume_mounts]
        or None,
    )
    pod_spec = V1PodSpec(
        restart_policy=spec.restart_policy,
        containers=[container],
        volumes=[
            V1Volume(name=volume.name, secret=V1SecretVolumeSource(secret_name=volume.secret_name))
            for volume in spec.volumes
        ]
        or None,
    )
    return V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=V1ObjectMeta(name=spec.name),
        spec=V1JobSpec(
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(name=spec.name, labels=dict(spec.labels)),
                spec=pod_spec,
            ),
        ),
    )


def submit_workload(
    k8s_controller: KubernetesController,
    tracker: ResourceTracker,
    spec: WorkloadSpec,
    namespace: str | None = None,
) -> V1Job:
    """Create the Job for ``spec`` and hand it to ``tracker`` for deletion at teardown."""
    namespace = namespace or tracker.namespace
    job = k8s_controller.create_job(to_job(spec), namespace=namespace)
    tracker.delete_later("Job", spec.name, namespace=namespace)
    logger.info(f"Created Job {spec.name} ({spec.role.value}, {spec.security.value}) in {namespace}")
    return job
