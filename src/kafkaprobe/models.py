"""Data models for kafkaprobe polling, workloads and diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Constants: timing and naming shared by the poller, waits and builders
# ---------------------------------------------------------------------------
GLOBAL_TIMEOUT_SECONDS: float = 300.0  # Default deadline for cluster-state waits (5 minutes).

GLOBAL_POLL_INTERVAL_SECONDS: float = 1.0  # Default cadence between condition evaluations.

TEARDOWN_GLOBAL_WAIT_SECONDS: float = 10.0  # Grace period after teardown before counting leftover pods.

BROKER_API_POLL_INTERVAL_SECONDS: float = 5.0
BROKER_API_TIMEOUT_SECONDS: float = 60.0

ZK_MNTR_POLL_INTERVAL_SECONDS: float = 1.0
ZK_MNTR_TIMEOUT_SECONDS: float = 120.0

TOPIC_POLL_INTERVAL_SECONDS: float = 5.0
TOPIC_TIMEOUT_SECONDS: float = 120.0

SECRET_SETTLE_SECONDS: float = 60.0  # Extra wait after a user secret appears, until the user operator propagates it.

ZK_CLIENT_PORT: int = 2181

TRUSTSTORE_LOCATION: str = "/tmp/truststore.p12"  # noqa: S108
KEYSTORE_LOCATION: str = "/tmp/keystore.p12"  # noqa: S108
CA_SECRET_VOLUME: str = "ca-cert"
CA_SECRET_MOUNT_PATH: str = "/opt/kafka/cluster-ca"
USER_SECRET_VOLUME: str = "tls-cert"
USER_SECRET_MOUNT_PATH: str = "/opt/kafka/user-secret"

CONSUMER_GROUP_SUFFIX_BOUND: int = 2**31 - 1  # Exclusive upper bound of the random ping consumer-group suffix.


class PollOutcome(str, Enum):
    """Tri-state result of a single condition evaluation."""

    SUCCEEDED = "Succeeded"
    PENDING = "Pending"
    FAILED = "Failed"


@dataclass(frozen=True)
class ConditionResult:
    """Result returned by :meth:`Condition.evaluate`.

    Attributes:
        outcome: Whether the condition holds, does not hold yet, or can never hold.
        value: Optional payload handed back to the caller on success.
        reason: Human-readable explanation, used for logging and error messages.
    """

    outcome: PollOutcome
    value: Any = None
    reason: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> ConditionResult:
        return cls(PollOutcome.SUCCEEDED, value=value)

    @classmethod
    def pending(cls, reason: str | None = None) -> ConditionResult:
        return cls(PollOutcome.PENDING, reason=reason)

    @classmethod
    def failure(cls, reason: str) -> ConditionResult:
        return cls(PollOutcome.FAILED, reason=reason)


class AuthMechanism(str, Enum):
    """Client authentication configured on a KafkaUser."""

    NONE = "none"
    TLS = "tls"
    SCRAM_SHA_512 = "scram-sha-512"


class SecurityProfile(str, Enum):
    """Value of ``security.protocol`` a client uses for a given listener/user combination."""

    PLAINTEXT = "PLAINTEXT"
    SSL = "SSL"
    SASL_PLAINTEXT = "SASL_PLAINTEXT"
    SASL_SSL = "SASL_SSL"

    @classmethod
    def resolve(cls, transport_encrypted: bool, auth: AuthMechanism) -> SecurityProfile:
        """Derive the protocol from listener encryption and user authentication.

        TLS-client authentication does not change the protocol: it only adds
        key-store material on top of the encrypted or plain selection.
        """
        return _PROFILES[(transport_encrypted, auth == AuthMechanism.SCRAM_SHA_512)]

    @property
    def encrypted(self) -> bool:
        return self in (SecurityProfile.SSL, SecurityProfile.SASL_SSL)

    @property
    def uses_sasl(self) -> bool:
        return self in (SecurityProfile.SASL_PLAINTEXT, SecurityProfile.SASL_SSL)


# (transport encrypted, SCRAM authentication) -> protocol
_PROFILES: dict[tuple[bool, bool], SecurityProfile] = {
    (True, True): SecurityProfile.SASL_SSL,
    (True, False): SecurityProfile.SSL,
    (False, True): SecurityProfile.SASL_PLAINTEXT,
    (False, False): SecurityProfile.PLAINTEXT,
}


class WorkloadRole(str, Enum):
    """Kind of verifiable client a workload runs."""

    PRODUCER = "producer"
    CONSUMER = "consumer"
    COMBINED = "combined"


class CommandStatus(str, Enum):
    """Outcome of a CLI sub-command."""

    PASS = "PASS"  # noqa: S105
    FAIL = "FAIL"
    TIMEOUT = "TIMEOUT"

    @property
    def exit_code(self) -> int:
        """Return 0 for PASS, 2 for TIMEOUT and 1 for FAIL."""
        _EXIT_CODES: dict[CommandStatus, int] = {
            CommandStatus.PASS: 0,
            CommandStatus.TIMEOUT: 2,
        }
        return _EXIT_CODES.get(self, 1)


class RecoveryState(str, Enum):
    """States of the post-teardown environment check."""

    STABLE = "Stable"
    VERIFYING = "Verifying"
    RECOVERING = "Recovering"


@dataclass(frozen=True)
class KafkaUserIdentity:
    """Harness-side view of a KafkaUser: its name and authentication type."""

    name: str
    auth: AuthMechanism = AuthMechanism.NONE


@dataclass(frozen=True)
class EnvBinding:
    name: str
    value: str


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str


@dataclass(frozen=True)
class SecretVolume:
    """Pod volume backed by a Kubernetes Secret."""

    name: str
    secret_name: str


@dataclass
class WorkloadSpec:
    """Description of one ephemeral run-to-completion client pod.

    A workload is rendered into a ``V1Job`` by
    :func:`kafkaprobe.workload_builder.to_job`; the fields here are kept flat
    so that each security combination can be asserted on directly.
    """

    name: str
    role: WorkloadRole
    topic: str
    message_count: int
    bootstrap_address: str
    security: SecurityProfile
    image: str
    command: list[str]
    container_name: str
    identity: str | None = None
    consumer_group: str | None = None
    restart_policy: str = "OnFailure"
    tls_client_identity: bool = False
    env: list[EnvBinding] = field(default_factory=list)
    volume_mounts: list[VolumeMount] = field(default_factory=list)
    volumes: list[SecretVolume] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def env_value(self, name: str) -> str | None:
        """Return the value of the first env binding named ``name``, if any."""
        return next((binding.value for binding in self.env if binding.name == name), None)


@dataclass
class ExecResult:
    """Captured output of a command run inside a container."""

    stdout: str = ""
    stderr: str = ""
    return_code: int | None = 0

    @property
    def ok(self) -> bool:
        return self.return_code == 0


@dataclass
class DiagnosticTaskResult:
    """Outcome of one isolated diagnostic task."""

    name: str
    succeeded: bool
    error: str | None = None


@dataclass
class DiagnosticSnapshot:
    """Artifacts written by one :meth:`LogCollector.collect` run.

    Attributes:
        root: Directory holding this run's artifacts.
        files: Paths of every file written, in write order.
        errors: Per artifact class, the error that interrupted it.
    """

    root: str
    files: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class MessageFlowResult:
    """Counts parsed from the JSON lines of verifiable producer/consumer output."""

    sent: int | None = None
    acked: int | None = None
    consumed: int | None = None

    @property
    def producer_reported(self) -> bool:
        return self.sent is not None

    @property
    def consumer_reported(self) -> bool:
        return self.consumed is not None
