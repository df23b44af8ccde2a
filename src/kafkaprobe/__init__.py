"""kafkaprobe: verification harness for a Kafka cluster on Kubernetes.

Poll cluster state until conditions hold, run producer/consumer workloads
against the cluster, collect diagnostics when something times out, and
recover the environment when a test leaves objects behind.
"""

import logging

from kafkaprobe._version import __version__
from kafkaprobe.diagnostics import LogCollector
from kafkaprobe.environment import ClusterEnvironment
from kafkaprobe.exceptions import (
    ConfigurationError,
    EnvironmentInconsistentError,
    HardFailureError,
    KafkaProbeError,
    UnexpectedErrorsLoggedError,
    WaitTimeoutError,
)
from kafkaprobe.poller import wait_for, wait_for_or_fail
from kafkaprobe.recovery import EnvironmentRecoveryController
from kafkaprobe.scenario import Scenario

__all__ = [
    "ClusterEnvironment",
    "ConfigurationError",
    "EnvironmentInconsistentError",
    "EnvironmentRecoveryController",
    "HardFailureError",
    "KafkaProbeError",
    "LogCollector",
    "Scenario",
    "UnexpectedErrorsLoggedError",
    "WaitTimeoutError",
    "__version__",
    "wait_for",
    "wait_for_or_fail",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
