"""Bounded-time condition polling for kafkaprobe.

Every wait in the harness is a :class:`Condition` evaluated on a fixed cadence
by :func:`wait_for`.  A condition reports one of three outcomes: it holds
(polling stops and its value is returned), it does not hold yet (polling
continues), or it can never hold (polling aborts without waiting for the
deadline).
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from kubernetes.client import V1Job, V1JobStatus

from .diagnostics import DiagnosticTask, run_isolated
from .exceptions import HardFailureError, WaitTimeoutError
from .kubernetes_controller import KubernetesControllerException
from .models import ConditionResult, ExecResult, PollOutcome

logger = logging.getLogger(__name__)


class Condition(Protocol):
    """A side-effect-free check of external state."""

    def evaluate(self) -> ConditionResult: ...


class PredicateCondition:
    """Adapts a boolean callable: ``True`` is success, ``False`` is "not yet"."""

    def __init__(self, predicate: Callable[[], bool]) -> None:
        self._predicate = predicate

    def evaluate(self) -> ConditionResult:
        return ConditionResult.success(True) if self._predicate() else ConditionResult.pending()


def classify_job_status(status: V1JobStatus | None) -> ConditionResult:
    """Map Job status counters to a poll outcome.

    Priority: any failed replica is a hard failure; one succeeded replica is
    success; active replicas mean "not yet"; anything else is indeterminate and
    also treated as "not yet".
    """
    if status is None:
        return ConditionResult.pending("job status is missing")
    if (status.failed or 0) > 0:
        return ConditionResult.failure(f"job has {status.failed} failed pod(s)")
    if status.succeeded == 1:
        return ConditionResult.success()
    if (status.active or 0) > 0:
        return ConditionResult.pending(f"job has {status.active} active pod(s)")
    return ConditionResult.pending("job in indeterminate state")


class JobCompletionCondition:
    """Succeeds when the Job read by ``read_job`` has completed, fails on any failed pod."""

    def __init__(self, read_job: Callable[[], V1Job | None]) -> None:
        self._read_job = read_job
        self.last_job: V1Job | None = None

    def evaluate(self) -> ConditionResult:
        job = self._read_job()
        if job is not None:
            self.last_job = job
        result = classify_job_status(job.status if job is not None else None)
        if result.outcome == PollOutcome.SUCCEEDED:
            logger.debug("Poll job succeeded")
            return ConditionResult.success(job)
        logger.debug(f"Poll job: {result.reason}")
        return result


class ZookeeperMntrCondition:
    """Succeeds when the ``mntr`` output of one ensemble member matches ``pattern``.

    Args:
        exec_fn: Runs a command list in ``pod`` and returns its ``ExecResult``.
        pod: ZooKeeper pod to query.
        port: Client port of that member.
        pattern: Regular expression searched for in the output.
    """

    def __init__(self, exec_fn: Callable[[str, list[str]], ExecResult], pod: str, port: int, pattern: re.Pattern[str]) -> None:
        self._exec_fn = exec_fn
        self.pod = pod
        self.port = port
        self.pattern = pattern
        self.last_output: str = ""

    @property
    def command(self) -> list[str]:
        return ["/bin/bash", "-c", f"echo mntr | nc localhost {self.port}"]

    def evaluate(self) -> ConditionResult:
        try:
            result = self._exec_fn(self.pod, self.command)
        except KubernetesControllerException as e:
            logger.debug(f"Exception while waiting for ZK to become leader/follower, ignoring: {e}")
            return ConditionResult.pending(str(e))
        self.last_output = result.stdout
        if self.pattern.search(result.stdout):
            return ConditionResult.success(result.stdout)
        return ConditionResult.pending(f"mntr output of {self.pod} does not match {self.pattern.pattern}")


def wait_for(
    description: str,
    poll_interval: float,
    timeout: float,
    condition: Condition,
    on_timeout: Callable[[], Any] | None = None,
) -> Any:
    """Evaluate ``condition`` until it succeeds, fails, or ``timeout`` expires.

    The condition is evaluated immediately, then after each ``poll_interval``
    sleep.  The calling thread blocks between evaluations.

    Args:
        description: Human-readable description used in logs and errors.
        poll_interval: Seconds between evaluations, strictly positive.
        timeout: Deadline in seconds, strictly greater than ``poll_interval``.
        condition: The check to evaluate.
        on_timeout: Optional callback run before the timeout is raised; its
            own errors are logged and suppressed.

    Returns:
        The value carried by the successful ``ConditionResult``.

    Raises:
        ValueError: If the interval or timeout are out of range.
        HardFailureError: If the condition reports a terminal failure.
        WaitTimeoutError: If the deadline passes without success.
    """
    if poll_interval <= 0:
        raise ValueError(f"poll_interval must be positive, got {poll_interval}")
    if timeout <= poll_interval:
        raise ValueError(f"timeout ({timeout}) must be greater than poll_interval ({poll_interval})")

    logger.debug(f"Waiting for {description}")
    deadline = time.monotonic() + timeout
    last_reason: str | None = None

    while True:
        result = condition.evaluate()
        if result.outcome == PollOutcome.SUCCEEDED:
            return result.value
        if result.outcome == PollOutcome.FAILED:
            raise HardFailureError(description, result.reason or "condition reported failure")

        last_reason = result.reason
        time_left = deadline - time.monotonic()
        if time_left <= 0:
            break
        time.sleep(min(poll_interval, time_left))

    if on_timeout is not None:
        try:
            on_timeout()
        except Exception as e:
            logger.warning(f"Timeout callback for '{description}' failed: {e}")
    raise WaitTimeoutError(description, timeout, last_reason)


def wait_for_or_fail(
    description: str,
    poll_interval: float,
    timeout: float,
    condition: Condition,
    diagnostics: Sequence[DiagnosticTask],
) -> Any:
    """Like :func:`wait_for`, but run ``diagnostics`` in isolation before raising a timeout."""
    return wait_for(
        description,
        poll_interval,
        timeout,
        condition,
        on_timeout=lambda: run_isolated(diagnostics),
    )
