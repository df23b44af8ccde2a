"""Exception hierarchy for kafkaprobe."""


class KafkaProbeError(Exception):
    """Base exception for harness errors."""


class WaitTimeoutError(KafkaProbeError):
    """A condition was not satisfied before its deadline."""

    def __init__(self, description: str, timeout: float, last_reason: str | None = None) -> None:
        message = f"Timeout after {timeout:g}s waiting for {description}"
        if last_reason:
            message += f" (last state: {last_reason})"
        super().__init__(message)
        self.description = description
        self.timeout = timeout
        self.last_reason = last_reason


class HardFailureError(KafkaProbeError):
    """A condition observed a terminal bad state; polling was aborted."""

    def __init__(self, description: str, reason: str) -> None:
        super().__init__(f"{description} failed: {reason}")
        self.description = description
        self.reason = reason


class ConfigurationError(KafkaProbeError):
    """A secret or field required to configure a workload is missing."""


class EnvironmentInconsistentError(KafkaProbeError):
    """Resources were left behind after teardown; the environment has been recreated."""

    def __init__(self, namespace: str, leftovers: list[str], recovered_environment: object = None) -> None:
        details = "".join(f"\n{entry}" for entry in leftovers)
        super().__init__(f"There are some unexpected pods in {namespace}! Cleanup is not finished properly!{details}")
        self.namespace = namespace
        self.leftovers = leftovers
        self.recovered_environment = recovered_environment


class MessageFlowError(KafkaProbeError):
    """A producer or consumer workload did not report the expected message counts."""


class UnexpectedErrorsLoggedError(KafkaProbeError):
    """A component logged errors during a scenario that was expected to run cleanly."""

    def __init__(self, source: str, lines: list[str]) -> None:
        details = "".join(f"\n{line}" for line in lines)
        super().__init__(f"{source} logged {len(lines)} unexpected error line(s):{details}")
        self.source = source
        self.lines = lines
