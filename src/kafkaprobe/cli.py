"""kafkaprobe: verification harness for a Kafka cluster on Kubernetes.

Command-line access to the harness pieces that are useful outside a test run:

1. ``collect``    : store events, config maps and container logs of a namespace
2. ``verify-env`` : check a namespace for leftovers after teardown, recreating it if needed
3. ``render``     : print the Job a producer, consumer or ping workload would run as
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict

from .baseline import BaselineInstaller
from .config import HarnessSettings
from .diagnostics import LogCollector, to_yaml
from .environment import ClusterEnvironment
from .exceptions import EnvironmentInconsistentError, KafkaProbeError, WaitTimeoutError
from .kubernetes_controller import KubernetesController
from .models import AuthMechanism, CommandStatus, KafkaUserIdentity, WorkloadRole
from .recovery import EnvironmentRecoveryController
from .resources import ResourceTracker
from .workload_builder import (
    build_combined_spec,
    build_consumer_spec,
    build_producer_spec,
    secret_password_lookup,
    to_job,
)

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI usage. Only called from main()."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s : %(name)-13s : %(levelname)s :: %(message)s",
    )


def _get_current_namespace(settings: HarnessSettings) -> str:
    """Read the active namespace from kubeconfig, falling back to the configured default."""
    import kubernetes.config

    try:
        _, active_context = kubernetes.config.list_kube_config_contexts()
        if ns := active_context.get("context", {}).get("namespace"):
            return ns
    except (kubernetes.config.ConfigException, OSError):
        logger.debug("No kubeconfig namespace available")
    return settings.default_namespace


def _parse_comma_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_args(args: list[str] | None = None, settings: HarnessSettings | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of argument strings (defaults to ``sys.argv``).
        settings: Settings providing defaults; loaded from the environment when omitted.

    Returns:
        Parsed ``argparse.Namespace``.
    """
    settings = settings or HarnessSettings()
    parser = argparse.ArgumentParser(
        description="kafkaprobe: verification harness for a Kafka cluster on Kubernetes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--context", help="Kubeconfig context name to use for cluster connection")
    parser.add_argument("--insecure", action="store_true", help="Disable TLS verification of the API server")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    collect = subparsers.add_parser(
        "collect",
        help="Store events, config maps and container logs of a namespace",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    collect.add_argument("--namespace", help="Namespace to collect from (default: from kubeconfig)")
    collect.add_argument("--output", default=settings.test_log_dir, help="Root directory of collections")
    collect.add_argument("--test-class", default="", help="Test class name used in the directory name")
    collect.add_argument("--test-name", default="", help="Test name used in the directory name")

    verify = subparsers.add_parser(
        "verify-env",
        help="Check a namespace for leftover pods and recreate it when any are found",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    verify.add_argument("--namespace", help="Cluster operator namespace (default: from kubeconfig)")
    verify.add_argument(
        "--bindings-namespaces",
        help="Comma-separated namespaces the operator manages (default: the operator namespace)",
    )
    verify.add_argument("--cluster-name", default=settings.cluster_name, help="Kafka cluster name")

    render = subparsers.add_parser(
        "render",
        help="Print the Job manifest of a verification workload",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    render.add_argument("--role", choices=[role.value for role in WorkloadRole], required=True)
    render.add_argument("--name", required=True, help="Workload (Job) name")
    render.add_argument("--topic", default="my-topic", help="Topic to produce to / consume from")
    render.add_argument("--messages", type=int, default=100, help="Number of records")
    render.add_argument("--cluster-name", default=settings.cluster_name, help="Kafka cluster name")
    render.add_argument("--tls", action="store_true", help="Use the TLS listener")
    render.add_argument("--user", help="KafkaUser the client authenticates as")
    render.add_argument(
        "--auth",
        choices=[mechanism.value for mechanism in AuthMechanism],
        default=AuthMechanism.NONE.value,
        help="Authentication of --user",
    )
    render.add_argument("--namespace", help="Namespace holding the user's password secret (SCRAM only)")

    return parser.parse_args(args)


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------


def run_collect(args: argparse.Namespace, settings: HarnessSettings) -> CommandStatus:
    k8s_controller = KubernetesController(context=args.context, insecure=args.insecure)
    namespace = args.namespace or _get_current_namespace(settings)
    snapshot = LogCollector(k8s_controller, namespace).collect(args.output, args.test_class, args.test_name)
    print(json.dumps(asdict(snapshot), indent=2))
    if snapshot.errors:
        logger.error(f"Collection in {namespace} incomplete: {sorted(snapshot.errors)}")
        return CommandStatus.FAIL
    return CommandStatus.PASS


def run_verify_env(args: argparse.Namespace, settings: HarnessSettings) -> CommandStatus:
    k8s_controller = KubernetesController(context=args.context, insecure=args.insecure)
    namespace = args.namespace or _get_current_namespace(settings)
    bindings = _parse_comma_list(args.bindings_namespaces)
    recovery = EnvironmentRecoveryController(k8s_controller, BaselineInstaller(k8s_controller, settings), settings)
    env = ClusterEnvironment(
        namespace=namespace,
        operator_namespace=namespace,
        cluster_name=args.cluster_name,
        class_resources=ResourceTracker(k8s_controller, namespace),
    )

    status = CommandStatus.PASS
    leftovers: list[str] = []
    try:
        recovery.verify_and_recover(env, namespace, *bindings)
    except EnvironmentInconsistentError as e:
        logger.error(str(e))
        leftovers = e.leftovers
        status = CommandStatus.FAIL
    except WaitTimeoutError as e:
        logger.error(f"Recovery timed out: {e}")
        status = CommandStatus.TIMEOUT

    report = {
        "namespace": namespace,
        "status": status.value,
        "states": [state.value for state in recovery.history],
        "leftovers": leftovers,
    }
    print(json.dumps(report, indent=2))
    return status


def run_render(args: argparse.Namespace, settings: HarnessSettings) -> CommandStatus:
    identity = KafkaUserIdentity(args.user, AuthMechanism(args.auth)) if args.user else None
    password_lookup = None
    if identity is not None and identity.auth == AuthMechanism.SCRAM_SHA_512:
        k8s_controller = KubernetesController(context=args.context, insecure=args.insecure)
        password_lookup = secret_password_lookup(k8s_controller, args.namespace or _get_current_namespace(settings))

    builders = {
        WorkloadRole.PRODUCER: build_producer_spec,
        WorkloadRole.CONSUMER: build_consumer_spec,
        WorkloadRole.COMBINED: build_combined_spec,
    }
    spec = builders[WorkloadRole(args.role)](
        name=args.name,
        topic=args.topic,
        message_count=args.messages,
        cluster_name=args.cluster_name,
        tls_listener=args.tls,
        identity=identity,
        password_lookup=password_lookup,
        settings=settings,
    )
    print(to_yaml(to_job(spec)), end="")
    return CommandStatus.PASS


_COMMANDS = {
    "collect": run_collect,
    "verify-env": run_verify_env,
    "render": run_render,
}


def run(args: argparse.Namespace, settings: HarnessSettings | None = None) -> int:
    """Dispatch a parsed command line.

    Returns:
        Process exit code (0 = PASS, 1 = FAIL, 2 = TIMEOUT).
    """
    settings = settings or HarnessSettings()
    try:
        return _COMMANDS[args.command](args, settings).exit_code
    except WaitTimeoutError as e:
        logger.error(str(e))
        return CommandStatus.TIMEOUT.exit_code
    except KafkaProbeError as e:
        logger.error(str(e))
        return CommandStatus.FAIL.exit_code


def main() -> None:
    """CLI entry point for kafkaprobe."""
    try:
        settings = HarnessSettings()
        parsed_args = parse_args(settings=settings)
        _setup_logging(parsed_args.verbose)
        sys.exit(run(parsed_args, settings))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
