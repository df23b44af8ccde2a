"""Harness settings, auto-loaded from ``KAFKAPROBE_*`` environment variables."""

from __future__ import annotations

import re

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_IMAGE_ORG: str = "strimzi"
DEFAULT_IMAGE_TAG: str = "latest"

_LATEST_TAG = re.compile(r":latest(?P<suffix>-kafka-[^:/]+)?$")


class HarnessSettings(BaseSettings):
    """Runtime configuration of the verification harness.

    Attributes:
        test_log_dir: Root directory for diagnostic collections.
        docker_org: Image organisation replacing ``strimzi/`` in client images.
        docker_tag: Image tag replacing ``latest`` in client images.
        install_dir: Directory holding the operator installation manifests.
        operator_prefix: Name prefix of infrastructure pods ignored by the leftover-pod check.
        default_namespace: Namespace the harness falls back to while recreating another one.
        cluster_name: Name of the Kafka cluster under test.
        test_client_image: Image running the producer and consumer scripts.
        ping_client_image: Image running the combined ping script.
        teardown_wait_seconds: Grace period before counting leftover pods.
    """

    model_config = SettingsConfigDict(env_prefix="KAFKAPROBE_", extra="ignore")

    test_log_dir: str = "target/logs"
    docker_org: str = DEFAULT_IMAGE_ORG
    docker_tag: str = DEFAULT_IMAGE_TAG
    install_dir: str = "../install/cluster-operator"
    operator_prefix: str = "strimzi"
    default_namespace: str = "myproject"
    cluster_name: str = "my-cluster"
    test_client_image: str = "strimzi/test-client:latest"
    ping_client_image: str = "strimzi/test-client:latest-kafka-2.0.0"
    teardown_wait_seconds: float = Field(default=10.0, ge=0)

    def change_org_and_tag(self, image: str) -> str:
        """Rewrite a ``strimzi/<name>:latest[-kafka-<v>]`` image to the configured org and tag.

        Images from other organisations or with a pinned tag are returned unchanged
        apart from the organisation prefix.
        """
        if image.startswith(f"{DEFAULT_IMAGE_ORG}/"):
            image = f"{self.docker_org}/{image[len(DEFAULT_IMAGE_ORG) + 1:]}"
        return _LATEST_TAG.sub(lambda m: f":{self.docker_tag}{m.group('suffix') or ''}", image)
