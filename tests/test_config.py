"""Unit tests for ``HarnessSettings``."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kafkaprobe.config import HarnessSettings


class TestHarnessSettings:
    """Tests for defaults and ``KAFKAPROBE_*`` environment overrides."""

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KAFKAPROBE_OPERATOR_PREFIX", "my-operator")
        monkeypatch.setenv("KAFKAPROBE_TEARDOWN_WAIT_SECONDS", "2.5")
        monkeypatch.setenv("KAFKAPROBE_UNRELATED", "ignored")

        settings = HarnessSettings()

        assert settings.operator_prefix == "my-operator"
        assert settings.teardown_wait_seconds == 2.5

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("KAFKAPROBE_OPERATOR_PREFIX", "KAFKAPROBE_DEFAULT_NAMESPACE", "KAFKAPROBE_TEARDOWN_WAIT_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        settings = HarnessSettings()

        assert settings.operator_prefix == "strimzi"
        assert settings.default_namespace == "myproject"
        assert settings.teardown_wait_seconds == 10.0

    def test_negative_teardown_wait_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HarnessSettings(teardown_wait_seconds=-1)


class TestChangeOrgAndTag:
    """Tests for ``HarnessSettings.change_org_and_tag`` image rewriting."""

    @pytest.mark.parametrize(
        ("image", "expected"),
        [
            ("strimzi/test-client:latest", "quay.io-org/test-client:0.8.0"),
            ("strimzi/test-client:latest-kafka-2.0.0", "quay.io-org/test-client:0.8.0-kafka-2.0.0"),
            ("strimzi/test-client:1.2.3", "quay.io-org/test-client:1.2.3"),
            ("other/test-client:latest", "other/test-client:0.8.0"),
        ],
    )
    def test_rewrite(self, image: str, expected: str) -> None:
        settings = HarnessSettings(docker_org="quay.io-org", docker_tag="0.8.0")

        assert settings.change_org_and_tag(image) == expected

    def test_default_org_and_tag_leave_image_unchanged(self) -> None:
        settings = HarnessSettings(docker_org="strimzi", docker_tag="latest")

        assert settings.change_org_and_tag("strimzi/test-client:latest") == "strimzi/test-client:latest"
