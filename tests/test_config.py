"""
tests.test_config
~~~~~~~~~~~~~~~~~

Settings 派生属性单元测试。
"""
from __future__ import annotations

import pytest

from signaling.core.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.PORT == 3000
    assert settings.CORS_ORIGIN == "*"
    assert settings.cors_origins == ["*"]
    assert settings.HOST_SECRET is None


def test_cors_origins_parsing() -> None:
    settings = Settings(_env_file=None, CORS_ORIGIN="https://a.example, https://b.example,")

    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_port_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")

    assert Settings(_env_file=None).PORT == 8080


@pytest.mark.parametrize(
    ("environment", "expected"),
    [("dev", "INFO"), ("test", "DEBUG"), ("prod", "WARNING")],
)
def test_effective_log_level(monkeypatch: pytest.MonkeyPatch, environment: str, expected: str) -> None:
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    settings = Settings(_env_file=None, ENVIRONMENT=environment)

    assert settings.effective_log_level == expected
    assert settings.is_prod == (environment == "prod")


def test_log_level_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "ERROR")

    assert Settings(_env_file=None, ENVIRONMENT="prod").effective_log_level == "ERROR"
