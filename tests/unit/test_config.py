"""Settings loading from the environment."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from deployer.config import Settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("ENVIRONMENT", "LOG_LEVEL", "MAX_CONCURRENT_BUILDS", "PUBLIC_ROOT"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings()

    assert settings.service_name == "deployer"
    assert settings.domain_suffix == "madahost.dev"
    assert settings.max_concurrent_builds >= 1
    assert settings.is_live is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("PUBLIC_ROOT", "/srv/sites")
    monkeypatch.setenv("MAX_CONCURRENT_BUILDS", "3")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.is_live is True
    assert settings.public_root == Path("/srv/sites")
    assert settings.max_concurrent_builds == 3
    assert settings.log_level == "DEBUG"


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text("DOMAIN_SUFFIX=example.test\n")

    assert Settings().domain_suffix == "example.test"


@pytest.mark.parametrize(
    ("name", "value"),
    [("LOG_LEVEL", "LOUD"), ("MAX_CONCURRENT_BUILDS", "0"), ("ENVIRONMENT", "qa")],
)
def test_invalid_values_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings()
