import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from avdtp_conformance import config, session
from avdtp_conformance.errors import ConfigurationError


def _clear(monkeypatch):
    for name in ("AVDTP_SESSION_FACTORY", "AVDTP_TIMEOUT", "AVDTP_VERBOSE", "AVDTP_MTU", "AVDTP_VERSION"):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)

    cfg = config.HarnessConfig.from_env()

    assert cfg.session_factory is None
    assert cfg.timeout == config.DEFAULT_TIMEOUT
    assert cfg.verbose is False
    assert cfg.mtu == 672
    assert cfg.version == 0x0100


def test_environment_values(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("AVDTP_SESSION_FACTORY", "mystack.avdtp:new_session")
    monkeypatch.setenv("AVDTP_TIMEOUT", "0")
    monkeypatch.setenv("AVDTP_VERBOSE", "Yes")
    monkeypatch.setenv("AVDTP_VERSION", "0x0103")

    cfg = config.HarnessConfig.from_env()

    assert cfg.session_factory == "mystack.avdtp:new_session"
    assert cfg.timeout is None
    assert cfg.verbose is True
    assert cfg.version == 0x0103


def test_invalid_environment_values(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("AVDTP_TIMEOUT", "soon")
    with pytest.raises(ConfigurationError):
        config.HarnessConfig.from_env()

    monkeypatch.setenv("AVDTP_TIMEOUT", "-1")
    with pytest.raises(ConfigurationError):
        config.HarnessConfig.from_env()

    monkeypatch.setenv("AVDTP_TIMEOUT", "5")
    monkeypatch.setenv("AVDTP_MTU", "big")
    with pytest.raises(ConfigurationError):
        config.HarnessConfig.from_env()


def test_override_ignores_unset_values():
    cfg = config.HarnessConfig(session_factory="a:b", verbose=False)

    updated = cfg.override(session_factory=None, verbose=True)

    assert updated.session_factory == "a:b"
    assert updated.verbose is True


def test_load_session_factory_resolves_dotted_attribute():
    factory = session.load_session_factory("avdtp_conformance.config:HarnessConfig.from_env")
    assert callable(factory)


@pytest.mark.parametrize(
    "path",
    ["no_colon", "avdtp_conformance.missing_module:factory", "avdtp_conformance.config:missing", "avdtp_conformance.config:TRUTHY"],
)
def test_load_session_factory_errors(path):
    with pytest.raises(ConfigurationError):
        session.load_session_factory(path)


def test_env_file_fills_only_missing_keys(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# harness settings\n"
        "AVDTP_MTU=700\n"
        "AVDTP_VERBOSE='yes'\n"
        "not a setting\n"
        "AVDTP_SESSION_FACTORY = \"mystack.avdtp:new_session\"\n"
    )
    environ = {"AVDTP_VERBOSE": "0"}

    loaded = config.load_env_file(env_file, environ)

    assert loaded == 2
    assert environ == {
        "AVDTP_VERBOSE": "0",
        "AVDTP_MTU": "700",
        "AVDTP_SESSION_FACTORY": "mystack.avdtp:new_session",
    }


def test_missing_env_file_is_ignored(tmp_path):
    environ = {}
    assert config.load_env_file(tmp_path / ".env", environ) == 0
    assert environ == {}
