import os

from webvault.utils.env_loader import ENV_FILE_VARIABLE, load_environment, resolve_env_file


def test_load_environment_from_custom_file(monkeypatch, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("DATA_DIR=/tmp/stores\nFETCH_WORKERS=4\n")

    monkeypatch.delenv("DATA_DIR", raising=False)
    monkeypatch.delenv("FETCH_WORKERS", raising=False)

    loaded = load_environment(env_file, override=True)

    assert loaded == env_file
    assert os.getenv("DATA_DIR") == "/tmp/stores"
    assert os.getenv("FETCH_WORKERS") == "4"


def test_load_environment_missing_file(tmp_path):
    missing_file = tmp_path / "missing.env"

    assert load_environment(missing_file) is None


def test_load_environment_keeps_exported_values_without_override(monkeypatch, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("FETCH_WORKERS=4\n")
    monkeypatch.setenv("FETCH_WORKERS", "16")

    load_environment(env_file)

    assert os.getenv("FETCH_WORKERS") == "16"


def test_env_file_variable_is_used_when_no_path_is_given(monkeypatch, tmp_path):
    env_file = tmp_path / "service.env"
    env_file.write_text("JOB_CACHE_TTL=42\n")
    monkeypatch.setenv(ENV_FILE_VARIABLE, str(env_file))
    monkeypatch.delenv("JOB_CACHE_TTL", raising=False)

    assert resolve_env_file() == env_file
    assert load_environment() == env_file
    assert os.getenv("JOB_CACHE_TTL") == "42"


def test_explicit_path_beats_env_file_variable(monkeypatch, tmp_path):
    preferred = tmp_path / "preferred.env"
    preferred.write_text("")
    monkeypatch.setenv(ENV_FILE_VARIABLE, str(tmp_path / "other.env"))

    assert resolve_env_file(preferred) == preferred
