from __future__ import annotations

from pathlib import Path

import pytest

from askrepo.config import DEFAULT_API_URL, DEFAULT_MODEL
from askrepo.settings import Settings, load_env_defaults


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("ASKREPO_API_URL", "ASKREPO_MODEL", "ASKREPO_MAX_CONTEXT"):
        monkeypatch.delenv(key, raising=False)


@pytest.mark.unit
def test_settings_defaults() -> None:
    settings = Settings(prompt="hi")

    assert settings.model == DEFAULT_MODEL
    assert settings.api_url == DEFAULT_API_URL
    assert settings.max_context is None
    assert settings.effective_max_depth == 1
    assert settings.extension_list == []


@pytest.mark.unit
def test_settings_recursive_and_extensions() -> None:
    settings = Settings(prompt="hi", recursive=True, extensions=" .PY, md ,")

    assert settings.effective_max_depth is None
    assert settings.extension_list == ["py", "md"]


@pytest.mark.unit
def test_load_env_defaults_environment_overrides_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("ASKREPO_MODEL=from-file\nASKREPO_MAX_CONTEXT=4096\nOTHER=1\n", encoding="utf-8")
    monkeypatch.setenv("ASKREPO_MODEL", "from-env")

    assert load_env_defaults(env_file) == {"model": "from-env", "max_context": "4096"}


@pytest.mark.unit
def test_from_args_prefers_explicit_arguments() -> None:
    env = {"model": "env-model", "max_context": "4096", "api_url": "http://remote:11434/api/generate"}

    settings = Settings.from_args({"prompt": "hi", "model": "cli-model", "max_context": None}, env=env)

    assert settings.model == "cli-model"
    assert settings.max_context == 4096
    assert settings.api_url == "http://remote:11434/api/generate"
