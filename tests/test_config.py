import json
import pytest
from pydantic import ValidationError

from framespeak.config import ConfigStore, default_provider_config


def test_defaults_without_saved_file(tmp_path, monkeypatch):
    monkeypatch.delenv("FRAMESPEAK_LLM_PROVIDER", raising=False)
    monkeypatch.delenv("FRAMESPEAK_LLM_ENDPOINT", raising=False)
    store = ConfigStore(str(tmp_path / "llm_config.json"))
    assert store.config.endpoint == "http://localhost:11434/api/chat"
    assert store.config.provider == "ollama"
    assert store.config.temperature == 0.7
    assert store.config.max_tokens == 4096


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("FRAMESPEAK_LLM_PROVIDER", "openai")
    monkeypatch.setenv("FRAMESPEAK_LLM_API_KEY", "sk-env")
    config = default_provider_config()
    assert config.provider == "openai"
    assert config.api_key == "sk-env"


def test_update_persists_across_instances(tmp_path):
    path = str(tmp_path / "llm_config.json")
    ConfigStore(path).update(model="llava:13b", temperature=1.5, custom_prompt="Short please")

    reloaded = ConfigStore(path).config
    assert reloaded.model == "llava:13b"
    assert reloaded.temperature == 1.5
    assert reloaded.custom_prompt == "Short please"


@pytest.mark.parametrize("changes", [{"temperature": 2.5}, {"max_tokens": 100}, {"max_tokens": 9000}])
def test_update_rejects_out_of_range_values(tmp_path, changes):
    store = ConfigStore(str(tmp_path / "llm_config.json"))
    with pytest.raises(ValidationError):
        store.update(**changes)
    assert not (tmp_path / "llm_config.json").exists()


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "llm_config.json"
    path.write_text(json.dumps({"endpoint": "x"}), encoding="utf-8")
    assert ConfigStore(str(path)).config.model == default_provider_config().model


def test_reset_removes_saved_config(tmp_path):
    path = tmp_path / "llm_config.json"
    store = ConfigStore(str(path))
    store.update(model="other")
    store.reset()
    assert not path.exists()
    assert store.config.model == default_provider_config().model
