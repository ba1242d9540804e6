import pydantic
import pytest

from research_core.config.settings import Settings
from research_core.prompts import render_prompt


def test_yaml_config_is_loaded(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("default_provider: kimi\nresearch_top_k: 9\n", encoding="utf-8")
    monkeypatch.setenv("RESEARCH_CONFIG_FILE", str(config))
    monkeypatch.delenv("DEFAULT_PROVIDER", raising=False)
    monkeypatch.delenv("RESEARCH_TOP_K", raising=False)
    cfg = Settings(_env_file=None)
    assert cfg.default_provider == "kimi"
    assert cfg.research_top_k == 9


def test_env_overrides_yaml(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("default_provider: kimi\n", encoding="utf-8")
    monkeypatch.setenv("RESEARCH_CONFIG_FILE", str(config))
    monkeypatch.setenv("DEFAULT_PROVIDER", "glm")
    assert Settings(_env_file=None).default_provider == "glm"


def test_validation():
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, gemini_api_key="short")
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, research_default_depth="Huge")
    assert Settings(_env_file=None, research_default_depth="Deep-dive").research_default_depth == "Deep-dive"
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, default_provider="openai")
    assert Settings(_env_file=None, default_provider=" Kimi ").default_provider == "kimi"


def test_prompts_render():
    text = render_prompt("tool_result", query="User: q", output="rows")
    assert text.startswith('The user asked: "User: q"')
    assert "rows" in text
    assert render_prompt("forced_final", transcript="T", output="O").endswith("Do not call any more tools.")
