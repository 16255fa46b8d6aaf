"""Config layering: defaults < settings.toml < environment."""

from __future__ import annotations

import pytest

from somni.core.config import Config, PipelineConfig

_ENV_VARS = (
    "SOMNI_CONFIG_PATH",
    "SOMNI_DEFAULT_LLM",
    "SOMNI_FALLBACK_LLMS",
    "SOMNI_RETRIEVAL_GLOBAL_CAP",
    "SOMNI_PIPELINE_ADMISSION_MODE",
    "SOMNI_PIPELINE_WALL_CLOCK_SEC",
    "SOMNI_DEBUG",
)


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestConfigLoad:
    def test_defaults_without_files(self, clean_env):
        cfg = Config.load()
        assert cfg.loaded_from == []
        assert cfg.retrieval.per_theme_cap == 4
        assert cfg.retrieval.global_cap == 10
        assert cfg.pipeline.admission_mode == "queue"
        assert "/" in cfg.models.default_llm

    def test_toml_sections_merge_over_defaults(self, clean_env):
        path = clean_env / "settings.toml"
        path.write_text(
            "[retrieval]\nglobal_cap = 6\n\n[pipeline]\nwall_clock_sec = 42.0\n",
            encoding="utf-8",
        )
        cfg = Config.load()
        assert [p.name for p in cfg.loaded_from] == [path.name]
        assert cfg.retrieval.global_cap == 6
        # Untouched keys in the same section keep their defaults
        assert cfg.retrieval.per_theme_cap == 4
        assert cfg.pipeline.wall_clock_sec == 42.0

    def test_env_overrides_toml(self, clean_env, monkeypatch):
        path = clean_env / "custom.toml"
        path.write_text('[models]\ndefault_llm = "openai/gpt-4o"\n', encoding="utf-8")
        monkeypatch.setenv("SOMNI_DEFAULT_LLM", "openai/gpt-4o-mini")
        monkeypatch.setenv("SOMNI_FALLBACK_LLMS", "openai/a, openai/b")
        monkeypatch.setenv("SOMNI_RETRIEVAL_GLOBAL_CAP", "3")

        cfg = Config.load(path)
        assert cfg.models.default_llm == "openai/gpt-4o-mini"
        assert cfg.models.fallback_llms == ["openai/a", "openai/b"]
        assert cfg.retrieval.global_cap == 3

    def test_unknown_admission_mode_is_ignored(self, clean_env, monkeypatch):
        monkeypatch.setenv("SOMNI_PIPELINE_ADMISSION_MODE", "drop")
        cfg = Config.load()
        assert cfg.pipeline.admission_mode == "queue"

    def test_broken_toml_falls_back_to_defaults(self, clean_env):
        (clean_env / "settings.toml").write_text("[retrieval\n", encoding="utf-8")
        cfg = Config.load()
        assert cfg.loaded_from == []
        assert cfg.retrieval.global_cap == 10


class TestPipelineConfig:
    def test_backoff_bounds_are_checked(self):
        with pytest.raises(ValueError):
            PipelineConfig(backoff_base_sec=4.0, backoff_max_sec=1.0)
