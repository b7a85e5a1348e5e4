"""Tests for YAML pipeline configuration and runtime settings."""

from unittest.mock import patch

import pytest

from intel_triage.utils.config_loader import ConfigError, load_pipeline_config
from intel_triage.utils.pipeline_config import PipelineConfig

VALID = """
settings:
  max_attempts: 5
  default_refresh_interval: 1800
proxies:
  - type: json_envelope
    url: https://api.allorigins.win/get?url=
  - type: authenticated
    url: https://edge.example/functions/v1/fetch-rss
    token_env: TEST_PROXY_TOKEN
pirs:
  - name: Maritime Security
    category: Maritime
    keywords: [Tanker, port]
sources:
  - name: Grid Watch
    url: https://grid.example/rss
  - name: Atom Desk
    url: https://atom.example/feed
    kind: atom
    refresh_interval: 600
    active: false
"""


def _write(tmp_path, text):
    path = tmp_path / "pipeline.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadPipelineConfig:
    def test_valid_file(self, tmp_path):
        with patch.dict("os.environ", {"TEST_PROXY_TOKEN": "s3cret"}):
            loaded = load_pipeline_config(_write(tmp_path, VALID))

        assert loaded.settings["max_attempts"] == 5
        grid, atom = loaded.sources
        assert grid.refresh_interval == 1800
        assert grid.kind == "rss"
        assert atom.kind == "atom"
        assert atom.refresh_interval == 600
        assert atom.active is False
        assert atom.status == "inactive"
        pir = loaded.pirs[0]
        assert pir.category == "maritime"
        assert pir.keywords == ["tanker", "port"]
        assert [p.type for p in loaded.proxies] == ["json_envelope", "authenticated"]
        assert loaded.proxies[1].token == "s3cret"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_pipeline_config(tmp_path / "absent.yaml")

    @pytest.mark.parametrize(
        "text",
        [
            "sources:\n  - name: x\n",
            "sources:\n  - name: x\n    url: not-a-url\n",
            "sources:\n  - name: x\n    url: https://a.example/\n    kind: podcast\n",
            "pirs:\n  - name: Reserved\n    category: none\n",
            "pirs:\n  - name: P\n    category: p\n    confidence_threshold: 120\n",
            "proxies:\n  - type: socks\n    url: https://p.example/\n",
            "sources: {}\n",
            "pirs: 0\n",
            "proxies: ''\n",
            "settings: []\n",
            "- just\n- a list\n",
            "sources: [\n",
        ],
    )
    def test_invalid(self, tmp_path, text):
        with pytest.raises(ConfigError):
            load_pipeline_config(_write(tmp_path, text))

    def test_duplicate_source_names(self, tmp_path):
        text = (
            "sources:\n"
            "  - name: Same\n    url: https://a.example/rss\n"
            "  - name: Same\n    url: https://b.example/rss\n"
        )

        with pytest.raises(ConfigError):
            load_pipeline_config(_write(tmp_path, text))

    def test_empty_file(self, tmp_path):
        loaded = load_pipeline_config(_write(tmp_path, ""))

        assert loaded.sources == []
        assert loaded.pirs == []

    def test_keys_without_values_are_empty(self, tmp_path):
        loaded = load_pipeline_config(_write(tmp_path, "sources:\npirs:\nproxies:\n"))

        assert (loaded.sources, loaded.pirs, loaded.proxies) == ([], [], [])


class TestPipelineConfig:
    def test_environment_defaults(self):
        with patch.dict("os.environ", {"TRIAGE_MAX_ATTEMPTS": "7", "TRIAGE_WORKERS": "4"}):
            config = PipelineConfig()

        assert config.max_attempts == 7
        assert config.workers == 4

    def test_update_coerces_and_ignores_unknown(self):
        config = PipelineConfig().update({"retry_backoff_seconds": 10, "workers": "3", "color": "blue"})

        assert config.retry_backoff_seconds == 10.0
        assert isinstance(config.retry_backoff_seconds, float)
        assert config.workers == 3
