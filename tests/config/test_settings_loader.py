"""
Tests for fiscal_config: YAML loading, defaults, validation and checksum.
"""

import textwrap

import pytest
import yaml

from fiscal_config import get_active_settings
from fiscal_config.loader import compute_checksum, load_yaml_file, parse_settings
from fiscal_config.schema import (
    DEFAULT_MATERIALIZED_VIEWS,
    ChunkSettings,
    RefreshSettings,
    WorkerSettings,
)


def _write(tmp_path, body: str):
    path = tmp_path / "settings.yaml"
    path.write_text(textwrap.dedent(body))
    return path


class TestDefaultSettings:
    def test_shipped_settings_load(self):
        settings = get_active_settings()

        assert settings.settings_id == "efd-import-default"
        assert settings.version == 1
        assert settings.chunk.chunk_size_bytes == 4 * 1024 * 1024
        assert settings.chunk.max_chunk_size_bytes == 64 * 1024 * 1024
        assert settings.refresh.timeout_seconds == 30.0
        assert settings.refresh.views == DEFAULT_MATERIALIZED_VIEWS
        assert settings.worker.stale_after_seconds == 120
        assert len(settings.checksum) == 64

    def test_load_emits_config_trace(self, captured_logs):
        settings = get_active_settings()

        trace = [r for r in captured_logs() if r["message"] == "FISCAL_CONFIG_TRACE"]
        assert trace
        assert trace[-1]["checksum"] == settings.checksum


class TestParseSettings:
    def test_sections_are_optional(self):
        settings = parse_settings({"settings_id": "minimal", "version": 3})

        assert settings.chunk == ChunkSettings()
        assert settings.refresh == RefreshSettings()
        assert settings.worker == WorkerSettings()
        assert settings.database_url is None

    def test_overrides(self, tmp_path):
        path = _write(tmp_path, """
            settings_id: small
            version: 2
            chunk:
              size_bytes: 1024
              max_size_bytes: 4096
            refresh:
              timeout_seconds: 2.5
              views: [mv_one]
            worker:
              poll_interval_seconds: 0.5
              stale_after_seconds: 30
        """)

        settings = get_active_settings(path)

        assert settings.chunk == ChunkSettings(1024, 4096)
        assert settings.refresh == RefreshSettings(2.5, ("mv_one",))
        assert settings.worker == WorkerSettings(0.5, 30)

    def test_empty_view_list_disables_refresh(self):
        settings = parse_settings({"settings_id": "x", "version": 1, "refresh": {"views": []}})
        assert settings.refresh.views == ()

    def test_max_defaults_to_at_least_chunk_size(self):
        big = 128 * 1024 * 1024
        settings = parse_settings({"settings_id": "x", "version": 1, "chunk": {"size_bytes": big}})
        assert settings.chunk.max_chunk_size_bytes == big

    @pytest.mark.parametrize(
        "section,values",
        [
            ("chunk", {"size_bytes": 0}),
            ("chunk", {"size_bytes": 1024, "max_size_bytes": 512}),
            ("refresh", {"timeout_seconds": -1}),
            ("worker", {"poll_interval_seconds": 0}),
            ("worker", {"stale_after_seconds": 0}),
        ],
    )
    def test_invalid_values_rejected(self, section, values):
        with pytest.raises(ValueError):
            parse_settings({"settings_id": "x", "version": 1, section: values})

    def test_missing_settings_id_raises(self):
        with pytest.raises(KeyError):
            parse_settings({"version": 1})


class TestChecksum:
    def test_checksum_ignores_key_order(self):
        a = compute_checksum({"settings_id": "x", "version": 1, "chunk": {"size_bytes": 10}})
        b = compute_checksum({"chunk": {"size_bytes": 10}, "version": 1, "settings_id": "x"})
        assert a == b

    def test_checksum_changes_with_content(self):
        assert compute_checksum({"version": 1}) != compute_checksum({"version": 2})


class TestLoadYaml:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_file(tmp_path / "nope.yaml")

    def test_empty_file_is_empty_dict(self, tmp_path):
        path = _write(tmp_path, "")
        assert load_yaml_file(path) == {}

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "chunk: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(path)
