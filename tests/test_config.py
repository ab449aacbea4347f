"""
tests/test_config.py — YAML Config Loader
==========================================
"""

from __future__ import annotations

import logging

import pytest

from tally.config import LOG_FORMAT, TallyConfig, configure_logging, load_config


def _write(tmp_path, body: str):
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "config.yaml")

    def test_empty_file_uses_defaults(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == TallyConfig()

    def test_partial_economy_section(self, tmp_path):
        cfg = load_config(_write(tmp_path, "economy:\n  max_level: 5\n"))
        assert cfg == TallyConfig(max_level=5)

    def test_economy_overrides(self, tmp_path):
        cfg = load_config(_write(
            tmp_path,
            "catalog_path: rewards.yaml\n"
            "economy:\n"
            "  transfer_max_count: 5\n"
            "  transfer_max_sum: 300\n"
            "  transfer_window_hours: 1\n"
            "  level_step_cost: 250\n"
            "  max_level: 6\n",
        ))

        assert cfg.transfer_max_count == 5
        assert cfg.transfer_max_sum == 300
        assert cfg.transfer_window_hours == 1
        assert cfg.level_step_cost == 250
        assert cfg.max_level == 6
        assert cfg.catalog_path == str(tmp_path / "rewards.yaml")

    def test_absolute_catalog_path_kept(self, tmp_path):
        target = tmp_path / "elsewhere" / "rewards.yaml"
        cfg = load_config(_write(tmp_path, f"catalog_path: {target}\n"))
        assert cfg.catalog_path == str(target)

    def test_config_is_frozen(self):
        cfg = TallyConfig()
        with pytest.raises(AttributeError):
            cfg.transfer_max_count = 1


def test_configure_logging_installs_format(monkeypatch):
    seen = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))

    configure_logging(logging.DEBUG)

    assert seen["level"] == logging.DEBUG
    assert seen["format"] == LOG_FORMAT
