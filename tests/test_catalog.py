"""
tests/test_catalog.py — Reward Catalog
=======================================
Pure-engine tests: no database.
"""

from __future__ import annotations

import pytest

from tally.config import TallyConfig, load_config
from tally.engine.catalog import (
    AchievementDef,
    MilestoneDef,
    RewardCatalog,
    default_catalog,
    load_catalog,
    load_catalog_for,
)


class TestDefaultCatalog:
    def test_achievements(self):
        catalog = default_catalog()
        assert catalog.achievement("FIRST_LOGIN").coin_reward == 10
        assert catalog.achievement("LEVEL2_UNLOCKED").coin_reward == 50
        assert catalog.achievement("LEVEL3_UNLOCKED").coin_reward == 75
        assert catalog.achievement("FIRST_BUG_REPORT").coin_reward == 25
        assert catalog.achievement("NOPE") is None

    def test_feature_prices(self):
        catalog = default_catalog()
        assert catalog.feature_price("chat") == 100
        assert catalog.feature_price("groupChat") == 200
        assert catalog.feature_price("createGroup") == 300
        assert catalog.feature_price("imageUpload") == 150
        assert catalog.feature_price("teleport") is None

    def test_milestones_for(self):
        catalog = default_catalog()
        ms = catalog.milestones_for("chat", "dmMessagesSent")
        assert [m.threshold for m in ms] == [1, 25, 100]
        assert catalog.milestones_for("chat", "unknown") == ()
        assert catalog.milestones_for("unknown", "dmMessagesSent") == ()

    @pytest.mark.parametrize("level, codes", [
        (1, []),
        (2, ["LEVEL2_UNLOCKED"]),
        (3, ["LEVEL2_UNLOCKED", "LEVEL3_UNLOCKED"]),
        (10, ["LEVEL2_UNLOCKED", "LEVEL3_UNLOCKED"]),
    ])
    def test_achievements_for_level(self, level, codes):
        assert default_catalog().achievements_for_level(level) == codes

    def test_is_immutable(self):
        catalog = default_catalog()
        with pytest.raises(TypeError):
            catalog.feature_prices["chat"] = 0
        with pytest.raises(TypeError):
            catalog.milestones["chat"]["dmMessagesSent"] = ()
        with pytest.raises(AttributeError):
            catalog.achievement("FIRST_LOGIN").coin_reward = 1_000_000

    def test_to_dict(self):
        assert AchievementDef("X", "Ex", 3).to_dict() == {
            "code": "X", "title": "Ex", "coinsReward": 3,
        }

    def test_level_achievement_must_exist(self):
        with pytest.raises(ValueError, match="unknown achievement"):
            RewardCatalog(achievements={}, level_achievements={2: "GHOST"})


class TestLoadCatalog:
    def test_no_path_returns_defaults(self):
        assert load_catalog(None) == default_catalog()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog(tmp_path / "missing.yaml")

    def test_sections_override_defaults(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "achievements:\n"
            "  WELCOME: {title: Welcome, coins: 5}\n"
            "  LEVEL5: {title: Level Five, coins: 500}\n"
            "feature_prices:\n"
            "  chat: 10\n"
            "milestones:\n"
            "  chat:\n"
            "    dmMessagesSent:\n"
            "      - {count: 10, ap: 3, code: DM_10}\n"
            "      - {count: 2, ap: 1, code: DM_2}\n"
            "      - {ap: 1, code: NO_COUNT}\n"
            "level_achievements:\n"
            "  5: LEVEL5\n",
            encoding="utf-8",
        )

        catalog = load_catalog(path)

        assert set(catalog.achievements) == {"WELCOME", "LEVEL5"}
        assert catalog.feature_prices == {"chat": 10}
        assert catalog.milestones_for("chat", "dmMessagesSent") == (
            MilestoneDef(2, 1, "DM_2"),
            MilestoneDef(10, 3, "DM_10"),
        )
        assert catalog.achievements_for_level(5) == ["LEVEL5"]

    def test_absent_sections_keep_defaults(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("feature_prices:\n  chat: 1\n", encoding="utf-8")

        catalog = load_catalog(path)

        assert catalog.feature_price("chat") == 1
        assert catalog.feature_price("groupChat") is None
        assert catalog.achievement("FIRST_LOGIN") is not None
        assert catalog.achievements_for_level(3) == ["LEVEL2_UNLOCKED", "LEVEL3_UNLOCKED"]

    def test_dangling_level_achievement_rejected(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("level_achievements:\n  4: LEVEL4_UNLOCKED\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_catalog(path)


class TestLoadCatalogFor:
    def test_default_config_uses_builtin_catalog(self):
        assert load_catalog_for(TallyConfig()) == default_catalog()

    def test_catalog_path_from_config_file(self, tmp_path):
        (tmp_path / "rewards.yaml").write_text(
            "feature_prices:\n  chat: 7\n", encoding="utf-8"
        )
        (tmp_path / "config.yaml").write_text(
            "catalog_path: rewards.yaml\n", encoding="utf-8"
        )

        catalog = load_catalog_for(load_config(tmp_path / "config.yaml"))

        assert catalog.feature_prices == {"chat": 7}

    def test_missing_catalog_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog_for(TallyConfig(catalog_path=str(tmp_path / "gone.yaml")))
