"""
tally.engine.catalog — Static Reward Catalog
=============================================

Achievement definitions, feature-unlock prices, per-feature per-stat
milestone tables and level → achievement thresholds.

The catalog is built once at process start (``load_catalog``) and injected
into the services.  It is immutable: lookup tables are exposed as read-only
mappings and every definition is a frozen dataclass.

This module is pure data — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

import yaml

if TYPE_CHECKING:
    from tally.config import TallyConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AchievementDef:
    code: str
    title: str
    coin_reward: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "title": self.title, "coinsReward": self.coin_reward}


@dataclass(frozen=True, slots=True)
class MilestoneDef:
    """Stat threshold that pays ``ap_reward`` achievement points once."""

    threshold: int
    ap_reward: int
    code: str


# ---------------------------------------------------------------------------
# Built-in defaults
# ---------------------------------------------------------------------------
DEFAULT_ACHIEVEMENTS: tuple[AchievementDef, ...] = (
    AchievementDef("FIRST_LOGIN", "First Login", 10),
    AchievementDef("LEVEL2_UNLOCKED", "Unlocked Level 2", 50),
    AchievementDef("LEVEL3_UNLOCKED", "Unlocked Level 3", 75),
    AchievementDef("FIRST_BUG_REPORT", "First Bug Report", 25),
)

DEFAULT_FEATURE_PRICES: dict[str, int] = {
    "chat": 100,
    "groupChat": 200,
    "createGroup": 300,
    "imageUpload": 150,
}

DEFAULT_MILESTONES: dict[str, dict[str, tuple[MilestoneDef, ...]]] = {
    "chat": {
        "dmMessagesSent": (
            MilestoneDef(1, 5, "CHAT_DM_1"),
            MilestoneDef(25, 15, "CHAT_DM_25"),
            MilestoneDef(100, 40, "CHAT_DM_100"),
        ),
    },
    "groupChat": {
        "groupMessagesSent": (
            MilestoneDef(1, 5, "GROUP_MSG_1"),
            MilestoneDef(50, 25, "GROUP_MSG_50"),
        ),
    },
    "createGroup": {
        "groupsCreated": (
            MilestoneDef(1, 10, "GROUP_CREATE_1"),
            MilestoneDef(5, 30, "GROUP_CREATE_5"),
        ),
    },
    "imageUpload": {
        "imagesSent": (
            MilestoneDef(1, 5, "IMAGE_SENT_1"),
            MilestoneDef(20, 20, "IMAGE_SENT_20"),
        ),
    },
}

DEFAULT_LEVEL_ACHIEVEMENTS: dict[int, str] = {
    2: "LEVEL2_UNLOCKED",
    3: "LEVEL3_UNLOCKED",
}


# ---------------------------------------------------------------------------
# RewardCatalog
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RewardCatalog:
    """Read-only lookup tables for the reward engine."""

    achievements: Mapping[str, AchievementDef] = field(default_factory=dict)
    feature_prices: Mapping[str, int] = field(default_factory=dict)
    milestones: Mapping[str, Mapping[str, tuple[MilestoneDef, ...]]] = field(
        default_factory=dict
    )
    level_achievements: Mapping[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the mappings so a shared catalog can't be mutated in place.
        object.__setattr__(self, "achievements", MappingProxyType(dict(self.achievements)))
        object.__setattr__(
            self, "feature_prices", MappingProxyType(dict(self.feature_prices))
        )
        object.__setattr__(
            self,
            "milestones",
            MappingProxyType({
                feature: MappingProxyType({stat: tuple(ms) for stat, ms in stats.items()})
                for feature, stats in self.milestones.items()
            }),
        )
        object.__setattr__(
            self, "level_achievements", MappingProxyType(dict(self.level_achievements))
        )

        for level, code in self.level_achievements.items():
            if code not in self.achievements:
                raise ValueError(f"Level {level} references unknown achievement {code!r}")

    def achievement(self, code: str) -> AchievementDef | None:
        return self.achievements.get(code)

    def feature_price(self, feature_key: str) -> int | None:
        return self.feature_prices.get(feature_key)

    def milestones_for(self, feature_key: str, stat_key: str) -> tuple[MilestoneDef, ...]:
        return self.milestones.get(feature_key, {}).get(stat_key, ())

    def achievements_for_level(self, level: int) -> list[str]:
        """Codes of every level achievement at or below *level*, lowest first."""
        return [
            code
            for threshold, code in sorted(self.level_achievements.items())
            if level >= threshold
        ]


def default_catalog() -> RewardCatalog:
    """The platform's built-in catalog."""
    return RewardCatalog(
        achievements={a.code: a for a in DEFAULT_ACHIEVEMENTS},
        feature_prices=DEFAULT_FEATURE_PRICES,
        milestones=DEFAULT_MILESTONES,
        level_achievements=DEFAULT_LEVEL_ACHIEVEMENTS,
    )


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------
def _parse_milestones(raw: dict) -> dict[str, dict[str, tuple[MilestoneDef, ...]]]:
    """Parse ``{feature: {stat: [{count, ap, code}, ...]}}``.

    Malformed entries are skipped with a warning; the list is sorted by
    threshold.
    """
    parsed: dict[str, dict[str, tuple[MilestoneDef, ...]]] = {}
    for feature, stats in (raw or {}).items():
        for stat, entries in (stats or {}).items():
            defs: list[MilestoneDef] = []
            for entry in entries or []:
                try:
                    defs.append(MilestoneDef(
                        threshold=int(entry["count"]),
                        ap_reward=int(entry["ap"]),
                        code=str(entry["code"]).strip(),
                    ))
                except (KeyError, TypeError, ValueError):
                    logger.warning(
                        "Skipping malformed milestone %r under %s.%s", entry, feature, stat
                    )
            defs.sort(key=lambda m: m.threshold)
            parsed.setdefault(str(feature), {})[str(stat)] = tuple(defs)
    return parsed


def load_catalog(path: str | Path | None = None) -> RewardCatalog:
    """Return the reward catalog, optionally overridden from a YAML file.

    Sections present in the file (``achievements``, ``feature_prices``,
    ``milestones``, ``level_achievements``) replace the built-in tables
    wholesale; absent sections keep the defaults.

    Raises
    ------
    FileNotFoundError
        If *path* is given but doesn't exist.
    ValueError
        If a level achievement references an unknown code.
    """
    base = default_catalog()
    if path is None:
        return base

    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Reward catalog not found: {catalog_path.resolve()}")

    with open(catalog_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    achievements = dict(base.achievements)
    if "achievements" in raw:
        achievements = {
            str(code): AchievementDef(
                code=str(code),
                title=str(definition.get("title", code)),
                coin_reward=max(0, int(definition.get("coins", 0))),
            )
            for code, definition in (raw["achievements"] or {}).items()
        }

    feature_prices = dict(base.feature_prices)
    if "feature_prices" in raw:
        feature_prices = {
            str(k): int(v) for k, v in (raw["feature_prices"] or {}).items()
        }

    milestones = base.milestones
    if "milestones" in raw:
        milestones = _parse_milestones(raw["milestones"])

    level_achievements = dict(base.level_achievements)
    if "level_achievements" in raw:
        level_achievements = {
            int(k): str(v) for k, v in (raw["level_achievements"] or {}).items()
        }

    catalog = RewardCatalog(
        achievements=achievements,
        feature_prices=feature_prices,
        milestones=milestones,
        level_achievements=level_achievements,
    )
    logger.info(
        "Reward catalog loaded from %s (%d achievements, %d features)",
        catalog_path, len(catalog.achievements), len(catalog.feature_prices),
    )
    return catalog


def load_catalog_for(cfg: TallyConfig) -> RewardCatalog:
    """Catalog for a loaded config: the ``catalog_path`` override, or defaults."""
    return load_catalog(cfg.catalog_path)
