"""
tally.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for economy tuning (transfer quotas, level pricing)
and the optional path of a reward-catalog override.  Secrets and the
database URL are *not* here — they come from the environment / ``.env``.

Usage::

    from tally.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.transfer_max_count)    # 20
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TallyConfig:
    """Immutable economy configuration loaded from ``config.yaml``.

    Every field has the platform default so ``TallyConfig()`` is usable
    directly in tests and scripts.
    """

    # P2P transfer quota (non-admin senders)
    transfer_max_count: int = 20
    transfer_max_sum: int = 2000
    transfer_window_hours: int = 24

    # Leveling
    level_step_cost: int = 100
    max_level: int = 10

    # Optional reward catalog override (YAML), resolved against the
    # directory of config.yaml when relative
    catalog_path: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TallyConfig:
    """Read *path* and return a :class:`TallyConfig` instance.

    Keys missing from the ``economy`` section fall back to the defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    economy: dict = raw.get("economy") or {}
    defaults = TallyConfig()

    catalog_path = raw.get("catalog_path") or None
    if catalog_path is not None:
        catalog_path = str(config_path.parent / catalog_path)

    return TallyConfig(
        transfer_max_count=int(economy.get("transfer_max_count", defaults.transfer_max_count)),
        transfer_max_sum=int(economy.get("transfer_max_sum", defaults.transfer_max_sum)),
        transfer_window_hours=int(
            economy.get("transfer_window_hours", defaults.transfer_window_hours)
        ),
        level_step_cost=int(economy.get("level_step_cost", defaults.level_step_cost)),
        max_level=int(economy.get("max_level", defaults.max_level)),
        catalog_path=catalog_path,
    )


def configure_logging(level: int = logging.INFO) -> None:
    """Install the process-wide log format (call once at startup)."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")
