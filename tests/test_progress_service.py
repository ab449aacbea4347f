"""
tests/test_progress_service.py — Stat Counters & AP Milestones
===============================================================
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import make_account
from sqlalchemy import select
from sqlalchemy.orm import Session

from tally.constants import MAX_AMOUNT
from tally.database.models import Account, AccountMilestone
from tally.engine.catalog import MilestoneDef, RewardCatalog
from tally.services import progress_service
from tally.services.progress_service import award_ap_once, record_action


@pytest.fixture
def milestone_catalog() -> RewardCatalog:
    return RewardCatalog(
        milestones={
            "chat": {
                "dmMessagesSent": (
                    MilestoneDef(1, 5, "DM_1"),
                    MilestoneDef(3, 10, "DM_3"),
                    MilestoneDef(10, 50, "DM_10"),
                ),
            },
        },
    )


def _ap(engine, account_id: int) -> int:
    with Session(engine) as session:
        return session.get(Account, account_id).achievement_points


def _milestones(engine, account_id: int) -> set[str]:
    with Session(engine) as session:
        return set(session.scalars(
            select(AccountMilestone.code).where(AccountMilestone.account_id == account_id)
        ))


class TestAwardApOnce:
    def test_awards_once(self, db_engine):
        uid = make_account(db_engine, "ann")

        first = award_ap_once(db_engine, uid, "SOME_CODE", 7)
        second = award_ap_once(db_engine, uid, "SOME_CODE", 7)

        assert first.awarded
        assert not second.awarded
        assert _ap(db_engine, uid) == 7

    @pytest.mark.parametrize("code, ap", [
        ("", 5),
        ("   ", 5),
        (None, 5),
        ("CODE", 0),
        ("CODE", -3),
        ("CODE", math.inf),
        ("CODE", 2.5),
        ("CODE", True),
        ("CODE", MAX_AMOUNT + 1),
        ("CODE", 10**20),
    ])
    def test_invalid_input_is_not_awarded(self, db_engine, code, ap):
        uid = make_account(db_engine, "ben")
        assert not award_ap_once(db_engine, uid, code, ap).awarded
        assert _ap(db_engine, uid) == 0
        assert _milestones(db_engine, uid) == set()

    def test_code_is_trimmed(self, db_engine):
        uid = make_account(db_engine, "cat")
        assert award_ap_once(db_engine, uid, "  PADDED  ", 4).awarded
        assert not award_ap_once(db_engine, uid, "PADDED", 4).awarded
        assert _milestones(db_engine, uid) == {"PADDED"}

    def test_missing_account_not_awarded(self, db_engine):
        assert not award_ap_once(db_engine, 9999, "CODE", 5).awarded

    def test_milestone_and_achievement_namespaces_are_separate(self, db_engine, catalog):
        from tally.services.award_service import grant_once

        uid = make_account(db_engine, "dan")
        grant_once(db_engine, catalog, uid, "FIRST_LOGIN")

        assert award_ap_once(db_engine, uid, "FIRST_LOGIN", 3).awarded
        assert _ap(db_engine, uid) == 3

    def test_concurrent_replays_pay_once(self, file_engine):
        uid = make_account(file_engine, "eve")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda _: award_ap_once(file_engine, uid, "RACE", 20), range(12)
            ))

        assert sum(1 for r in results if r.awarded) == 1
        assert _ap(file_engine, uid) == 20


class TestRecordAction:
    def test_increments_counter(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "fay")

        assert record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent") == 1
        assert record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 2) == 3
        assert progress_service.get_stats(db_engine, uid) == {"dmMessagesSent": 3}

    def test_counters_are_independent(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "gus")
        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 4)
        record_action(db_engine, milestone_catalog, uid, "imageUpload", "imagesSent", 1)

        assert progress_service.get_stats(db_engine, uid) == {
            "dmMessagesSent": 4,
            "imagesSent": 1,
        }

    def test_crossing_threshold_awards_ap(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "hal")

        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent")

        assert _milestones(db_engine, uid) == {"DM_1"}
        assert _ap(db_engine, uid) == 5

    def test_jump_past_two_thresholds_awards_both(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "ivy")

        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 5)

        assert _milestones(db_engine, uid) == {"DM_1", "DM_3"}
        assert _ap(db_engine, uid) == 15

    def test_oscillating_counter_pays_once(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "jon")

        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 3)
        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", -1)
        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 1)
        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", -1)
        value = record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 1)

        assert value == 3
        assert _ap(db_engine, uid) == 15

    def test_negative_delta_allowed(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "kim")
        record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", 2)
        assert record_action(db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", -2) == 0

    def test_largest_delta_accepted(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "kit")
        assert record_action(
            db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", MAX_AMOUNT
        ) == MAX_AMOUNT
        assert _ap(db_engine, uid) == 65

    def test_unconfigured_feature_only_counts(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "lee")
        assert record_action(db_engine, milestone_catalog, uid, "bugs", "reports", 1) == 1
        assert _ap(db_engine, uid) == 0

    @pytest.mark.parametrize("delta", [
        0, math.nan, math.inf, -math.inf, "1", None, False, 10**20, -(10**20), MAX_AMOUNT + 1,
    ])
    def test_bad_delta_is_no_op(self, db_engine, milestone_catalog, delta):
        uid = make_account(db_engine, "max")
        assert record_action(
            db_engine, milestone_catalog, uid, "chat", "dmMessagesSent", delta
        ) is None
        assert progress_service.get_stats(db_engine, uid) == {}

    @pytest.mark.parametrize("feature, stat", [("", "x"), ("chat", "  "), (None, "x")])
    def test_blank_keys_are_no_op(self, db_engine, milestone_catalog, feature, stat):
        uid = make_account(db_engine, "ned")
        assert record_action(db_engine, milestone_catalog, uid, feature, stat) is None

    def test_keys_are_trimmed(self, db_engine, milestone_catalog):
        uid = make_account(db_engine, "oli")
        record_action(db_engine, milestone_catalog, uid, " chat ", " dmMessagesSent ")
        assert progress_service.get_stats(db_engine, uid) == {"dmMessagesSent": 1}
        assert _milestones(db_engine, uid) == {"DM_1"}

    def test_unknown_account_is_no_op(self, db_engine, milestone_catalog):
        assert record_action(db_engine, milestone_catalog, 777, "chat", "dmMessagesSent") is None

    def test_default_catalog_milestones(self, db_engine, catalog):
        uid = make_account(db_engine, "pam")
        record_action(db_engine, catalog, uid, "createGroup", "groupsCreated")
        assert _milestones(db_engine, uid) == {"GROUP_CREATE_1"}
        assert _ap(db_engine, uid) == 10
