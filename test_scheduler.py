"""
Standup Scheduler - Unit Tests
===============================
Run:  pytest test_scheduler.py -v
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import MONDAY_9AM_NY, QUESTIONS
from app.models.domain import COLLECTING, StandupConfig
from app.services.recurrence import due_target_date, platform_weekday, scheduled_at


def _config(**overrides):
    base = dict(
        id="c", team_id="t", org_id="o", name="Daily", questions=["q"],
        weekdays=[1, 3, 5], time_local="09:00", timezone="America/New_York",
    )
    base.update(overrides)
    return StandupConfig(**base)


# ═══════════════════════════════════════════════════════════════════════════
# RECURRENCE
# ═══════════════════════════════════════════════════════════════════════════
class TestRecurrence:
    def test_weekday_numbering_starts_on_sunday(self):
        assert platform_weekday(date(2026, 1, 4)) == 0   # Sunday
        assert platform_weekday(date(2026, 1, 5)) == 1   # Monday
        assert platform_weekday(date(2026, 1, 10)) == 6  # Saturday

    def test_due_monday_at_nine_local(self):
        assert due_target_date(_config(), MONDAY_9AM_NY) == date(2026, 1, 5)

    def test_late_tick_still_due(self):
        late = MONDAY_9AM_NY + timedelta(minutes=1, milliseconds=100)
        assert due_target_date(_config(), late) == date(2026, 1, 5)

    def test_due_until_response_window_ends(self):
        cfg = _config(response_window_hours=2)
        assert due_target_date(cfg, MONDAY_9AM_NY + timedelta(hours=2, seconds=-1)) == date(2026, 1, 5)
        assert due_target_date(cfg, MONDAY_9AM_NY + timedelta(hours=2)) is None

    def test_catch_up_across_local_midnight_keeps_date(self):
        # Monday 22:00 NY run, caught up at Tuesday 00:30 NY (05:30 UTC)
        cfg = _config(weekdays=[1, 2, 3, 4, 5], time_local="22:00")
        now = datetime(2026, 1, 6, 5, 30, tzinfo=timezone.utc)
        assert due_target_date(cfg, now) == date(2026, 1, 5)

    def test_not_due_before_time(self):
        assert due_target_date(_config(), MONDAY_9AM_NY - timedelta(seconds=1)) is None

    def test_not_due_on_tuesday(self):
        tuesday = MONDAY_9AM_NY + timedelta(days=1)
        assert due_target_date(_config(), tuesday) is None

    def test_inactive_config_never_due(self):
        assert due_target_date(_config(is_active=False), MONDAY_9AM_NY) is None

    def test_daylight_saving_offset_follows_timezone(self):
        # Monday 2026-07-06 09:00 EDT is 13:00 UTC
        summer = datetime(2026, 7, 6, 13, 0, tzinfo=timezone.utc)
        assert due_target_date(_config(), summer) == date(2026, 7, 6)
        assert due_target_date(_config(), summer - timedelta(hours=1)) is None

    def test_target_date_is_local_date(self):
        # Monday 08:00 in Tokyo is still Sunday in UTC
        cfg = _config(timezone="Asia/Tokyo", time_local="08:00")
        now = datetime(2026, 1, 4, 23, 0, tzinfo=timezone.utc)
        assert due_target_date(cfg, now) == date(2026, 1, 5)

    def test_scheduled_at_is_utc(self):
        at = scheduled_at(_config(), date(2026, 1, 5))
        assert at == MONDAY_9AM_NY


# ═══════════════════════════════════════════════════════════════════════════
# SCHEDULER JOB
# ═══════════════════════════════════════════════════════════════════════════
class TestSchedulerJob:
    def test_creates_instance_when_due(self, scheduler_job, instance_repo, config):
        stats = scheduler_job.run(MONDAY_9AM_NY)
        assert stats == {"due": 1, "created": 1, "failed": 0, "retried": 0}
        instance = instance_repo.get_by_config_date(config.id, date(2026, 1, 5))
        assert instance.state == COLLECTING
        assert instance.org_id == "org-1"
        assert instance.created_at == MONDAY_9AM_NY

    def test_no_instance_on_tuesday(self, scheduler_job, instance_repo, config):
        tuesday = MONDAY_9AM_NY + timedelta(days=1)
        assert scheduler_job.run(tuesday)["created"] == 0
        assert instance_repo.get_by_config_date(config.id, date(2026, 1, 6)) is None

    def test_repeated_ticks_create_one_instance(self, scheduler_job, instance_repo, messenger, config):
        scheduler_job.run(MONDAY_9AM_NY)
        second = scheduler_job.run(MONDAY_9AM_NY + timedelta(seconds=30))
        assert second == {"due": 1, "created": 0, "failed": 0, "retried": 0}
        assert len(instance_repo.list_by_state(COLLECTING)) == 1
        # the losing tick must not deliver again
        assert len(messenger.direct_posts) == 2

    def test_second_replica_observes_conflict(self, scheduler_job, team_repo, instance_repo,
                                              delivery_repo, token_service, messenger, config):
        from app.jobs.scheduler_job import StandupSchedulerJob

        replica = StandupSchedulerJob(team_repo, instance_repo, delivery_repo, token_service, messenger)
        assert scheduler_job.run(MONDAY_9AM_NY)["created"] == 1
        assert replica.run(MONDAY_9AM_NY)["created"] == 0
        assert len(instance_repo.list_by_state(COLLECTING)) == 1

    def test_snapshot_is_frozen_against_config_edits(self, scheduler_job, instance_repo,
                                                     seeder, config):
        scheduler_job.run(MONDAY_9AM_NY)
        edited = config.model_copy(update={
            "questions": ["Completely new question"],
            "response_window_hours": 2,
        })
        seeder.save_config(edited)  # edited at 09:05

        instance = instance_repo.get_by_config_date(config.id, date(2026, 1, 5))
        assert list(instance.snapshot.questions) == QUESTIONS
        assert instance.snapshot.response_window_hours == 24
        assert instance.deadline == MONDAY_9AM_NY + timedelta(hours=24)

    def test_participants_are_included_active_members(self, scheduler_job, instance_repo,
                                                      seeder, members, config):
        seeder.save_member(members[1].model_copy(update={"active": False}))
        scheduler_job.run(MONDAY_9AM_NY)
        instance = instance_repo.get_by_config_date(config.id, date(2026, 1, 5))
        assert [p.id for p in instance.snapshot.participants] == ["m-1"]

    def test_delivers_announcement_and_personal_links(self, scheduler_job, messenger, config):
        scheduler_job.run(MONDAY_9AM_NY)
        assert [target for target, _ in messenger.channel_posts] == ["C-STANDUP"]
        assert sorted(messenger.direct_recipients()) == ["m-1", "m-2"]
        for _, content in messenger.direct_posts:
            assert "https://standup.test/standup/respond/" in content["text"]
            assert QUESTIONS[0] in content["text"]

    def test_direct_delivery_skips_channel(self, scheduler_job, messenger, seeder, config):
        seeder.save_config(config.model_copy(update={"delivery_target": "direct"}))
        scheduler_job.run(MONDAY_9AM_NY)
        assert messenger.channel_posts == []
        assert len(messenger.direct_posts) == 2

    def test_member_delivery_failure_is_isolated(self, scheduler_job, messenger, config):
        messenger.fail_members = {"m-1"}
        messenger.fail_channel = True
        stats = scheduler_job.run(MONDAY_9AM_NY)
        assert stats["created"] == 1
        assert messenger.direct_recipients() == ["m-2"]

    def test_broken_config_does_not_abort_tick(self, scheduler_job, seeder, instance_repo, config):
        seeder.save_config(config.model_copy(update={"id": "cfg-0", "timezone": "Not/AZone"}))
        stats = scheduler_job.run(MONDAY_9AM_NY)
        assert stats["failed"] == 1
        assert stats["created"] == 1
        assert instance_repo.get_by_config_date("cfg-1", date(2026, 1, 5)) is not None

    def test_late_tick_after_scheduled_minute_creates_instance(self, scheduler_job, instance_repo,
                                                               messenger, config):
        assert scheduler_job.run(MONDAY_9AM_NY - timedelta(milliseconds=100))["created"] == 0
        assert scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=1, milliseconds=100))["created"] == 1
        assert scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=5))["created"] == 0
        assert instance_repo.get_by_config_date(config.id, date(2026, 1, 5)) is not None
        assert sorted(messenger.direct_recipients()) == ["m-1", "m-2"]


# ═══════════════════════════════════════════════════════════════════════════
# DELIVERY RETRIES
# ═══════════════════════════════════════════════════════════════════════════
class TestDeliveryRetries:
    def test_failed_prompt_is_retried_on_next_tick(self, scheduler_job, messenger, config):
        messenger.fail_members = {"m-1"}
        scheduler_job.run(MONDAY_9AM_NY)
        assert messenger.direct_recipients() == ["m-2"]

        messenger.fail_members = set()
        stats = scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=1))
        assert stats["retried"] == 1
        assert messenger.direct_recipients() == ["m-2", "m-1"]

        # delivered rows are never resent
        scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=2))
        assert messenger.direct_recipients() == ["m-2", "m-1"]

    def test_failed_announcement_is_retried(self, scheduler_job, messenger, config):
        messenger.fail_channel = True
        scheduler_job.run(MONDAY_9AM_NY)
        assert messenger.channel_posts == []

        messenger.fail_channel = False
        scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=1))
        assert [target for target, _ in messenger.channel_posts] == ["C-STANDUP"]
        assert "Platform" in messenger.channel_posts[0][1]["text"]

    def test_retries_stop_after_max_attempts(self, scheduler_job, delivery_repo, messenger, config):
        messenger.fail_members = {"m-1"}
        for minute in range(5):
            scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=minute))
        assert delivery_repo.list_pending(max_attempts=3) == []
        assert "m-1" not in messenger.direct_recipients()

    def test_no_retry_once_instance_closed(self, scheduler_job, instance_repo, state_machine,
                                           delivery_repo, messenger, config):
        messenger.fail_members = {"m-1"}
        scheduler_job.run(MONDAY_9AM_NY)
        instance = instance_repo.get_by_config_date(config.id, date(2026, 1, 5))
        assert [p.recipient for p in delivery_repo.list_pending(3)] == ["m-1"]

        state_machine.transition(instance, "cancelled", trigger="manual")
        messenger.fail_members = set()
        scheduler_job.run(MONDAY_9AM_NY + timedelta(minutes=1))
        assert "m-1" not in messenger.direct_recipients()
