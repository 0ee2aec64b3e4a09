"""Tests for the policy YAML loader."""

from datetime import date

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent

from grievance.core import ConfigurationException
from grievance.sla.infrastructure import PolicyConfigManager
from grievance.sla.infrastructure.external import PolicyFileHandler

VALID_POLICY = """
working_hours:
  start: 8
  end: 17
  working_days: [mon, tue, wed, thu, fri, sat]
  timezone: Asia/Kolkata
  holidays:
    - 2024-08-15
escalation:
  priority_threshold: 2
  notify:
    - "#hr-escalations"
"""


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "portal_policy.yaml"
    path.write_text(VALID_POLICY)
    return path


def test_missing_file_uses_defaults(tmp_path):
    manager = PolicyConfigManager()
    config = manager.load(tmp_path / "absent.yaml")

    assert config.working_hours.start == 9
    assert config.working_hours.end == 18
    assert manager.working_clock.daily_capacity_hours == 9.0
    assert manager.escalation_threshold() == 1


def test_load_valid_file(policy_file):
    manager = PolicyConfigManager()
    config = manager.load(policy_file)

    assert config.working_hours.working_days == [0, 1, 2, 3, 4, 5]
    assert config.working_hours.holidays == [date(2024, 8, 15)]
    assert manager.working_clock.is_working_day(date(2024, 8, 17))
    assert not manager.working_clock.is_working_day(date(2024, 8, 15))
    assert manager.escalation_threshold() == 2
    assert manager.escalation_channels() == ["#hr-escalations"]


def test_invalid_file_is_a_configuration_error(tmp_path):
    path = tmp_path / "portal_policy.yaml"
    path.write_text("working_hours:\n  start: 18\n  end: 9\n")

    with pytest.raises(ConfigurationException):
        PolicyConfigManager().load(path)


def test_bad_reload_keeps_previous_policy(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)

    policy_file.write_text("working_hours:\n  working_days: [someday]\n")

    assert manager.reload() is False
    assert manager.escalation_threshold() == 2


def test_malformed_yaml_reload_keeps_previous_policy(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)

    policy_file.write_text("working_hours: [unclosed\n")

    assert manager.reload() is False
    assert manager.config.working_hours.start == 8


def test_reload_rebuilds_working_clock(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)
    before = manager.working_clock

    policy_file.write_text("working_hours:\n  start: 10\n  end: 16\n")

    assert manager.reload() is True
    assert manager.working_clock is not before
    assert manager.working_clock.daily_capacity_hours == 6.0
    assert manager.escalation_threshold() == 1


def test_reload_before_load_is_a_no_op():
    assert PolicyConfigManager().reload() is False


def test_default_channels_come_from_settings():
    manager = PolicyConfigManager(config=None)
    manager.load("does-not-exist.yaml")
    assert manager.escalation_channels() == ["#grievance-escalations"]


def test_modified_event_for_policy_file_reloads(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)
    handler = PolicyFileHandler(manager, policy_file)

    policy_file.write_text("working_hours:\n  start: 10\n  end: 16\n")
    handler.on_modified(FileModifiedEvent(str(policy_file)))

    assert manager.working_clock.daily_capacity_hours == 6.0


def test_events_for_other_paths_are_ignored(policy_file, tmp_path):
    manager = PolicyConfigManager()
    manager.load(policy_file)
    handler = PolicyFileHandler(manager, policy_file)

    policy_file.write_text("working_hours:\n  start: 10\n  end: 16\n")
    handler.on_modified(FileModifiedEvent(str(tmp_path / "other.yaml")))
    handler.on_modified(DirModifiedEvent(str(tmp_path)))

    assert manager.config.working_hours.start == 8


def test_start_watching_before_load_fails():
    with pytest.raises(RuntimeError):
        PolicyConfigManager().start_watching()


def test_absent_file_is_not_watched(tmp_path):
    manager = PolicyConfigManager()
    manager.load(tmp_path / "absent.yaml")

    manager.start_watching()

    assert manager._observer is None
    manager.stop_watching()


def test_start_and_stop_watching(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)

    manager.start_watching()
    try:
        assert manager._observer is not None
        assert manager._observer.is_alive()
    finally:
        manager.stop_watching()

    assert manager._observer is None
    manager.stop_watching()
