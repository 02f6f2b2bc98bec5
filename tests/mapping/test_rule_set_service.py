"""
Tests for RuleSetService -- versioning, activation and execution logs.
"""

from dataclasses import replace

import pytest

from payroll_kernel.exceptions import (
    RuleSetInactiveError,
    RuleSetNotFoundError,
    RuleSetValidationError,
)
from payroll_mapping.domain.types import FieldMapping, MappingRules
from payroll_mapping.engine import MappingExecutionEngine
from payroll_mapping.services.rule_sets import RuleSetService

GOOD_RECORD = {"ssn": "123456789", "pretax": "50.00", "roth": "25.00", "division": "EAST"}


@pytest.fixture
def service(session, registry, deterministic_clock):
    return RuleSetService(session, registry, deterministic_clock)


def _broken_rules():
    return MappingRules(field_mappings=(FieldMapping("ssn", "participant_ssn", "no_such_transform"),))


class TestCreateAndQuery:
    def test_create_stores_inactive_version(self, service, contribution_rule_set):
        stored = service.create(contribution_rule_set)

        assert stored.id == "acme-contributions"
        assert stored.version == 1
        assert stored.is_active is False
        assert stored.rules == contribution_rule_set.rules

    def test_versions_increment_per_config(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        second = service.create(contribution_rule_set)
        other = service.create(replace(contribution_rule_set, id="globex-contributions"))

        assert second.version == 2
        assert other.version == 1
        assert [r.version for r in service.list_versions("acme-contributions")] == [1, 2]
        assert service.get("acme-contributions").version == 2
        assert service.get("acme-contributions", 1).version == 1

    def test_unknown_config(self, service):
        with pytest.raises(RuleSetNotFoundError) as exc_info:
            service.get_active("missing")
        assert exc_info.value.code == "RULE_SET_NOT_FOUND"

    def test_unknown_version(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        with pytest.raises(RuleSetNotFoundError) as exc_info:
            service.get("acme-contributions", 9)
        assert exc_info.value.version == 9

    def test_no_active_version(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        with pytest.raises(RuleSetInactiveError):
            service.get_active("acme-contributions")


class TestActivation:
    def test_activate_latest(self, service, contribution_rule_set, captured_logs):
        service.create(contribution_rule_set)
        service.create(contribution_rule_set)

        validation = service.activate("acme-contributions")

        assert validation.is_valid
        active = service.get_active("acme-contributions")
        assert active.version == 2
        assert active.is_active is True
        activated = [r for r in captured_logs() if r["message"] == "rule_set_activated"]
        assert activated[0]["rule_set_id"] == "acme-contributions"

    def test_one_active_version_per_config(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        service.create(contribution_rule_set)
        service.activate("acme-contributions", 2)

        service.activate("acme-contributions", 1)

        flags = {r.version: r.is_active for r in service.list_versions("acme-contributions")}
        assert flags == {1: True, 2: False}

    def test_invalid_version_is_not_activated(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        service.activate("acme-contributions")
        service.create(replace(contribution_rule_set, rules=_broken_rules()))

        with pytest.raises(RuleSetValidationError) as exc_info:
            service.activate("acme-contributions", 2)

        assert any("no_such_transform" in e for e in exc_info.value.errors)
        assert service.get_active("acme-contributions").version == 1

    def test_deactivate(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        service.activate("acme-contributions")

        deactivated = service.deactivate("acme-contributions")

        assert deactivated.is_active is False
        assert service.deactivate("acme-contributions") is None
        with pytest.raises(RuleSetInactiveError):
            service.get_active("acme-contributions")


class TestUpdate:
    def test_unreferenced_version_edited_in_place(self, service, contribution_rule_set):
        service.create(contribution_rule_set)

        updated = service.update("acme-contributions", name="Acme 401(k)")

        assert updated.version == 1
        assert updated.name == "Acme 401(k)"
        assert len(service.list_versions("acme-contributions")) == 1

    def test_referenced_version_is_frozen(self, service, registry, contribution_rule_set):
        service.create(contribution_rule_set)
        service.activate("acme-contributions")
        active = service.get_active("acme-contributions")
        result = MappingExecutionEngine(registry).execute(active, [GOOD_RECORD])
        service.record_execution(active, result, "org-acme")
        assert service.is_referenced("acme-contributions", 1)

        new_rules = replace(contribution_rule_set.rules, default_values=())
        created = service.update("acme-contributions", rules=new_rules)

        assert created.version == 2
        assert created.is_active is False
        assert created.rules.default_values == ()
        original = service.get("acme-contributions", 1)
        assert original.rules == contribution_rule_set.rules
        assert service.get_active("acme-contributions").version == 1

    def test_active_version_revalidated(self, service, contribution_rule_set):
        service.create(contribution_rule_set)
        service.activate("acme-contributions")

        with pytest.raises(RuleSetValidationError):
            service.update("acme-contributions", rules=_broken_rules())

        assert service.get("acme-contributions").rules == contribution_rule_set.rules

    def test_inactive_version_may_hold_invalid_rules(self, service, contribution_rule_set):
        service.create(contribution_rule_set)

        updated = service.update("acme-contributions", rules=_broken_rules())

        assert updated.rules == _broken_rules()


class TestExecutionLog:
    def test_record_execution(self, service, registry, contribution_rule_set, deterministic_clock):
        stored = service.create(contribution_rule_set)
        bad = {"ssn": "123456789", "division": "EAST"}
        result = MappingExecutionEngine(registry).execute(stored, [GOOD_RECORD, bad])

        log = service.record_execution(stored, result, "org-acme")

        assert log.config_id == "acme-contributions"
        assert log.rule_set_version == 1
        assert log.total_records == 2
        assert log.successful_records == 1
        assert log.failed_records == 1
        assert log.error_summary[0]["code"] == "REQUIRED_FIELD_MISSING"
