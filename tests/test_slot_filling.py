"""Tests for booking field validation and normalization."""

from datetime import date

import pytest

from concierge.conversation.slot_manager import SlotValidator
from concierge.schemas.booking_schema import GatheringInfo

TODAY = date(2026, 10, 17)


@pytest.fixture
def validator():
    return SlotValidator(max_party_size=20)


class TestNameValidation:
    def test_valid_name_collapses_whitespace(self, validator):
        assert validator.validate("name", "  Anna   Smith ", TODAY) == (True, "Anna Smith", None)

    def test_name_with_digits(self, validator):
        ok, value, reason = validator.validate("name", "Anna2", TODAY)
        assert not ok and value is None
        assert "digits" in reason

    def test_too_short(self, validator):
        ok, _, _ = validator.validate("name", "A", TODAY)
        assert not ok


class TestPhoneValidation:
    def test_phone_stored_as_written(self, validator):
        assert validator.validate("phone", " 555-1234 ", TODAY) == (True, "555-1234", None)

    def test_too_few_digits(self, validator):
        ok, _, reason = validator.validate("phone", "12-34", TODAY)
        assert not ok
        assert "digits" in reason


class TestDateValidation:
    def test_future_date(self, validator):
        assert validator.validate("date", "2026-10-18", TODAY) == (True, "2026-10-18", None)

    def test_today_is_allowed(self, validator):
        ok, _, _ = validator.validate("date", "2026-10-17", TODAY)
        assert ok

    def test_past_date(self, validator):
        ok, _, reason = validator.validate("date", "2026-10-16", TODAY)
        assert not ok
        assert reason == "date is in the past"

    def test_wrong_format(self, validator):
        ok, _, _ = validator.validate("date", "18/10/2026", TODAY)
        assert not ok


class TestTimeValidation:
    def test_zero_padded(self, validator):
        assert validator.validate("time", "7:30", TODAY) == (True, "07:30", None)

    def test_invalid_time(self, validator):
        ok, _, _ = validator.validate("time", "25:00", TODAY)
        assert not ok


class TestPartySizeValidation:
    def test_string_number(self, validator):
        assert validator.validate("party_size", "6", TODAY) == (True, 6, None)

    def test_fractional(self, validator):
        ok, _, _ = validator.validate("party_size", 2.5, TODAY)
        assert not ok

    def test_above_maximum(self, validator):
        ok, _, reason = validator.validate("party_size", 21, TODAY)
        assert not ok
        assert "between 1 and 20" in reason

    def test_zero(self, validator):
        ok, _, _ = validator.validate("party_size", 0, TODAY)
        assert not ok


class TestCommentsValidation:
    def test_truncated(self, validator):
        ok, value, _ = validator.validate("comments", "x" * 600, TODAY)
        assert ok
        assert len(value) == 500

    def test_blank(self, validator):
        ok, _, _ = validator.validate("comments", "   ", TODAY)
        assert not ok


class TestDefinitions:
    def test_unknown_slot(self, validator):
        with pytest.raises(ValueError, match="Unknown slot"):
            validator.validate("email", "a@b.c", TODAY)

    def test_display_names(self, validator):
        assert validator.display_names(["phone", "party_size"]) == ["phone number", "number of guests"]


class TestDraft:
    def test_none_never_overwrites(self):
        draft = GatheringInfo(name="Anna", party_size=4)
        changed = draft.merge({"name": None, "party_size": 6, "unknown": 1})
        assert changed == ["party_size"]
        assert draft.name == "Anna"
        assert draft.party_size == 6

    def test_missing_fields_in_order(self):
        draft = GatheringInfo(date="2026-10-18", party_size=4)
        assert draft.missing_fields() == ["name", "phone", "time"]
        assert not draft.is_complete()

    def test_clear(self):
        draft = GatheringInfo(name="Anna", phone="555-1234", comments="window")
        draft.clear()
        assert draft.is_empty()

    def test_signature_changes_with_values(self):
        draft = GatheringInfo(name="Anna", time="19:00")
        before = draft.signature()
        draft.merge({"time": "20:00"})
        assert draft.signature() != before
