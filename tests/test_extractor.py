"""Tests for field extraction and the no-hallucination rule."""

import pytest

from concierge.conversation.extractor import FieldExtractor
from concierge.schemas.booking_schema import GuestProfile, Suggestion

from tests.conftest import TOMORROW, fixed_today, make_session


@pytest.fixture
def extractor(chain, config):
    return FieldExtractor(chain, config=config, today_fn=fixed_today)


class TestGroundedExtraction:
    @pytest.mark.asyncio
    async def test_grounded_fields_are_kept(self, extractor, generator):
        generator.script("extraction", {"date": TOMORROW, "time": "19:00", "party_size": 4})
        result = await extractor.extract("a table for 4 tomorrow at 7pm", make_session())
        assert result.fields == {"date": TOMORROW, "time": "19:00", "party_size": 4}
        assert result.dropped == []

    @pytest.mark.asyncio
    async def test_hallucinated_fields_are_dropped(self, extractor, generator):
        generator.script("extraction", {
            "time": "17:00", "name": "Bob", "phone": "5551234", "party_size": 2,
        })
        result = await extractor.extract("5pm", make_session())
        assert result.fields == {"time": "17:00"}
        assert set(result.dropped) == {"name", "phone", "party_size"}

    @pytest.mark.asyncio
    async def test_invented_date_and_headcount_are_dropped(self, extractor, generator):
        generator.script("extraction", {"date": TOMORROW, "time": "19:00", "party_size": 7})
        result = await extractor.extract("May I book a table at 7?", make_session())
        assert result.fields == {"time": "19:00"}
        assert set(result.dropped) == {"date", "party_size"}

    @pytest.mark.asyncio
    async def test_invalid_value_is_rejected_with_reason(self, extractor, generator):
        generator.script("extraction", {"party_size": 40})
        result = await extractor.extract("we are 40 people", make_session())
        assert "party_size" not in result.fields
        assert "between 1 and 20" in result.rejected["party_size"]

    @pytest.mark.asyncio
    async def test_time_from_range_is_never_accepted(self, extractor, generator):
        generator.script("extraction", {"time": "19:00"})
        result = await extractor.extract("sometime 7-9pm", make_session())
        assert "time" not in result.fields
        assert result.time_range == "7-9pm"

    @pytest.mark.asyncio
    async def test_missing_fields_account_for_draft(self, extractor, generator):
        generator.script("extraction", {"time": "17:00"})
        session = make_session(date=TOMORROW, party_size=4)
        result = await extractor.extract("5pm", session)
        assert result.missing_fields == ["name", "phone"]

    @pytest.mark.asyncio
    async def test_extractor_never_mutates_session(self, extractor, generator):
        generator.script("extraction", {"party_size": 6})
        session = make_session(party_size=4)
        await extractor.extract("actually 6 people", session)
        assert session.draft.party_size == 4


class TestDeterministicFallback:
    @pytest.mark.asyncio
    async def test_provider_failure_yields_no_fields(self, extractor):
        result = await extractor.extract("Anna, tomorrow at 19:00", make_session())
        assert result.fields == {}

    @pytest.mark.asyncio
    async def test_headcount_word_without_provider(self, extractor):
        result = await extractor.extract("мы будем впятером", make_session(language="ru"))
        assert result.fields == {"party_size": 5}

    @pytest.mark.asyncio
    async def test_cyrillic_script_enables_russian_words(self, extractor):
        result = await extractor.extract("впятером", make_session(language="en"))
        assert result.fields["party_size"] == 5


class TestTimeRangeClarification:
    @pytest.mark.asyncio
    async def test_second_range_becomes_a_note(self, extractor):
        session = make_session()
        session.time_clarification_pending = True
        result = await extractor.extract("between 7 and 8", session)
        assert result.time_range_repeated
        assert result.fields["comments"] == "preferred time between 7 and 8"


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_history_produces_suggestions(self, extractor):
        session = make_session()
        session.guest_profile = GuestProfile(
            name="Anna", common_party_size=2, frequent_requests=["window table"]
        )
        result = await extractor.extract("hello there", session)
        assert [s.field for s in result.suggestions] == ["party_size", "comments"]
        assert "party_size" not in result.fields

    @pytest.mark.asyncio
    async def test_yes_accepts_offered_suggestion(self, extractor):
        session = make_session()
        session.offered_suggestion = Suggestion(field="party_size", value=2)
        result = await extractor.extract("yes", session)
        assert result.fields == {"party_size": 2}
        assert result.suggestion_accepted == session.offered_suggestion

    @pytest.mark.asyncio
    async def test_explicit_value_beats_suggestion(self, extractor, generator):
        generator.script("extraction", {"party_size": 3})
        session = make_session()
        session.offered_suggestion = Suggestion(field="party_size", value=2)
        result = await extractor.extract("no, 3 this time", session)
        assert result.fields == {"party_size": 3}
        assert result.suggestion_declined == session.offered_suggestion

    @pytest.mark.asyncio
    async def test_declined_suggestion_not_offered_again(self, extractor):
        session = make_session()
        session.guest_profile = GuestProfile(common_party_size=2)
        session.declined_suggestions = ["party_size"]
        result = await extractor.extract("hello there", session)
        assert result.suggestions == []
