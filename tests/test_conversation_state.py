import pytest

from leasing_chat.models.session import Session
from leasing_chat.services.conversation_state import (
    DEFAULT_PIPELINE,
    FieldPolicy,
    Phase,
    build_pipeline,
    derive_state,
)

FULL = FieldPolicy.parse("tour_date+tour_time+first_name+phone+email")


def test_no_tour_date_asks_for_it():
    state = derive_state({"first_name": "Frank"}, FULL)
    assert state.next_field == "tour_date"
    assert state.phase == Phase.COLLECTING
    assert not state.is_complete


def test_empty_fields_is_greeting():
    state = derive_state({}, FULL)
    assert state.phase == Phase.GREETING
    assert state.next_field == "tour_date"
    assert state.missing == DEFAULT_PIPELINE


def test_tour_date_known_is_scheduling():
    state = derive_state({"tour_date": "friday"}, FULL)
    assert state.phase == Phase.SCHEDULING
    assert state.next_field == "tour_time"


def test_all_fields_is_complete():
    fields = {
        "tour_date": "friday",
        "tour_time": "2pm",
        "first_name": "Frank",
        "phone": "5095551212",
        "email": "frank@example.com",
    }
    state = derive_state(fields, FULL)
    assert state.phase == Phase.COMPLETE
    assert state.is_complete
    assert state.next_field is None
    assert state.missing == ()


def test_lenient_policy_completes_early():
    state = derive_state({"email": "frank@example.com"}, FieldPolicy.parse("phone|email"))
    assert state.is_complete
    assert state.phase == Phase.COMPLETE
    assert state.next_field == "tour_date"


def test_move_in_inserted_first_when_enabled():
    pipeline = build_pipeline(collect_move_in=True)
    assert pipeline[0] == "move_in_date"
    state = derive_state({"tour_date": "friday"}, FULL, pipeline)
    assert state.next_field == "move_in_date"


def test_next_field_never_moves_backward():
    session = Session(session_id="s-1")
    turns = [
        {"first_name": "Frank"},
        {"tour_date": "friday"},
        {"tour_date": "monday", "phone": "5095551212"},
        {"tour_time": "2pm"},
        {"first_name": "Bob", "email": "frank@example.com"},
    ]
    last_index = -1
    for extracted in turns:
        session.merge_fields(extracted)
        state = derive_state(session.collected_fields, FULL)
        index = len(DEFAULT_PIPELINE) if state.next_field is None else DEFAULT_PIPELINE.index(state.next_field)
        assert index >= last_index
        last_index = index
    assert last_index == len(DEFAULT_PIPELINE)


def test_policy_parsing():
    policy = FieldPolicy.parse("phone | first_name+email")
    assert policy.is_satisfied({"phone": "5095551212"})
    assert policy.is_satisfied({"first_name": "Frank", "email": "f@example.com"})
    assert not policy.is_satisfied({"first_name": "Frank"})
    assert policy.describe() == "phone or email + first_name"


@pytest.mark.parametrize("expression", ["", "|", "phone|budget"])
def test_bad_policy_rejected(expression):
    with pytest.raises(ValueError):
        FieldPolicy.parse(expression)
