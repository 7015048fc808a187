from leasing_chat.models.crm import KnowledgeEntry, OperatorConfig
from leasing_chat.services.conversation_state import FieldPolicy, derive_state
from leasing_chat.services.prompt_builder import build_instructions, render_confirmation, scripted_reply

FULL = FieldPolicy.parse("tour_date+tour_time+first_name+phone+email")

COMPLETE_FIELDS = {
    "first_name": "Frank",
    "phone": "5095551212",
    "email": "frank@example.com",
    "tour_date": "friday",
    "tour_time": "2pm",
}


def test_instructions_list_known_and_missing_fields(operator):
    fields = {"first_name": "Frank", "phone": "5095551212"}
    text = build_instructions(operator, fields, derive_state(fields, FULL), "call me at 509-555-1212")

    assert "- Name: Frank" in text
    assert "- Phone: 5095551212" in text
    assert "- Email: NOT YET" in text
    assert "STILL NEEDED (in this order): Tour Date, Tour Time, Email" in text
    assert "NEXT ACTION: Invite them to tour" in text
    assert "Studios start at $1,195 per month." in text
    assert "LATEST VISITOR MESSAGE:\ncall me at 509-555-1212" in text


def test_instructions_are_deterministic(operator):
    fields = {"tour_date": "friday"}
    state = derive_state(fields, FULL)
    first = build_instructions(operator, dict(fields), state, "friday?")
    second = build_instructions(operator, dict(fields), derive_state(fields, FULL), "friday?")
    assert first == second


def test_sentence_limit_and_format_rules(operator):
    text = build_instructions(operator, {}, derive_state({}, FULL), max_sentences=2)
    assert "2 sentences or fewer" in text
    assert "Do not use markdown" in text
    assert "LATEST VISITOR MESSAGE" not in text


def test_template_entry_overrides_confirmation():
    operator = OperatorConfig(
        knowledge_base=[
            KnowledgeEntry(category="general", content="Parking is free."),
            KnowledgeEntry(category="template", content="See you {tour_date}, {name}!"),
        ]
    )
    text = build_instructions(operator, COMPLETE_FIELDS, derive_state(COMPLETE_FIELDS, FULL))
    assert '"See you {tour_date}, {name}!"' in text
    knowledge = text.split("ALREADY COLLECTED")[0]
    assert "Parking is free." in knowledge
    assert "See you" not in knowledge


def test_render_confirmation_leaves_unknown_placeholders():
    rendered = render_confirmation("Thanks {name}! We'll call {phone} about {unit}.", {"first_name": "Frank"})
    assert rendered == "Thanks Frank! We'll call {phone} about {unit}."


def test_scripted_reply_follows_pipeline(operator):
    fields = {"tour_date": "friday", "tour_time": "2pm", "first_name": "Frank"}
    reply = scripted_reply(operator, fields, derive_state(fields, FULL))
    assert reply == "Thanks, Frank! What's the best phone number to reach you?"

    reply = scripted_reply(operator, {}, derive_state({}, FULL))
    assert "What day works best for a tour?" in reply


def test_scripted_reply_confirms_when_complete(operator):
    reply = scripted_reply(operator, COMPLETE_FIELDS, derive_state(COMPLETE_FIELDS, FULL))
    assert reply.startswith("Thanks Frank! Here's what I have: Phone: 5095551212, Email: frank@example.com")
    assert "Tour: friday at 2pm" in reply
