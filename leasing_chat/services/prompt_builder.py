"""Instruction text for the completion call.

Every turn rebuilds the full context from the session, so two workers that
handle consecutive turns of one conversation produce identical instructions
for identical state. Nothing here may depend on the clock or on randomness.
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional

from leasing_chat.models.crm import OperatorConfig
from leasing_chat.services.conversation_state import ConversationState, Phase

FIELD_LABELS: Dict[str, str] = {
    "first_name": "Name",
    "last_name": "Last Name",
    "phone": "Phone",
    "email": "Email",
    "tour_date": "Tour Date",
    "tour_time": "Tour Time",
    "move_in_date": "Move-in Date",
}

_PROMPT_FIELDS = ("first_name", "phone", "email", "tour_date", "tour_time", "move_in_date")

NEXT_ACTIONS: Dict[str, str] = {
    "move_in_date": "Ask when they are hoping to move in.",
    "tour_date": "Invite them to tour and ask which day works best.",
    "tour_time": 'Ask what time works best for the tour, for example "morning or afternoon?"',
    "first_name": "Ask for their name so you can put the tour on the calendar.",
    "phone": "Ask for the best phone number to confirm the tour.",
    "email": "Ask for their email address so you can send the confirmation.",
}

NEXT_QUESTIONS: Dict[str, str] = {
    "move_in_date": "When are you hoping to move in?",
    "tour_date": "Would you like to come see the apartment? What day works best for a tour?",
    "tour_time": "What time works best for you - morning or afternoon?",
    "first_name": "Great! Can I get your name for the tour?",
    "phone": "What's the best phone number to reach you?",
    "email": "And what's your email so I can send the confirmation?",
}

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
_PLACEHOLDER_FIELDS = {
    "name": "first_name",
    "first_name": "first_name",
    "last_name": "last_name",
    "phone": "phone",
    "email": "email",
    "tour_date": "tour_date",
    "tour_time": "tour_time",
    "move_in_date": "move_in_date",
}


def build_instructions(
    operator: OperatorConfig,
    fields: Mapping[str, str],
    state: ConversationState,
    last_user_message: Optional[str] = None,
    *,
    max_sentences: int = 3,
) -> str:
    sections: List[str] = []

    identity = f"You are {operator.assistant_name}, the virtual leasing assistant for {operator.property_name}"
    if operator.property_address:
        identity += f" at {operator.property_address}"
    sections.append(identity + ".")

    knowledge = operator.knowledge_text()
    if knowledge:
        sections.append(
            "KNOWLEDGE BASE (the only source of property facts; follow its instructions):\n" + knowledge
        )
    else:
        sections.append(
            "KNOWLEDGE BASE: none provided. Answer general questions briefly and offer to have the leasing "
            "team follow up on anything specific."
        )

    sections.append(_collected_section(fields))
    sections.append(_next_action_section(state))

    template = operator.effective_template()
    sections.append(
        "CONFIRMATION RESPONSE (use ONLY when every item above is collected):\n"
        f'"{template}"\n'
        "Replace each {placeholder} with the visitor's actual value from ALREADY COLLECTED. Never invent a value; "
        "if one is still NOT YET, ask for it instead of confirming. Do not add extra text after the confirmation."
    )

    sections.append(
        "RULES:\n"
        f"- Keep every response to {max_sentences} sentences or fewer\n"
        "- Ask for at most one missing item per response\n"
        "- NEVER ask for information already collected above\n"
        "- When the visitor gives a tour day without a time, ask: \"What time works best for you - morning or afternoon?\"\n"
        "- Never make up information that is not in the knowledge base\n"
        "- Stay fair housing compliant; never use discriminatory language\n"
        "- Do not use markdown formatting, lists, or emojis"
    )

    if last_user_message and last_user_message.strip():
        sections.append("LATEST VISITOR MESSAGE:\n" + last_user_message.strip())

    return "\n\n".join(sections)


def _collected_section(fields: Mapping[str, str]) -> str:
    lines = ["ALREADY COLLECTED (do NOT ask for these again):"]
    for name in _PROMPT_FIELDS:
        label = FIELD_LABELS[name]
        value = fields.get(name)
        if name == "first_name" and value and fields.get("last_name"):
            value = f"{value} {fields['last_name']}"
        lines.append(f"- {label}: {value}" if value else f"- {label}: NOT YET")
    return "\n".join(lines)


def _next_action_section(state: ConversationState) -> str:
    if state.next_field is None:
        if state.is_complete:
            return "NEXT ACTION: Everything is collected. Reply with the confirmation response below."
        return "NEXT ACTION: Answer the visitor's questions; all tour details are collected."
    still_needed = ", ".join(FIELD_LABELS[name] for name in state.missing)
    action = NEXT_ACTIONS[state.next_field]
    lines = [f"STILL NEEDED (in this order): {still_needed}", f"NEXT ACTION: {action}"]
    if state.phase == Phase.GREETING:
        lines.append("Answer any question first, then move toward scheduling a tour.")
    return "\n".join(lines)


def render_confirmation(template: str, fields: Mapping[str, str]) -> str:
    """Fill known placeholders; unknown or missing values are left as-is."""

    def _replace(match: re.Match) -> str:
        key = _PLACEHOLDER_FIELDS.get(match.group(1))
        if key and fields.get(key):
            return fields[key]
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


def scripted_reply(operator: OperatorConfig, fields: Mapping[str, str], state: ConversationState) -> str:
    """Deterministic reply used when no completion service is configured."""
    if state.is_complete:
        return render_confirmation(operator.effective_template(), fields)
    if state.next_field is None:
        return f"Thanks! Is there anything else I can tell you about {operator.property_name}?"
    question = NEXT_QUESTIONS[state.next_field]
    name = fields.get("first_name")
    if name and state.next_field in {"phone", "email"}:
        return f"Thanks, {name}! {question}"
    return question
