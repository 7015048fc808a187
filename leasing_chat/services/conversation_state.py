from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Mapping, Optional, Tuple

from leasing_chat.models.session import FIELD_NAMES

DEFAULT_PIPELINE: Tuple[str, ...] = ("tour_date", "tour_time", "first_name", "phone", "email")


class Phase(str, Enum):
    GREETING = "GREETING"
    COLLECTING = "COLLECTING"
    SCHEDULING = "SCHEDULING"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class FieldPolicy:
    """Alternatives of field sets; satisfied when every field of any one set is present.

    Parsed from expressions such as ``phone|email`` or ``first_name+phone``.
    """

    alternatives: Tuple[FrozenSet[str], ...]

    @classmethod
    def parse(cls, expression: str) -> "FieldPolicy":
        alternatives = []
        for option in expression.split("|"):
            names = frozenset(part.strip() for part in option.split("+") if part.strip())
            if not names:
                continue
            unknown = names.difference(FIELD_NAMES)
            if unknown:
                raise ValueError(f"Unknown field(s) in policy {expression!r}: {sorted(unknown)}")
            alternatives.append(names)
        if not alternatives:
            raise ValueError(f"Empty field policy: {expression!r}")
        return cls(tuple(alternatives))

    def is_satisfied(self, fields: Mapping[str, str]) -> bool:
        return any(all(fields.get(name) for name in option) for option in self.alternatives)

    def describe(self) -> str:
        return " or ".join(" + ".join(sorted(option)) for option in self.alternatives)


@dataclass(frozen=True)
class ConversationState:
    phase: Phase
    next_field: Optional[str]
    is_complete: bool
    collected: Tuple[str, ...]
    missing: Tuple[str, ...]


def build_pipeline(collect_move_in: bool = False) -> Tuple[str, ...]:
    if collect_move_in:
        return ("move_in_date",) + DEFAULT_PIPELINE
    return DEFAULT_PIPELINE


def derive_state(
    fields: Mapping[str, str],
    completion_policy: FieldPolicy,
    pipeline: Tuple[str, ...] = DEFAULT_PIPELINE,
) -> ConversationState:
    """Project collected fields onto the collection pipeline. Pure; never persisted."""
    collected = tuple(name for name in FIELD_NAMES if fields.get(name))
    missing = tuple(name for name in pipeline if not fields.get(name))
    next_field = missing[0] if missing else None
    is_complete = completion_policy.is_satisfied(fields)

    if is_complete:
        phase = Phase.COMPLETE
    elif not collected:
        phase = Phase.GREETING
    elif fields.get("tour_date"):
        phase = Phase.SCHEDULING
    else:
        phase = Phase.COLLECTING

    return ConversationState(
        phase=phase,
        next_field=next_field,
        is_complete=is_complete,
        collected=collected,
        missing=missing,
    )
