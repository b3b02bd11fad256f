"""Skill classifier: ordered (predicate -> skill tag) rules, first match wins."""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from caserouter.models import ItemType, WorkItem

DEFAULT_SKILL = "General"


@dataclass(frozen=True)
class SkillRule:
    """One classification rule. `name` is only used for logging and debugging."""

    name: str
    tag: str
    predicate: Callable[[WorkItem], bool]

    def matches(self, item: WorkItem) -> bool:
        return self.predicate(item)


def type_rule(item_type: ItemType, tag: Optional[str] = None) -> SkillRule:
    """Match on item type equality; tag defaults to the type's value."""
    return SkillRule(
        name=f"type={item_type.value}",
        tag=tag or item_type.value,
        predicate=lambda item: item.type == item_type,
    )


def keyword_rule(tag: str, patterns: Iterable[str]) -> SkillRule:
    """Match when any pattern appears in subject or description (case-insensitive)."""
    compiled = re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)
    return SkillRule(
        name=f"keywords->{tag}",
        tag=tag,
        predicate=lambda item: bool(compiled.search(f"{item.subject} {item.description}")),
    )


# Type equality first, then keywords. Order matters.
DEFAULT_RULES: list[SkillRule] = [
    type_rule(ItemType.TECHNICAL),
    type_rule(ItemType.BILLING),
    type_rule(ItemType.ACCOUNT),
    keyword_rule("Billing", [
        r"\b(?:bill|billing|invoice|payment|charge|refund|subscription)\b",
        r"\b(?:overcharge|double charge|credit card)\b",
    ]),
    keyword_rule("Technical", [
        r"\b(?:bug|error|crash|api|integration|timeout|outage)\b",
        r"\b(?:broken|not working|doesn't work|failed|failure)\b",
    ]),
    keyword_rule("Account", [
        r"\b(?:login|log in|password|account|sign in|locked out|2fa|mfa)\b",
    ]),
]


class SkillClassifier:
    """Maps a work item to the skill tag required to handle it. Total and side-effect free."""

    def __init__(self, rules: Optional[Sequence[SkillRule]] = None, default: str = DEFAULT_SKILL):
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self.default = default

    def classify(self, item: WorkItem) -> str:
        for rule in self.rules:
            if rule.matches(item):
                return rule.tag
        return self.default
