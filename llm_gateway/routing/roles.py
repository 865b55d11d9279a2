"""Role resolution from model alias, prompt mentions and the X-Role header.

Resolution runs in increasing order of precedence: the raw alias, then the
alias keyword table, then ``@role`` mentions in the first message, then a
trusted ``X-Role`` header.  Explicit signals always outrank inferred ones.
The tables are plain data so deployments can swap the precedence policy
without touching the resolver.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from llm_gateway.models.openai import ChatMessage

BACKEND = "backend"
FRONTEND = "frontend"
QA = "qa"
DEVOPS = "devops"

KNOWN_ROLES: frozenset[str] = frozenset({BACKEND, FRONTEND, QA, DEVOPS})


@dataclass(frozen=True)
class RoleRule:
    role: str
    keywords: tuple[str, ...]
    match: Literal["exact", "contains"] = "contains"

    def matches(self, text: str) -> bool:
        if self.match == "exact":
            return text in self.keywords
        return any(keyword in text for keyword in self.keywords)


DEFAULT_ALIAS_RULES: tuple[RoleRule, ...] = (
    RoleRule(BACKEND, ("backend", "server"), match="exact"),
    RoleRule(FRONTEND, ("frontend", "react", "vue", "ui")),
    RoleRule(QA, ("qa", "test")),
    RoleRule(DEVOPS, ("devops", "infrastructure", "deploy")),
    RoleRule(QA, ("data", "analytics")),
    RoleRule(BACKEND, ("backend", "api")),
)

DEFAULT_MENTION_RULES: tuple[RoleRule, ...] = (
    RoleRule(BACKEND, ("@backend", "@server")),
    RoleRule(FRONTEND, ("@frontend", "@ui", "@react")),
    RoleRule(DEVOPS, ("@devops", "@infrastructure")),
    RoleRule(QA, ("@qa", "@test")),
)


def _first_match(rules: Sequence[RoleRule], text: str) -> str | None:
    for rule in rules:
        if rule.matches(text):
            return rule.role
    return None


class RoleResolver:
    def __init__(
        self,
        alias_rules: Sequence[RoleRule] = DEFAULT_ALIAS_RULES,
        mention_rules: Sequence[RoleRule] = DEFAULT_MENTION_RULES,
        known_roles: frozenset[str] = KNOWN_ROLES,
    ) -> None:
        self._alias_rules = tuple(alias_rules)
        self._mention_rules = tuple(mention_rules)
        self._known_roles = known_roles

    @property
    def known_roles(self) -> frozenset[str]:
        return self._known_roles

    def resolve(
        self,
        requested_model: str,
        messages: Sequence[ChatMessage],
        role_header: str | None = None,
    ) -> str:
        role = requested_model

        alias_role = _first_match(self._alias_rules, requested_model.lower())
        if alias_role is not None:
            role = alias_role

        first_message = messages[0].content.lower() if messages else ""
        mention_role = _first_match(self._mention_rules, first_message)
        if mention_role is not None:
            role = mention_role

        if role_header and role_header in self._known_roles:
            role = role_header

        return role
