from llm_gateway.models.openai import ChatMessage
from llm_gateway.routing.roles import RoleResolver, RoleRule


def _user(content: str) -> list[ChatMessage]:
    return [ChatMessage(role="user", content=content)]


def test_alias_keywords_map_to_roles() -> None:
    resolver = RoleResolver()
    assert resolver.resolve("backend", _user("hi")) == "backend"
    assert resolver.resolve("Server", _user("hi")) == "backend"
    assert resolver.resolve("frontend-helper", _user("hi")) == "frontend"
    assert resolver.resolve("react-expert", _user("hi")) == "frontend"
    assert resolver.resolve("qa-bot", _user("hi")) == "qa"
    assert resolver.resolve("deploy-assistant", _user("hi")) == "devops"
    assert resolver.resolve("data-analytics", _user("hi")) == "qa"
    assert resolver.resolve("api-designer", _user("hi")) == "backend"


def test_unknown_alias_is_returned_verbatim() -> None:
    resolver = RoleResolver()
    assert resolver.resolve("gpt-4o", _user("hi")) == "gpt-4o"


def test_exact_rule_does_not_match_substrings() -> None:
    resolver = RoleResolver(alias_rules=[RoleRule("backend", ("server",), match="exact")])
    assert resolver.resolve("serverless", _user("hi")) == "serverless"


def test_mention_in_first_message_overrides_alias() -> None:
    resolver = RoleResolver()
    messages = [
        ChatMessage(role="system", content="Please ask @DevOps about the pipeline"),
        ChatMessage(role="user", content="@frontend ignored because not first"),
    ]
    assert resolver.resolve("frontend-helper", messages) == "devops"


def test_mentions_outside_first_message_are_ignored() -> None:
    resolver = RoleResolver()
    messages = [
        ChatMessage(role="user", content="plain question"),
        ChatMessage(role="assistant", content="@qa maybe"),
    ]
    assert resolver.resolve("backend", messages) == "backend"


def test_known_role_header_overrides_everything() -> None:
    resolver = RoleResolver()
    assert resolver.resolve("frontend-helper", _user("@backend please"), "qa") == "qa"


def test_unknown_role_header_is_ignored() -> None:
    resolver = RoleResolver()
    assert resolver.resolve("frontend-helper", _user("hi"), "admin") == "frontend"


def test_first_matching_alias_rule_wins() -> None:
    resolver = RoleResolver(
        alias_rules=[
            RoleRule("data", ("data",)),
            RoleRule("qa", ("data", "analytics")),
        ],
        known_roles=frozenset({"data", "qa"}),
    )
    assert resolver.resolve("data-pipeline", _user("hi")) == "data"
    assert resolver.resolve("x", _user("hi"), "data") == "data"
