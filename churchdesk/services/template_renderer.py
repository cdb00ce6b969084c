import re
from collections.abc import Callable, Mapping
from typing import Any

PlaceholderResolver = Callable[[Any], str]

_PLACEHOLDERS: dict[str, PlaceholderResolver] = {}
_placeholder_re: re.Pattern[str] | None = None


def _person_field(person: Any, field: str) -> Any:
    if person is None:
        return None
    if isinstance(person, Mapping):
        return person.get(field)
    return getattr(person, field, None)


def first_name(person: Any) -> str:
    name = _person_field(person, "name")
    if not name:
        return ""
    parts = str(name).split()
    return parts[0] if parts else ""


def register_placeholder(token: str, resolver: PlaceholderResolver) -> None:
    """Register ``@token`` for substitution. Tokens match case-insensitively."""
    global _placeholder_re
    normalized = token.strip().lstrip("@").lower()
    if not normalized:
        raise ValueError("Placeholder token cannot be empty")
    _PLACEHOLDERS[normalized] = resolver
    # Longest first so "@nome_completo" wins over "@nome".
    alternatives = sorted(_PLACEHOLDERS, key=len, reverse=True)
    _placeholder_re = re.compile(
        "@(" + "|".join(re.escape(item) for item in alternatives) + ")",
        re.IGNORECASE,
    )


def registered_placeholders() -> list[str]:
    return sorted(f"@{token}" for token in _PLACEHOLDERS)


def render(template: str, person: Any) -> str:
    if not template or _placeholder_re is None:
        return template or ""

    def _replace(match: re.Match[str]) -> str:
        resolver = _PLACEHOLDERS.get(match.group(1).lower())
        if resolver is None:
            return match.group(0)
        value = resolver(person)
        return "" if value is None else str(value)

    return _placeholder_re.sub(_replace, template)


register_placeholder("nome", first_name)
