"""Résumé document defaults and schema migration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .const import LOCALES

Document = dict[str, Any]

PRIMARY, SECONDARY = LOCALES

LOCALIZED_FIELDS: tuple[str, ...] = ("name", "tagline", "summary")

# list field -> (localized sub-fields, list-valued sub-fields)
SECTION_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "education": (("detail",), ()),
    "experiences": (("title", "org", "description"), ()),
    "projects": (("title", "description"), ("tags",)),
    "skillGroups": (("label",), ("items",)),
}


def default_document() -> Document:
    """Return the starter résumé shown on a fresh device."""

    return {
        "name": {"zh": "你的名字", "en": "Your Name"},
        "tagline": {"zh": "你的职位 / 标签", "en": "Your Title / Tagline"},
        "email": "email@example.com",
        "website": "www.example.com",
        "github": "github.com/username",
        "location": "City, Country",
        "summary": {
            "zh": "在这里写一段关于你自己的简短介绍...",
            "en": "Write a brief summary about yourself here...",
        },
        "education": [
            {
                "school": "Your University",
                "detail": {"zh": "计算机科学", "en": "Computer Science"},
                "period": "2020 - 2024",
            }
        ],
        "experiences": [
            {
                "title": {"zh": "软件工程师", "en": "Software Engineer"},
                "org": {"zh": "某公司", "en": "Some Company"},
                "description": {"zh": "描述你的工作内容...", "en": "Describe your work here..."},
                "startDate": "2024",
                "icon": "mdi:briefcase-outline",
            }
        ],
        "projects": [
            {
                "title": {"zh": "项目名称", "en": "Project Name"},
                "description": {"zh": "项目描述...", "en": "Project description..."},
                "date": "2024",
                "tags": ["React", "TypeScript"],
            }
        ],
        "skillGroups": [
            {
                "label": {"zh": "前端", "en": "Frontend"},
                "items": [{"name": "React"}, {"name": "TypeScript"}, {"name": "Tailwind CSS"}],
            },
            {"label": {"zh": "后端", "en": "Backend"}, "items": [{"name": "Node.js"}, {"name": "Python"}]},
        ],
    }


def _clone(value: Any) -> Any:
    """Copy JSON-compatible data; anything else becomes ``None``."""

    if isinstance(value, Mapping):
        return {str(key): _clone(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_clone(item) for item in value]
    if value is None or isinstance(value, str | bool | int | float):
        return value
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool | int | float):
        return str(value)
    return ""


def localize(value: Any) -> dict[str, str]:
    """Return ``value`` as a ``{primary, secondary}`` text pair.

    Legacy scalars are duplicated into both slots and a pair missing one slot
    borrows the text of the other.
    """

    if isinstance(value, Mapping):
        primary = _as_text(value.get(PRIMARY))
        secondary = _as_text(value.get(SECONDARY))
        if PRIMARY not in value:
            primary = secondary
        if SECONDARY not in value:
            secondary = primary
        return {PRIMARY: primary, SECONDARY: secondary}
    text = _as_text(value)
    return {PRIMARY: text, SECONDARY: text}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list | tuple):
        return list(value)
    return []


def _migrate_skill_item(item: Any) -> dict[str, Any] | None:
    if isinstance(item, str):
        return {"name": item} if item else None
    if isinstance(item, Mapping):
        migrated = _clone(item)
        migrated["name"] = _as_text(migrated.get("name"))
        return migrated
    return None


def _migrate_entry(entry: Mapping[str, Any], section: str) -> dict[str, Any]:
    localized, listed = SECTION_FIELDS[section]
    migrated = _clone(entry)
    for field in localized:
        migrated[field] = localize(migrated.get(field))
    for field in listed:
        items = _as_list(migrated.get(field))
        if field == "items":
            converted = (_migrate_skill_item(item) for item in items)
            migrated[field] = [item for item in converted if item is not None]
        else:
            migrated[field] = [_as_text(item) for item in items if _as_text(item)]
    return migrated


def migrate(raw: Any) -> Document:
    """Upgrade any legacy or partial document to the current shape.

    The function is total: malformed input degrades to the empty shape
    instead of raising, and the input is never modified. Running it twice
    yields the same result as running it once.
    """

    source: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    try:
        document: Document = _clone(source)
    except RecursionError:
        # self-referencing input cannot be serialized anyway
        document = {}

    for field in LOCALIZED_FIELDS:
        if field in document:
            document[field] = localize(document[field])

    for section in SECTION_FIELDS:
        entries = _as_list(document.get(section))
        document[section] = [_migrate_entry(entry, section) for entry in entries if isinstance(entry, Mapping)]

    return document


__all__ = ["Document", "default_document", "localize", "migrate"]
