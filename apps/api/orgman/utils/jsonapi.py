"""Accessors for JSON:API resource documents returned by the membership API."""

from typing import Any


def attr(resource: dict | None, name: str, default: Any = None) -> Any:
    if not resource:
        return default
    return (resource.get("attributes") or {}).get(name, default)


def related_id(resource: dict | None, relationship: str) -> str | None:
    """Return relationships.<relationship>.data.id, or None."""
    if not resource:
        return None
    data = ((resource.get("relationships") or {}).get(relationship) or {}).get("data")
    if isinstance(data, dict):
        value = data.get("id")
        return str(value) if value else None
    return None


def resource_id(resource: dict | None) -> str | None:
    if not resource:
        return None
    value = resource.get("id") or attr(resource, "uuid")
    return str(value) if value else None


def find_included(document: dict | None, types: tuple[str, ...]) -> dict | None:
    """First included resource whose type is one of ``types``."""
    for item in (document or {}).get("included") or []:
        if item.get("type") in types:
            return item
    return None


def relationship(type_: str, id_: str) -> dict:
    return {"data": {"type": type_, "id": id_}}
