"""drf-spectacular post-processing: one tag per API area."""

from __future__ import annotations

from typing import Any

_HTTP_METHODS = {"get", "post", "put", "patch", "delete", "options", "head"}

PATTERN_TAGS = [
    ("/api/v1/auth/jwt", "JWT Authentication"),
    ("/api/v1/chats", "Messaging"),
    ("/api/v1/messages", "Messaging"),
    ("/api/v1/notifications", "Notifications"),
    ("/api/v1/activities", "Activities"),
    ("/api/v1/users", "Users"),
]

ALL_TAGS = list(dict.fromkeys(tag for _, tag in PATTERN_TAGS))


def assign_group_tag(path: str) -> str | None:
    for prefix, tag in PATTERN_TAGS:
        if path.startswith(prefix):
            return tag
    return None


def group_tags(result: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    """Overwrite every operation's tags with the group its path belongs to."""
    for path, path_item in result.get("paths", {}).items():
        tag = assign_group_tag(path)
        if not tag:
            continue
        for method, operation in path_item.items():
            if method.lower() in _HTTP_METHODS and isinstance(operation, dict):
                operation["tags"] = [tag]

    declared = {t.get("name") for t in result.get("tags", [])}
    tags = result.setdefault("tags", [])
    tags.extend({"name": tag} for tag in ALL_TAGS if tag not in declared)
    return result
