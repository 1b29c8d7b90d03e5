"""
GitHub API response normalizer.

Converts raw REST payloads into clean field dicts that map directly onto
SQLModel columns. No DB access here; callers (the sync service) handle
persistence.

Activity dicts share one shape regardless of source endpoint:

    {"update_type", "title", "description", "url", "author", "detected_at"}

GitHub timestamps are ISO 8601 with a trailing "Z" ("2025-01-15T07:30:00Z").
They are stored as naive UTC.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from starsync.models.common import utcnow

TITLE_MAX_LENGTH = 500


def _parse_github_datetime(s: Optional[str]) -> datetime:
    """Parse a GitHub timestamp; falls back to now when missing or malformed."""
    if not s:
        return utcnow()
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return utcnow()
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _title(s: Optional[str]) -> Optional[str]:
    if s is None:
        return None
    return s[:TITLE_MAX_LENGTH]


def normalize_repository(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a /user/starred list item into StarredRepository field dict.

    owner_login is taken from the owner object, falling back to the
    "owner/name" prefix of full_name.
    """
    full_name = raw.get("full_name") or ""
    owner = raw.get("owner") or {}
    owner_login = owner.get("login") or full_name.split("/")[0]

    return {
        "github_repo_id": raw["id"],
        "repo_name": raw.get("name") or full_name.split("/")[-1],
        "owner_login": owner_login,
        "repo_full_name": full_name,
        "description": raw.get("description"),
        "html_url": raw.get("html_url") or "",
        "language": raw.get("language"),
        "stargazers_count": raw.get("stargazers_count") or 0,
        "fork_count": raw.get("forks_count") or 0,
        "open_issues_count": raw.get("open_issues_count") or 0,
        "topics": list(raw.get("topics") or []),
        "owner_avatar_url": owner.get("avatar_url"),
    }


def normalize_commit(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Commit list item → activity dict. Title is the first line of the message."""
    commit = raw.get("commit") or {}
    message = commit.get("message") or ""
    author = commit.get("author") or {}
    return {
        "update_type": "commit",
        "title": _title(message.split("\n")[0]),
        "description": message,
        "url": raw["html_url"],
        "author": author.get("name"),
        "detected_at": _parse_github_datetime(author.get("date")),
    }


def normalize_issue(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "update_type": "issue",
        "title": _title(raw.get("title")),
        "description": raw.get("body"),
        "url": raw["html_url"],
        "author": (raw.get("user") or {}).get("login"),
        "detected_at": _parse_github_datetime(raw.get("created_at")),
    }


def normalize_pull_request(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "update_type": "pr",
        "title": _title(raw.get("title")),
        "description": raw.get("body"),
        "url": raw["html_url"],
        "author": (raw.get("user") or {}).get("login"),
        "detected_at": _parse_github_datetime(raw.get("created_at")),
    }
