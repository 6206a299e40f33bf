"""Builders for the AQL queries the transfer phases send to the source."""

from __future__ import annotations

import json
from datetime import UTC, datetime


def rfc3339(moment: datetime) -> str:
    """Render an aware datetime as RFC 3339 in UTC, second precision."""
    if moment.tzinfo is None:
        raise ValueError("naive datetimes are not accepted in queries")
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _q(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def folder_contents_query(repo_key: str, relative_path: str) -> str:
    """Immediate children (files and folders) of one folder."""
    return (
        'items.find({"type":"any","$and":[{"repo":%s,"path":{"$eq":%s},"name":{"$match":"*"}}]})'
        '.include("repo","path","name","type")'
    ) % (_q(repo_key), _q(relative_path))


def time_window_query(repo_key: str, start: datetime, end: datetime) -> str:
    """Files of one repository modified inside ``[start, end)``."""
    return (
        'items.find({"type":"file","$and":[{"repo":%s},'
        '{"modified":{"$gte":%s}},{"modified":{"$lt":%s}}]})'
        '.include("repo","path","name")'
    ) % (_q(repo_key), _q(rfc3339(start)), _q(rfc3339(end)))


def paginate(query: str, offset: int, limit: int) -> str:
    """Append a stable sort and a page window to a query."""
    return f'{query}.sort({{"$asc":["path","name"]}}).offset({offset}).limit({limit})'
