"""
AgileFlow
Blueprint registry and shared request helpers.
"""

from flask import g, request


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, clamped to 1..max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = max(min(int(request.args.get("limit", default_limit)), max_limit), 1)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def principal():
    """The authenticated caller set by the JWT middleware."""
    return g.principal


def client_meta() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": (request.headers.get("User-Agent") or "")[:500] or None,
    }
