from __future__ import annotations

from structlog import contextvars


def set_request_id(request_id: str) -> None:
    contextvars.bind_contextvars(request_id=request_id)


def set_actor(actor_id: str, organization_id: str | None = None) -> None:
    contextvars.bind_contextvars(actor_id=actor_id, organization_id=organization_id)


def get_request_id() -> str | None:
    ctx = contextvars.get_contextvars()
    v = ctx.get("request_id")
    return str(v) if v is not None else None


def get_actor_id() -> str | None:
    ctx = contextvars.get_contextvars()
    v = ctx.get("actor_id")
    return str(v) if v is not None else None


def get_organization_id() -> str | None:
    ctx = contextvars.get_contextvars()
    v = ctx.get("organization_id")
    return str(v) if v is not None else None


def clear_context() -> None:
    contextvars.clear_contextvars()
