from __future__ import annotations

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from lendops.core.middleware.context import clear_context, set_actor, set_request_id


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds the request id (and actor headers, when sent) into the log context.

    Events published during the request use the request id as their default
    correlation id and the actor as their default ``userId``.
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        actor_header: str = "X-Actor-ID",
        organization_header: str = "X-Organization-ID",
    ) -> None:
        super().__init__(app)
        self.header_name = header_name
        self.actor_header = actor_header
        self.organization_header = organization_header

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_context()
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        actor_id = request.headers.get(self.actor_header)
        if actor_id:
            set_actor(actor_id, request.headers.get(self.organization_header))
        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response
