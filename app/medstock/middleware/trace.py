import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

TRACE_HEADER = "X-Trace-ID"
# Audit rows store trace ids in a 64 character column.
_MAX_TRACE_ID_LENGTH = 64


def resolve_trace_id(header_value: str | None) -> str:
    candidate = (header_value or "").strip()
    if candidate and len(candidate) <= _MAX_TRACE_ID_LENGTH and candidate.isprintable():
        return candidate
    return str(uuid.uuid4())


class TraceIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        trace_id = resolve_trace_id(request.headers.get(TRACE_HEADER))
        request.state.trace_id = trace_id
        response: Response = await call_next(request)
        response.headers[TRACE_HEADER] = trace_id
        return response
