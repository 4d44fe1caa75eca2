import time, uuid

from starlette.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.req_ctx import set_req_ctx

#-----------------------------------------------------------------------------

def get_request_info(request):
    try:
        url = str(request.url)
        path = str(request.url.path)
    except Exception:
        host = request.headers.get("Host", "unknown")
        url = f"{request.scheme}://{host}{request.path}"
        path = request.path

    return dict(url=url, path=path, method=request.method)

#-----------------------------------------------------------------------------

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Stamps every request with a start time and trace ID, and publishes them to the log context."""

    async def dispatch(self, request, call_next) -> Response:
        if request.method == "OPTIONS":
            return Response()

        # Record current time.
        request.state.start_time = time.time()

        ctx = get_request_info(request)

        # Get request trace ID.
        request.state.trace_id = ""
        for key in ["traceid", "trace_id", "X-Request-Id", "x-request-id"]:
            if key in request.headers:
                request.state.trace_id = request.headers.get(key)
                break

        if not request.state.trace_id:
            request.state.trace_id = str(uuid.uuid4())
        ctx["trace_id"] = request.state.trace_id

        with set_req_ctx(ctx):
            response = await call_next(request)

        response.headers["X-Request-Id"] = request.state.trace_id
        return response

#-----------------------------------------------------------------------------
