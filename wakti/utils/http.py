import json, logging, time

from starlette.responses import Response
from starlette.requests import Request

from .log import JsonEncoder

#-----------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    ip = request.headers.get("X-Forwarded-For", "")
    if ip:
        ip = ip.split(",")[0].strip()
    if ip:
        return ip

    if request.client:
        return request.client.host

    return ""

#-----------------------------------------------------------------------------

def get_bearer_token(request: Request) -> str:
    token = request.headers.get("Authorization") or ""
    while token.startswith("Bearer "):
        token = token[7:]

    return token.strip()

#-----------------------------------------------------------------------------

def _fill_extra_log(request: Request | None = None, extra: dict | None = None):
    if not request or not isinstance(extra, dict):
        return

    if request.url and request.url.path:
        extra["url"] = request.url.path

    ip = get_client_ip(request)
    if ip:
        extra["ip"] = ip

    if hasattr(request.state, "start_time"):
        extra["time_cost"] = round((time.time()-request.state.start_time)*1e3, 2)

#-----------------------------------------------------------------------------

def json_response(content: object, status_code: int = 200, request: Request | None = None, disable_log: bool = False) -> Response:
    if not disable_log:
        extra = {
            "status": status_code
        }
        _fill_extra_log(request=request, extra=extra)

        message = ""
        if content and isinstance(content, dict):
            if isinstance(content.get("error"), str):
                message = content["error"]
            elif isinstance(content.get("msg"), str):
                message = content["msg"]

        if status_code >= 400:
            logging.warning(message, stacklevel=2, extra=extra)
        else:
            logging.info(message, stacklevel=2, extra=extra)

    return Response(
        content     = json.dumps(
            content,
            ensure_ascii= False,
            separators  = (',', ':'),
            cls         = JsonEncoder
        ),
        status_code = status_code,
        media_type  = "application/json; charset=utf-8"
    )

#-----------------------------------------------------------------------------
