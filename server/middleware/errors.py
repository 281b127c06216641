"""Error responses shared by the middleware chain and exception handlers.

Middleware runs outside FastAPI's exception handlers, so rejections are
returned as responses instead of raised.
"""

from fastapi.responses import ORJSONResponse, Response

from services.media.exceptions import MediaError


def error_response(exc: MediaError) -> Response:
    """``{"error": message}`` with the status and headers of ``exc``.

    416 carries only its ``Content-Range`` header and an empty body.
    """
    if not exc.has_body:
        return Response(status_code=exc.status_code, headers=exc.headers)
    return ORJSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers or None,
    )
