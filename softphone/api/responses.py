"""Shared response helpers."""
from fastapi.responses import JSONResponse, Response


def error_response(status_code: int, message: str) -> JSONResponse:
    """JSON error body in the shape browser clients expect."""
    return JSONResponse(status_code=status_code, content={"error": message})


def twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


def ok_response() -> Response:
    """Plain 200 for provider webhooks."""
    return Response(content="OK", media_type="text/plain")
