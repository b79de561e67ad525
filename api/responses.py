"""
api/responses.py -- Success envelope helper.

Every successful JSON response has the same shape:

    {
      "success": true,
      "statusCode": 200,
      "message": "Login successful",
      "data": {...},          # omitted when None
      "meta": {...},          # omitted when None
      "requestId": "..."      # omitted outside a request
    }

The error envelope counterpart lives in api/errors.py.
"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.middleware import current_request_id


def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return jsonable_encoder(value)


def send_response(
    status_code: int,
    message: str,
    data: Any = None,
    meta: dict | BaseModel | None = None,
) -> JSONResponse:
    """Build a success envelope JSONResponse."""
    body: dict[str, Any] = {"success": True, "statusCode": status_code, "message": message}
    if data is not None:
        body["data"] = _encode(data)
    if meta is not None:
        body["meta"] = _encode(meta)
    request_id = current_request_id()
    if request_id:
        body["requestId"] = request_id
    return JSONResponse(status_code=status_code, content=body)
