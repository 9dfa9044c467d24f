"""Single resource ensure API for piped and programmatic callers.

A request names one resource type and its properties::

    {"protocol": "converge.v1.resource.ensure.request",
     "type": "package",
     "properties": {"name": "nginx", "ensure": "present"}}

Requests may be JSON or YAML; the response uses the request's encoding.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from converge.errors import ConvergeError, ProtocolError

if TYPE_CHECKING:
    from converge.model.transaction import TransactionEvent
    from converge.runtime.manager import Manager

ENSURE_REQUEST_PROTOCOL = "converge.v1.resource.ensure.request"
ENSURE_RESPONSE_PROTOCOL = "converge.v1.resource.ensure.response"


class RequestEncoding(StrEnum):
    JSON = "json"
    YAML = "yaml"


class EnsureRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: str = Field(default="", description="Must be the ensure request protocol")
    type: str = Field(default="", description="Resource type name")
    properties: dict[str, Any] = Field(default_factory=dict)
    encoding: RequestEncoding = Field(default=RequestEncoding.JSON, exclude=True)


def detect_encoding(payload: bytes | str) -> RequestEncoding:
    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    return RequestEncoding.JSON if text.lstrip().startswith("{") else RequestEncoding.YAML


def parse_ensure_request(payload: bytes | str) -> EnsureRequest:
    """Decode and validate an ensure request.

    Raises:
        ProtocolError: When the payload cannot be decoded, names the wrong
            protocol, or lacks a type or properties.
    """
    encoding = detect_encoding(payload)
    try:
        if encoding is RequestEncoding.JSON:
            document = json.loads(payload)
        else:
            document = yaml.safe_load(payload)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"could not decode {encoding} request: {exc}") from exc

    if not isinstance(document, dict):
        raise ProtocolError("request must be a mapping")

    try:
        request = EnsureRequest.model_validate({**document, "encoding": encoding})
    except ValidationError as exc:
        raise ProtocolError(f"invalid request: {exc.errors()[0]['msg']}") from exc

    if request.protocol != ENSURE_REQUEST_PROTOCOL:
        raise ProtocolError(f"invalid protocol {request.protocol!r}")
    if not request.type:
        raise ProtocolError("missing type in request")
    if not request.properties:
        raise ProtocolError("missing properties in request")
    return request


def encode_ensure_response(
    encoding: RequestEncoding,
    event: TransactionEvent | None,
    error: Exception | str | None = None,
) -> str:
    response: dict[str, Any] = {"protocol": ENSURE_RESPONSE_PROTOCOL}
    if error is not None:
        response["error"] = str(error)
    elif event is not None:
        response["state"] = event.to_dict()

    if encoding is RequestEncoding.YAML:
        return yaml.safe_dump(response, sort_keys=False)
    return json.dumps(response, indent=2)


async def handle_ensure_request(manager: Manager, payload: bytes | str) -> str:
    """Apply the single resource described by ``payload`` and encode the response.

    Request and setup errors are reported in the response's ``error`` field.
    Convergence failures are reported through the returned event.
    """
    try:
        encoding = detect_encoding(payload)
    except UnicodeDecodeError as exc:
        return encode_ensure_response(RequestEncoding.JSON, None, exc)

    try:
        request = parse_ensure_request(payload)
        resource = manager.new_resource(request.type, request.properties)
        event = await resource.apply()
    except ConvergeError as exc:
        manager.logger().error("Ensure request failed", extra={"error": str(exc)})
        return encode_ensure_response(encoding, None, exc)

    return encode_ensure_response(request.encoding, event)
