"""Wire format of the recognition endpoint.

Outbound::

    <marker>:check_image:<base64 payload>:<marker>:<terminator>

Inbound: a JSON object. ``name`` carries the identity; ``type`` and
``return_result.error`` are optional. Two sentinel names mean the image was
processed without a match.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

from ..core.entities import CropStatus
from ..core.exceptions import MalformedResponseError

CHECK_IMAGE_COMMAND = "check_image"
DEFAULT_UNKNOWN_IDENTITIES = ("Unknown", "Unknown_done")


@dataclass(frozen=True)
class RecognitionResponse:
    """One decoded inbound message."""
    name: Optional[str] = None
    status: Optional[CropStatus] = None
    message_type: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_result(self) -> bool:
        return self.name is not None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def is_informational(self) -> bool:
        return not self.is_result and not self.is_error


def build_check_image_message(payload: str, marker: str = "client", terminator: str = "end") -> str:
    """Frame a base64 image payload for transmission."""
    if not payload:
        raise ValueError("Cannot send an empty payload")
    return f"{marker}:{CHECK_IMAGE_COMMAND}:{payload}:{marker}:{terminator}"


def classify_identity(name: str, unknown_identities: Iterable[str] = DEFAULT_UNKNOWN_IDENTITIES) -> CropStatus:
    """Sentinel names are ``not_recognized``; any other non-empty name is ``recognized``."""
    if not name:
        raise MalformedResponseError("Identity must be a non-empty string")
    if name in set(unknown_identities):
        return CropStatus.NOT_RECOGNIZED
    return CropStatus.RECOGNIZED


def parse_response(message: Union[str, bytes],
                   unknown_identities: Iterable[str] = DEFAULT_UNKNOWN_IDENTITIES) -> RecognitionResponse:
    """Decode an inbound message.

    Raises:
        MalformedResponseError: For non-JSON, non-object or invalid ``name`` messages
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedResponseError(f"Response is not valid UTF-8: {e}") from e

    raw_text = message
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}", raw=raw_text) from e

    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Response must be a JSON object, got {type(data).__name__}", raw=raw_text
        )

    error = None
    return_result = data.get("return_result")
    if isinstance(return_result, dict) and return_result.get("error"):
        error = str(return_result["error"])

    message_type = data.get("type")
    if message_type is not None:
        message_type = str(message_type)

    if "name" not in data:
        return RecognitionResponse(message_type=message_type, error=error, raw=data)

    name = data["name"]
    if not isinstance(name, str) or not name.strip():
        raise MalformedResponseError(f"Invalid identity field: {name!r}", raw=raw_text)

    name = name.strip()
    return RecognitionResponse(
        name=name,
        status=classify_identity(name, unknown_identities),
        message_type=message_type,
        error=error,
        raw=data,
    )
