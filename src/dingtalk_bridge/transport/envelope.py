"""
Envelope parsing and ack construction for the stream gateway.
"""

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from dingtalk_bridge.models.envelope import AckEnvelope, AckHeaders, EnvelopeType, StreamEnvelope


def build_ack(envelope: StreamEnvelope) -> dict[str, Any]:
    """Build the response frame acknowledging ``envelope``, ready for json.dumps."""
    if envelope.type == EnvelopeType.EVENT:
        data = json.dumps({"status": "SUCCESS", "message": "success"})
    else:
        data = json.dumps({"response": None})
    ack = AckEnvelope(
        headers=AckHeaders(message_id=envelope.message_id),
        data=data,
    )
    return ack.model_dump(by_alias=True)


def parse_envelope(raw: Union[str, bytes, dict[str, Any]]) -> Optional[StreamEnvelope]:
    """Parse one frame off the socket. Returns None if invalid."""
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        return StreamEnvelope.model_validate(raw)
    except (ValueError, ValidationError):
        return None
