"""WebSocket message protocol definitions.

Defines Pydantic models for the signaling wire format. Messages are
JSON-encoded text frames. Negotiation payloads (SDP offers/answers, ICE
candidates) are carried as opaque JSON values: the relay keeps the source
text of each payload and writes it back out unchanged.
"""

import json
import re
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter, ValidationError

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_decoder = json.JSONDecoder()


class EnvelopeError(ValueError):
    """Raised when an inbound message is not a well-formed envelope."""


class ClientIdMessage(BaseModel):
    """Server → Client: identity announcement.

    Always the first message a client receives after connecting.
    """

    type: Literal["client-id"] = "client-id"
    id: str = Field(..., min_length=1, description="Identity assigned to this connection")


class ForwardedMessage(BaseModel):
    """Server → Client: relayed negotiation message.

    ``payload`` holds the JSON source text exactly as the sender wrote it.
    """

    type: str
    payload_field: str
    payload: str = Field(..., description="Raw JSON text of the payload")
    sender: str

    def to_json(self) -> str:
        """Serialize as ``{"type":..., <payload_field>: <payload>, "sender":...}``."""
        return (
            f'{{"type":{json.dumps(self.type)},'
            f"{json.dumps(self.payload_field)}:{self.payload},"
            f'"sender":{json.dumps(self.sender)}}}'
        )


class _RoutedEnvelope(BaseModel):
    """Common shape of client → server negotiation messages."""

    model_config = ConfigDict(extra="ignore")

    # Name of the field holding the opaque payload for this variant
    payload_field: ClassVar[str]

    type: str
    target: str = Field(..., min_length=1, description="Identity of the receiving peer")
    sender: Any = Field(
        default=None, description="Client-claimed sender (ignored, replaced on forward)"
    )

    _raw_payload: str = PrivateAttr(default="null")

    @property
    def payload(self) -> Any:
        """Opaque negotiation payload, decoded."""
        return getattr(self, self.payload_field)

    @property
    def raw_payload(self) -> str:
        """Payload source text as received."""
        return self._raw_payload

    def forward(self, sender: str) -> ForwardedMessage:
        """Build the message delivered to the target peer.

        Args:
            sender: Identity of the connection the envelope arrived on

        Returns:
            Forward message without ``target`` and with the given sender
        """
        return ForwardedMessage(
            type=self.type,
            payload_field=self.payload_field,
            payload=self._raw_payload,
            sender=sender,
        )


class OfferEnvelope(_RoutedEnvelope):
    """Client → Server: SDP offer addressed to ``target``."""

    payload_field: ClassVar[str] = "offer"

    type: Literal["offer"] = "offer"
    offer: Any = Field(..., description="Opaque session description")


class AnswerEnvelope(_RoutedEnvelope):
    """Client → Server: SDP answer addressed to ``target``."""

    payload_field: ClassVar[str] = "answer"

    type: Literal["answer"] = "answer"
    answer: Any = Field(..., description="Opaque session description")


class IceCandidateEnvelope(_RoutedEnvelope):
    """Client → Server: ICE candidate addressed to ``target``."""

    payload_field: ClassVar[str] = "candidate"

    type: Literal["ice_candidate"] = "ice_candidate"
    candidate: Any = Field(..., description="Opaque connectivity candidate")


class UnknownEnvelope(BaseModel):
    """Well-formed message whose ``type`` is not a negotiation type."""

    type: str


# Union type for all routable client → server messages
SignalingEnvelope = Annotated[
    OfferEnvelope | AnswerEnvelope | IceCandidateEnvelope,
    Field(discriminator="type"),
]

# Union type for all server → client messages
ServerMessage = ClientIdMessage | ForwardedMessage

ENVELOPE_TYPES = frozenset({"offer", "answer", "ice_candidate"})

_envelope_adapter: TypeAdapter[OfferEnvelope | AnswerEnvelope | IceCandidateEnvelope] = (
    TypeAdapter(SignalingEnvelope)
)


def _skip_whitespace(text: str, idx: int) -> int:
    match = _WHITESPACE.match(text, idx)
    return match.end() if match else idx


def _raw_members(text: str) -> dict[str, str]:
    """Map each top-level key of a JSON object to the source text of its value.

    ``text`` must already be known to hold a valid JSON object. Later
    duplicate keys win, as with ``json.loads``.
    """
    members: dict[str, str] = {}
    idx = _skip_whitespace(text, 0) + 1  # past "{"

    while True:
        idx = _skip_whitespace(text, idx)
        if text[idx] == "}":
            return members

        key, idx = _decoder.raw_decode(text, idx)
        idx = _skip_whitespace(text, idx) + 1  # past ":"
        start = _skip_whitespace(text, idx)
        _, end = _decoder.raw_decode(text, start)
        members[key] = text[start:end]

        idx = _skip_whitespace(text, end)
        if text[idx] == ",":
            idx += 1


def parse_envelope(
    raw: str | bytes,
) -> OfferEnvelope | AnswerEnvelope | IceCandidateEnvelope | UnknownEnvelope:
    """Decode a raw WebSocket message into an envelope variant.

    Args:
        raw: Text frame, or binary frame holding UTF-8 JSON

    Returns:
        The matching negotiation envelope, or ``UnknownEnvelope`` when the
        message is a JSON object with an unrecognised string ``type``

    Raises:
        EnvelopeError: If the message is not valid JSON, not an object, lacks
            a string ``type``, or a negotiation message is missing ``target``
            or its payload field
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EnvelopeError(f"Invalid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise EnvelopeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise EnvelopeError(f"Envelope must be a JSON object, got {type(data).__name__}")

    message_type = data.get("type")
    if not isinstance(message_type, str):
        raise EnvelopeError("Envelope is missing a string 'type' field")

    if message_type not in ENVELOPE_TYPES:
        return UnknownEnvelope(type=message_type)

    try:
        envelope = _envelope_adapter.validate_python(data)
    except ValidationError as e:
        raise EnvelopeError(
            f"Invalid {message_type} envelope: {e.error_count()} validation error(s)"
        ) from e

    envelope._raw_payload = _raw_members(raw)[envelope.payload_field]
    return envelope
