"""Wire protocol for the BottleCap coordination service.

Every frame is a single JSON text message tagged by its ``type`` field.

Server -> runner:
    auth_success   {runnerId}
    chat_request   {requestId, model, messages, options}

Runner -> server:
    auth           {token}
    chat_response  {requestId, content?, chunk?, done?, error?, usage?}
    status         {status, models?, deviceName?}

Optional fields that are not set are left out of the encoded object
entirely. The service distinguishes a missing key from an explicit null,
so ``None`` must never reach the wire.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticSerializationError

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """A frame could not be encoded or decoded."""


class _WireModel(BaseModel):
    """Base for messages whose wire keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Shared payload types
# =============================================================================


class ChatMessage(BaseModel):
    """One conversation turn. List order is conversation order."""

    role: str
    content: str


class ChatOptions(BaseModel):
    """Generation options passed through from the requester.

    Keys stay snake_case on the wire. ``stream`` is accepted but never
    honored: responses are always delivered in one piece.
    """

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: Optional[bool] = None


class Usage(_WireModel):
    """Token counters reported by the backend."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# =============================================================================
# Server -> runner
# =============================================================================


class AuthSuccess(_WireModel):
    type: Literal["auth_success"] = "auth_success"
    runner_id: str


class ChatRequest(_WireModel):
    type: Literal["chat_request"] = "chat_request"
    request_id: str
    model: str
    messages: list[ChatMessage]
    options: ChatOptions


@dataclass(frozen=True)
class UnrecognizedMessage:
    """A frame that did not decode to any known server message.

    Carried through dispatch so the session can drop it explicitly
    instead of failing.
    """

    raw: str
    reason: str


ServerMessage = Union[AuthSuccess, ChatRequest, UnrecognizedMessage]

_server_adapter: TypeAdapter = TypeAdapter(
    Annotated[Union[AuthSuccess, ChatRequest], Field(discriminator="type")]
)


# =============================================================================
# Runner -> server
# =============================================================================


class Auth(_WireModel):
    type: Literal["auth"] = "auth"
    token: str


class ChatResponse(_WireModel):
    type: Literal["chat_response"] = "chat_response"
    request_id: str
    content: Optional[str] = None
    chunk: Optional[str] = None
    done: Optional[bool] = None
    error: Optional[str] = None
    usage: Optional[Usage] = None

    @classmethod
    def success(cls, request_id: str, content: str, usage: Usage) -> "ChatResponse":
        """Final response carrying the completed content."""
        return cls(request_id=request_id, content=content, done=True, usage=usage)

    @classmethod
    def failure(cls, request_id: str, error: str) -> "ChatResponse":
        """Final response for a request the backend could not serve."""
        return cls(request_id=request_id, error=error, done=True)


class Status(_WireModel):
    type: Literal["status"] = "status"
    status: str
    models: Optional[list[str]] = None
    device_name: Optional[str] = None


ClientMessage = Union[Auth, ChatResponse, Status]

_client_adapter: TypeAdapter = TypeAdapter(
    Annotated[Union[Auth, ChatResponse, Status], Field(discriminator="type")]
)


# =============================================================================
# Codec
# =============================================================================


def _describe(error: ValidationError) -> str:
    """Short, single-line description of the first validation failure."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first['msg']}"
    return first["msg"]


def _encode(message: BaseModel) -> str:
    try:
        return message.model_dump_json(by_alias=True, exclude_none=True)
    except PydanticSerializationError as e:
        raise ProtocolError(f"Cannot encode {type(message).__name__}: {e}") from e


def encode_client_message(message: ClientMessage) -> str:
    """Encode an outbound message to a single text frame."""
    if not isinstance(message, (Auth, ChatResponse, Status)):
        raise ProtocolError(f"Not a client message: {type(message).__name__}")
    return _encode(message)


def decode_server_message(text: str) -> ServerMessage:
    """Decode an inbound text frame.

    Never raises: unknown tags, missing fields and malformed JSON all
    produce an ``UnrecognizedMessage``.
    """
    try:
        return _server_adapter.validate_json(text)
    except ValidationError as e:
        reason = _describe(e)
        logger.debug("Unrecognized server message (%s): %.200s", reason, text)
        return UnrecognizedMessage(raw=text, reason=reason)


def decode_client_message(text: str) -> ClientMessage:
    """Decode a runner frame. Used by test peers and tooling."""
    try:
        return _client_adapter.validate_json(text)
    except ValidationError as e:
        raise ProtocolError(f"Invalid client message: {_describe(e)}") from e


def encode_server_message(message: Union[AuthSuccess, ChatRequest]) -> str:
    """Encode a server message. Used by test peers and tooling."""
    if not isinstance(message, (AuthSuccess, ChatRequest)):
        raise ProtocolError(f"Not a server message: {type(message).__name__}")
    return _encode(message)
