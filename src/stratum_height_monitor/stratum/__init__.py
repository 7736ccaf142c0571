"""Stratum protocol handling module."""

from stratum_height_monitor.stratum.protocol import (
    EncodingError,
    ProtocolDecodeError,
    StratumProtocol,
    StratumProtocolError,
    decode_message,
    encode_request,
)
from stratum_height_monitor.stratum.messages import (
    AuthorizeReply,
    CorrelationState,
    DecodedMessage,
    NotifyPayload,
    SetDifficulty,
    StratumRequest,
    SubscribeReply,
    UnrecognizedEnvelope,
)

__all__ = [
    "StratumProtocol",
    "StratumProtocolError",
    "ProtocolDecodeError",
    "EncodingError",
    "decode_message",
    "encode_request",
    "AuthorizeReply",
    "CorrelationState",
    "DecodedMessage",
    "NotifyPayload",
    "SetDifficulty",
    "StratumRequest",
    "SubscribeReply",
    "UnrecognizedEnvelope",
]
