"""Stratum protocol JSON-RPC message encoding and decoding."""

from __future__ import annotations

import json
import math
from typing import Any, Optional, Union

from stratum_height_monitor.stratum.messages import (
    AuthorizeReply,
    CorrelationState,
    DecodedMessage,
    NotifyPayload,
    SetDifficulty,
    StratumMethods,
    StratumRequest,
    SubscribeReply,
    UnrecognizedEnvelope,
)


class StratumProtocolError(Exception):
    """Error in stratum protocol handling."""

    pass


class ProtocolDecodeError(StratumProtocolError):
    """A line could not be decoded into a known message shape."""

    pass


class EncodingError(StratumProtocolError):
    """An outgoing request could not be serialized."""

    pass


ENCODING = "utf-8"
DELIMITER = b"\n"

# mining.notify carries 9 positional params (10 with some altcoin extensions)
NOTIFY_MIN_PARAMS = 9


def _is_number(value: Any) -> bool:
    """Finite JSON numbers only; bool is an int subclass and must be rejected."""
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int)


def _as_request_id(value: Any) -> Optional[int]:
    """Return value as an integer request ID, or None if it cannot be one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def format_difficulty(difficulty: float) -> str:
    """Format a difficulty value the way it is re-sent to peers."""
    return f"{difficulty:.6E}"


def encode_request(request: StratumRequest) -> bytes:
    """
    Encode a request as a newline-terminated JSON object.

    Args:
        request: Request to encode.

    Returns:
        JSON bytes with newline delimiter.

    Raises:
        EncodingError: If a parameter cannot be represented in JSON.
    """
    try:
        text = json.dumps(request.to_dict(), separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Failed to encode {request.method}: {e}") from e
    return text.encode(ENCODING) + DELIMITER


def decode_message(
    line: Union[bytes, str], correlation: CorrelationState
) -> DecodedMessage:
    """
    Decode one line received from the pool.

    Replies are matched to the pending authorize request first, then the
    pending subscribe request. Everything else is dispatched on the method
    name; unknown traffic becomes an UnrecognizedEnvelope.

    Args:
        line: A single newline-delimited frame (delimiter optional).
        correlation: The session's pending request IDs.

    Returns:
        Exactly one decoded message variant.

    Raises:
        ProtocolDecodeError: If the line is not a JSON object or a recognized
            message has the wrong shape.
    """
    try:
        if isinstance(line, bytes):
            line = line.decode(ENCODING)
        text = line.strip()
        if not text:
            raise ProtocolDecodeError("Empty message")
        obj = json.loads(text)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and the int digit limit
        raise ProtocolDecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise ProtocolDecodeError(f"Expected JSON object, got {type(obj).__name__}")

    msg_id = _as_request_id(obj.get("id"))
    method = obj.get("method")

    if msg_id is not None:
        if msg_id == correlation.authorize_id:
            return _decode_authorize_reply(obj)
        if msg_id == correlation.subscribe_id:
            return _decode_subscribe_reply(obj)

    if method == StratumMethods.MINING_NOTIFY:
        return _decode_notify(obj.get("params"))
    if method == StratumMethods.MINING_SET_DIFFICULTY:
        return _decode_set_difficulty(obj.get("params"))

    return UnrecognizedEnvelope(
        raw=obj,
        method=method if isinstance(method, str) else None,
        id=obj.get("id"),
    )


def _decode_authorize_reply(obj: dict) -> AuthorizeReply:
    # {"id":2,"result":true,"error":null}
    # {"id":2,"result":null,"error":[29,"Invalid username",null]}
    result = obj.get("result")
    error = obj.get("error")

    if result is not None and not isinstance(result, bool):
        raise ProtocolDecodeError(
            f"Authorize result must be a boolean, got {type(result).__name__}"
        )
    if error is None:
        return AuthorizeReply(success=bool(result))
    if not isinstance(error, list):
        raise ProtocolDecodeError(
            f"Authorize error must be null or an array, got {type(error).__name__}"
        )
    if len(error) < 2:
        raise ProtocolDecodeError(f"Authorize error array too short: {error}")

    code = _as_request_id(error[0])
    if code is None:
        raise ProtocolDecodeError(f"Authorize error code must be an integer: {error[0]!r}")
    if not isinstance(error[1], str):
        raise ProtocolDecodeError(f"Authorize error message must be a string: {error[1]!r}")

    return AuthorizeReply(success=bool(result), error_code=code, error_message=error[1])


def _decode_subscribe_reply(obj: dict) -> SubscribeReply:
    # {"id":1,"result":[[["mining.set_difficulty","7fcc4632"],["mining.notify","7fcc4632"]],"7fcc4632",8],"error":null}
    result = obj.get("result")
    if not isinstance(result, list):
        raise ProtocolDecodeError(
            f"Subscribe result must be an array, got {type(result).__name__}"
        )
    if len(result) < 3:
        raise ProtocolDecodeError(f"Subscribe result has {len(result)} elements, expected 3")

    subscriptions, extranonce1, extranonce2_size = result[0], result[1], result[2]
    if not isinstance(extranonce1, str):
        raise ProtocolDecodeError(f"extranonce1 must be a string: {extranonce1!r}")
    if not _is_number(extranonce2_size):
        raise ProtocolDecodeError(f"extranonce2_size must be numeric: {extranonce2_size!r}")

    subscription_id = None
    if isinstance(subscriptions, list):
        for sub in subscriptions:
            if isinstance(sub, list) and len(sub) >= 2:
                if sub[0] == StratumMethods.MINING_NOTIFY:
                    subscription_id = str(sub[1])
                    break

    return SubscribeReply(
        extranonce1=extranonce1,
        extranonce2_size=int(extranonce2_size),
        subscription_id=subscription_id,
    )


def _decode_notify(params: Any) -> NotifyPayload:
    if not isinstance(params, list):
        raise ProtocolDecodeError("mining.notify params must be an array")
    if len(params) < NOTIFY_MIN_PARAMS:
        raise ProtocolDecodeError(
            f"mining.notify has {len(params)} params, expected at least {NOTIFY_MIN_PARAMS}"
        )

    for index in (0, 1, 2, 3, 5, 6, 7):
        if not isinstance(params[index], str):
            raise ProtocolDecodeError(
                f"mining.notify param {index} must be a string, "
                f"got {type(params[index]).__name__}"
            )
    branches = params[4]
    if not isinstance(branches, list) or not all(isinstance(b, str) for b in branches):
        raise ProtocolDecodeError("mining.notify merkle branches must be an array of strings")
    if not isinstance(params[8], bool):
        raise ProtocolDecodeError(
            f"mining.notify clean_jobs must be a boolean, got {type(params[8]).__name__}"
        )

    return NotifyPayload(
        job_id=params[0],
        prev_hash=params[1],
        coinbase1=params[2],
        coinbase2=params[3],
        merkle_branches=tuple(branches),
        version=params[5],
        nbits=params[6],
        ntime=params[7],
        clean_jobs=params[8],
    )


def _decode_set_difficulty(params: Any) -> SetDifficulty:
    # {"id":null,"method":"mining.set_difficulty","params":[64]}
    if not isinstance(params, list) or not params:
        raise ProtocolDecodeError("mining.set_difficulty params must be a non-empty array")
    if not _is_number(params[0]):
        raise ProtocolDecodeError(f"Difficulty must be numeric: {params[0]!r}")

    try:
        difficulty = float(params[0])
    except OverflowError as e:
        raise ProtocolDecodeError(f"Difficulty out of range: {e}") from e
    return SetDifficulty(difficulty=difficulty, formatted=format_difficulty(difficulty))


class StratumProtocol:
    """
    Per-connection codec for the monitored subset of Stratum.

    Stratum uses newline-delimited JSON messages over TCP. The protocol owns
    the correlation state so request IDs and reply matching stay consistent.
    """

    def __init__(self):
        """Initialize the protocol handler."""
        self.correlation = CorrelationState()

    def reset(self) -> None:
        """Start a fresh ID sequence (called on every new handshake)."""
        self.correlation.reset()

    def build_subscribe(self, user_agent: str) -> bytes:
        """
        Build a mining.subscribe request and record its ID.

        Raises:
            EncodingError: If the request cannot be serialized.
        """
        req_id = self.correlation.allocate()
        self.correlation.subscribe_id = req_id
        return encode_request(
            StratumRequest(id=req_id, method=StratumMethods.MINING_SUBSCRIBE, params=[user_agent])
        )

    def build_authorize(self, username: str, password: str) -> bytes:
        """
        Build a mining.authorize request and record its ID.

        Raises:
            EncodingError: If the request cannot be serialized.
        """
        req_id = self.correlation.allocate()
        self.correlation.authorize_id = req_id
        return encode_request(
            StratumRequest(
                id=req_id,
                method=StratumMethods.MINING_AUTHORIZE,
                params=[username, password],
            )
        )

    def decode(self, line: Union[bytes, str]) -> DecodedMessage:
        """Decode a line against this connection's correlation state."""
        return decode_message(line, self.correlation)
