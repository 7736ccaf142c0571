"""Stratum protocol message dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union


@dataclass
class StratumRequest:
    """A stratum JSON-RPC request from the monitor to the pool."""

    id: int
    method: str
    params: List[Any] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "method": self.method,
            "params": self.params,
            "id": self.id,
        }


@dataclass
class CorrelationState:
    """
    Request ID bookkeeping for one connection.

    Only one subscribe and one authorize request may be outstanding. A new
    handshake calls reset() so IDs restart from 1 on every connection.
    """

    next_id: int = 1
    subscribe_id: Optional[int] = None
    authorize_id: Optional[int] = None

    def reset(self) -> None:
        """Discard pending IDs and restart the ID sequence."""
        self.next_id = 1
        self.subscribe_id = None
        self.authorize_id = None

    def allocate(self) -> int:
        """Return the next request ID."""
        req_id = self.next_id
        self.next_id += 1
        return req_id


@dataclass(frozen=True)
class SubscribeReply:
    """Pool reply to mining.subscribe."""

    extranonce1: str
    extranonce2_size: int
    subscription_id: Optional[str] = None


@dataclass(frozen=True)
class AuthorizeReply:
    """Pool reply to mining.authorize."""

    success: bool
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """Check if the pool returned an error."""
        return self.error_code is not None


@dataclass(frozen=True)
class NotifyPayload:
    """Job announcement carried by mining.notify."""

    job_id: str
    prev_hash: str
    coinbase1: str
    coinbase2: str
    merkle_branches: Tuple[str, ...]
    version: str
    nbits: str
    ntime: str
    clean_jobs: bool


@dataclass(frozen=True)
class SetDifficulty:
    """mining.set_difficulty notification."""

    difficulty: float
    # Fixed-precision scientific notation, kept for re-sending to peers
    formatted: str


@dataclass(frozen=True)
class UnrecognizedEnvelope:
    """Any well-formed message the monitor does not interpret."""

    raw: dict
    method: Optional[str] = None
    id: Any = None


# Exactly one of these is produced per decoded line
DecodedMessage = Union[
    SubscribeReply,
    AuthorizeReply,
    NotifyPayload,
    SetDifficulty,
    UnrecognizedEnvelope,
]


# Stratum method constants
class StratumMethods:
    """Constants for stratum method names."""

    # Client -> Server methods
    MINING_SUBSCRIBE = "mining.subscribe"
    MINING_AUTHORIZE = "mining.authorize"

    # Server -> Client notifications
    MINING_NOTIFY = "mining.notify"
    MINING_SET_DIFFICULTY = "mining.set_difficulty"
