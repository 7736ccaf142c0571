"""Builders and fakes shared by the test modules."""

from __future__ import annotations

import asyncio
import json


def coinbase1_for_height(height: int) -> str:
    """Legacy-serialized coinbase prefix whose scriptSig starts with a BIP34 height push."""
    height_bytes = height.to_bytes(height.bit_length() // 8 + 1, "little")
    push = bytes([len(height_bytes)]) + height_bytes
    return (
        "01000000"  # version
        + "01"  # input count
        + "00" * 32  # prevout hash
        + "ffffffff"  # prevout index
        + "20"  # scriptSig length
        + push.hex()
        + "2f6d6f6e69746f722f"  # "/monitor/"
    )


def notify_line(job_id: str, height: int, clean_jobs: bool = True) -> bytes:
    """A mining.notify frame for the given height."""
    return (
        json.dumps(
            {
                "id": None,
                "method": "mining.notify",
                "params": [
                    job_id,
                    "4d16b6f85af6e2198f44ae2a6de67f78487ae5611b77c6c0440b921e00000000",
                    coinbase1_for_height(height),
                    "ffffffff01c817a804000000001976a914",
                    ["8f3cd1b7c3ab9e1d5e0e8b4c5c1a6bd0c6c4e1c43e5b17f6a0d1e2b3c4d5e6f7"],
                    "20000000",
                    "1703a30c",
                    "65f1a2b3",
                    clean_jobs,
                ],
            }
        ).encode()
        + b"\n"
    )


class RecordingDispatcher:
    """Stands in for NotificationDispatcher and keeps every event."""

    def __init__(self):
        self.events = []

    def dispatch(self, event) -> int:
        self.events.append(event)
        return 1


class FakeWriter:
    """Minimal StreamWriter replacement that records written frames."""

    def __init__(self):
        self.frames: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.frames.append(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def requests(self) -> list[dict]:
        return [json.loads(frame) for frame in self.frames]


def eof_reader(*lines: bytes, limit: int = 2**16) -> asyncio.StreamReader:
    """A StreamReader that yields the given lines and then EOF."""
    reader = asyncio.StreamReader(limit=limit)
    for line in lines:
        reader.feed_data(line)
    reader.feed_eof()
    return reader


class ScriptedOpener:
    """
    Replacement for asyncio.open_connection.

    Each call consumes the next outcome: an exception is raised, a
    StreamReader is returned with a fresh FakeWriter. Once the script is
    exhausted every call is refused.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.writers: list[FakeWriter] = []

    async def __call__(self, host, port, limit=None):
        self.calls += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = ConnectionRefusedError(111, "Connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        writer = FakeWriter()
        self.writers.append(writer)
        return outcome, writer


def refused() -> ConnectionRefusedError:
    return ConnectionRefusedError(111, "Connection refused")


# Well-formed JSON that still cannot become a message
HOSTILE_LINES = {
    "huge_difficulty": b'{"id":null,"method":"mining.set_difficulty","params":[1' + b"0" * 400 + b"]}",
    "infinite_difficulty": b'{"id":null,"method":"mining.set_difficulty","params":[1e400]}',
    "nan_difficulty": b'{"id":null,"method":"mining.set_difficulty","params":[NaN]}',
    "int_over_digit_limit": b'{"id":null,"method":"mining.set_difficulty","params":[' + b"7" * 5000 + b"]}",
    "nan_extranonce2_size": b'{"id":1,"result":[[],"08000002",NaN],"error":null}',
    "infinite_extranonce2_size": b'{"id":1,"result":[[],"08000002",Infinity],"error":null}',
    "deep_nesting": b'{"id":null,"method":"x","params":' + b"[" * 100000 + b"]" * 100000 + b"}",
}
