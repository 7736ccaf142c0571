"""Block height extraction from mining.notify job data."""

from __future__ import annotations

from typing import Dict, Protocol, Tuple

from stratum_height_monitor.stratum.messages import NotifyPayload


class ExtractionError(Exception):
    """Block height could not be derived from a job."""

    pass


class HeightExtractor(Protocol):
    """Callable that derives the block height for a coin type."""

    def __call__(self, coin_type: str, payload: NotifyPayload) -> int: ...


# version(4) + prevout hash(32) + prevout index(4) around the input count
_TX_VERSION_SIZE = 4
_PREVOUT_SIZE = 36

# OP_1 .. OP_16 push the small integers 1 .. 16
_OP_1 = 0x51
_OP_16 = 0x60


def _read_varint(data: bytes, offset: int) -> Tuple[int, int]:
    """Read a Bitcoin CompactSize integer. Returns (value, new_offset)."""
    if offset >= len(data):
        raise ExtractionError("Coinbase truncated before varint")
    prefix = data[offset]
    if prefix < 0xFD:
        return prefix, offset + 1
    size = {0xFD: 2, 0xFE: 4, 0xFF: 8}[prefix]
    end = offset + 1 + size
    if end > len(data):
        raise ExtractionError("Coinbase truncated inside varint")
    return int.from_bytes(data[offset + 1:end], "little"), end


def bip34_height(coinbase1: str) -> int:
    """
    Extract the BIP34 block height from the first part of a coinbase tx.

    The height is the first push of the coinbase scriptSig, which always
    lands in coinbase1 because the extranonce is placed after it.

    Args:
        coinbase1: Hex-encoded coinbase prefix from mining.notify.

    Returns:
        Block height.

    Raises:
        ExtractionError: If the coinbase does not start with a height push.
    """
    try:
        data = bytes.fromhex(coinbase1)
    except ValueError as e:
        raise ExtractionError(f"Coinbase is not valid hex: {e}") from e

    offset = _TX_VERSION_SIZE
    # Segwit marker/flag, sent by a few pools even though stratum expects legacy serialization
    if data[offset:offset + 2] == b"\x00\x01":
        offset += 2

    input_count, offset = _read_varint(data, offset)
    if input_count != 1:
        raise ExtractionError(f"Coinbase has {input_count} inputs, expected 1")

    offset += _PREVOUT_SIZE
    script_len, offset = _read_varint(data, offset)
    if script_len == 0 or offset >= len(data):
        raise ExtractionError("Coinbase scriptSig is empty")

    opcode = data[offset]
    if _OP_1 <= opcode <= _OP_16:
        return opcode - _OP_1 + 1
    if not 1 <= opcode <= 8:
        raise ExtractionError(f"Coinbase scriptSig does not start with a height push (0x{opcode:02x})")

    height_bytes = data[offset + 1:offset + 1 + opcode]
    if len(height_bytes) != opcode:
        raise ExtractionError("Coinbase truncated inside height push")
    return int.from_bytes(height_bytes, "little", signed=True)


def _bip34_extractor(coin_type: str, payload: NotifyPayload) -> int:
    return bip34_height(payload.coinbase1)


_EXTRACTORS: Dict[str, HeightExtractor] = {}

BIP34_COINS = ("btc", "bch", "bsv", "ltc", "doge", "dgb", "nmc")


def register_extractor(coin_type: str, extractor: HeightExtractor) -> None:
    """Register (or replace) the height extractor for a coin type."""
    _EXTRACTORS[coin_type.lower()] = extractor


def supported_coin_types() -> list[str]:
    """Get the coin types that have a registered extractor."""
    return sorted(_EXTRACTORS)


def extract_height(coin_type: str, payload: NotifyPayload) -> int:
    """
    Derive the block height for a job using the coin's registered policy.

    Raises:
        ExtractionError: If no extractor is registered or extraction fails.
    """
    extractor = _EXTRACTORS.get(coin_type.lower())
    if extractor is None:
        raise ExtractionError(f"No height extractor for coin type '{coin_type}'")
    try:
        height = extractor(coin_type, payload)
    except ExtractionError:
        raise
    except (ValueError, TypeError, KeyError, IndexError) as e:
        raise ExtractionError(f"Height extractor for '{coin_type}' failed: {e}") from e
    if height < 0:
        raise ExtractionError(f"Negative height {height} for job {payload.job_id}")
    return height


for _coin in BIP34_COINS:
    register_extractor(_coin, _bip34_extractor)
