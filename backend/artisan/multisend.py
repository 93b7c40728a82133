"""
Safe MultiSend Batch Encoder

Packs an ordered call list into the byte layout consumed by Safe's
MultiSend / MultiSendCallOnly contracts and wraps it as multiSend(bytes)
calldata. Per call:

    operation   1 byte   (0 = CALL)
    to         20 bytes
    value      32 bytes  big-endian
    dataLength 32 bytes  big-endian
    data       dataLength bytes

Calls are concatenated in order with no separators; an empty list packs to b"".
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Union

from web3 import Web3

from infrastructure.errors import ValidationError
from infrastructure.rpc import checksum

OPERATION_CALL = 0
OPERATION_DELEGATECALL = 1

ADDRESS_WIDTH = 20
WORD_WIDTH = 32
MAX_UINT256 = 2**256 - 1

# Fixed-width prefix in front of each call's data
HEADER_WIDTH = 1 + ADDRESS_WIDTH + WORD_WIDTH + WORD_WIDTH

MULTISEND_ABI = [
    {
        "inputs": [{"name": "transactions", "type": "bytes"}],
        "name": "multiSend",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    }
]


@dataclass(frozen=True)
class Call:
    """One inner call of a rebalance batch."""
    to: str
    value: int
    data: bytes

    def __post_init__(self):
        # Targets are held as 20-byte checksummed addresses, the form decode_batch returns
        object.__setattr__(self, "to", Web3.to_checksum_address(_address_bytes(self.to)))

    def to_dict(self) -> Dict[str, str]:
        return {
            "to": self.to,
            "value": str(self.value),
            "data": "0x" + self.data.hex(),
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> "Call":
        """Accepts {to, value, data} with hex-encoded data (plan submission shape)."""
        try:
            data = raw.get("data") or "0x"
            return cls(
                to=checksum(raw["to"]),
                value=int(raw.get("value") or 0),
                data=Web3.to_bytes(hexstr=data) if isinstance(data, str) else bytes(data),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ValidationError(f"Malformed call: {e}", {"call": str(raw)[:200]}) from e


def _address_bytes(address: str) -> bytes:
    hex_part = address[2:] if address[:2].lower() == "0x" else address
    try:
        raw = bytes.fromhex(hex_part.rjust(len(hex_part) + len(hex_part) % 2, "0"))
    except ValueError as e:
        raise ValidationError(f"Invalid target address: {address}") from e
    return raw.rjust(ADDRESS_WIDTH, b"\x00")[-ADDRESS_WIDTH:]


def encode_call(call: Call) -> bytes:
    if not 0 <= call.value <= MAX_UINT256:
        raise ValidationError("call value out of uint256 range", {"value": str(call.value)})

    return (
        OPERATION_CALL.to_bytes(1, "big") +
        _address_bytes(call.to) +
        call.value.to_bytes(WORD_WIDTH, "big") +
        len(call.data).to_bytes(WORD_WIDTH, "big") +
        call.data
    )


def encode_batch(calls: Iterable[Call]) -> bytes:
    """Ordered calls -> packed MultiSend transactions blob."""
    return b"".join(encode_call(call) for call in calls)


def decode_batch(packed: bytes) -> List[Call]:
    """Inverse of encode_batch. Raises ValidationError on truncated input."""
    calls = []
    offset = 0
    while offset < len(packed):
        if offset + HEADER_WIDTH > len(packed):
            raise ValidationError("Truncated batch header", {"offset": offset})

        operation = packed[offset]
        if operation != OPERATION_CALL:
            raise ValidationError("Unsupported inner operation", {"offset": offset, "operation": operation})
        offset += 1

        to = Web3.to_checksum_address(packed[offset:offset + ADDRESS_WIDTH])
        offset += ADDRESS_WIDTH

        value = int.from_bytes(packed[offset:offset + WORD_WIDTH], "big")
        offset += WORD_WIDTH

        length = int.from_bytes(packed[offset:offset + WORD_WIDTH], "big")
        offset += WORD_WIDTH

        if offset + length > len(packed):
            raise ValidationError("Truncated call data", {"offset": offset, "length": length})
        data = bytes(packed[offset:offset + length])
        offset += length

        calls.append(Call(to=to, value=value, data=data))
    return calls


def wrap_batch(packed: bytes, batch_executor: str, w3: Web3 = None) -> Call:
    """The single outer call: multiSend(packed) on the batch executor."""
    w3 = w3 or Web3()
    multisend = w3.eth.contract(address=checksum(batch_executor), abi=MULTISEND_ABI)
    data = multisend.functions.multiSend(packed)._encode_transaction_data()
    return Call(to=multisend.address, value=0, data=Web3.to_bytes(hexstr=data))


def coerce_calls(calls: Iterable[Union[Call, Dict]]) -> List[Call]:
    return [c if isinstance(c, Call) else Call.from_dict(c) for c in calls]
