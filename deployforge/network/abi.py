"""ABI helpers for rules, migrations and proposal encoding."""

from __future__ import annotations

from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


def split_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``"addAsset(address,(address,uint8))"`` into name and top-level types."""
    name, sep, rest = signature.partition("(")
    if not sep or not rest.endswith(")"):
        raise ValueError(f"Malformed function signature: {signature!r}")
    inner = rest[:-1]
    types: list[str] = []
    depth = 0
    current = ""
    for char in inner:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        types.append(current)
    return name.strip(), [t.strip() for t in types]


def selector(signature: str) -> bytes:
    """4-byte function selector for *signature*."""
    return function_signature_to_4byte_selector(signature)


def encode_args(signature: str, args: list[Any]) -> bytes:
    """ABI-encode *args* for the parameter types of *signature* (no selector)."""
    _, types = split_signature(signature)
    if len(types) != len(args):
        raise ValueError(
            f"{signature} takes {len(types)} argument(s), got {len(args)}"
        )
    return encode(types, list(args)) if types else b""


def encode_call(signature: str, args: list[Any] | None = None) -> bytes:
    """Selector + encoded args, ready for ``NetworkClient.call``."""
    return selector(signature) + encode_args(signature, list(args or []))


def decode_address(data: bytes) -> str:
    (value,) = decode(["address"], data)
    return to_checksum_address(value)


def decode_addresses(data: bytes) -> list[str]:
    (values,) = decode(["address[]"], data)
    return [to_checksum_address(v) for v in values]


def decode_string(data: bytes) -> str:
    (value,) = decode(["string"], data)
    return value
