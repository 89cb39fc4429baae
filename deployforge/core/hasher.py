"""Canonical hashing helpers for build ids, ledger sealing and vars checkpoints."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def build_id_for_interface(abi: list[dict[str, Any]]) -> str:
    """Content hash of a compiled contract interface.

    Two builds with the same ABI get the same id regardless of key order.
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(abi))}"


def compute_payload_hash(stage: str, payload: Any) -> str:
    """SHA-256 of canonical(stage + payload).

    Recorded in ledger entries as the input/output of a lifecycle stage.
    """
    return sha256_hex(canonical_json_bytes({"stage": stage, "payload": payload}))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
