"""Etherscan-compatible block explorer client.

Two uses: submitting a deployed contract's source for verification, and
importing the verified ABI of a contract someone else deployed. Transport
failures, 5xx/429 responses and rate-limit replies are raised as
``TransientNetworkError`` so the caller's retry policy handles them; every
other rejection is an ``ExplorerError``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from deployforge.errors import ExplorerError, SourceVerificationError, TransientNetworkError
from deployforge.network.base import VerificationInput

logger = logging.getLogger(__name__)

_RATE_LIMITED = ("rate limit", "max calls per sec", "too many requests")
_PENDING = "pending in queue"
_ALREADY_VERIFIED = "already verified"


class EtherscanExplorer:
    """``Explorer`` over an Etherscan-style ``/api`` endpoint.

    Parameters
    ----------
    api_url:
        Endpoint, e.g. ``https://api.etherscan.io/api``.
    api_key:
        Sent as ``apikey`` when non-empty.
    chain_id:
        Sent as ``chainid`` for multichain endpoints when given.
    http:
        HTTP client to use. One with *timeout_s* is created when omitted.
    poll_interval_s:
        Pause between verification status checks.
    max_polls:
        Status checks before giving up on a pending verification.
    sleep:
        Injectable sleep, for tests.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        *,
        chain_id: int | None = None,
        http: httpx.Client | None = None,
        timeout_s: float = 30.0,
        poll_interval_s: float = 5.0,
        max_polls: int = 24,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._chain_id = chain_id
        self._http = http or httpx.Client(timeout=timeout_s)
        self._poll_interval_s = poll_interval_s
        self._max_polls = max_polls
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"<EtherscanExplorer {self._api_url}>"

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Interface import
    # ------------------------------------------------------------------

    def fetch_interface(self, address: str) -> list[dict[str, Any]]:
        ok, result = self._call(
            "GET", {"module": "contract", "action": "getsourcecode", "address": address}
        )
        entry = result[0] if ok and isinstance(result, list) and result else {}
        raw_abi = entry.get("ABI", "") if isinstance(entry, dict) else ""
        try:
            abi = json.loads(raw_abi)
        except (TypeError, json.JSONDecodeError):
            raise ExplorerError(
                f"No verified interface for {address}: {raw_abi or result or 'empty response'}"
            ) from None
        if not isinstance(abi, list):
            raise ExplorerError(f"Explorer returned a malformed interface for {address}")
        logger.debug("Fetched interface of %s (%d entries)", address, len(abi))
        return abi

    # ------------------------------------------------------------------
    # Source verification
    # ------------------------------------------------------------------

    def verify_source(self, address: str, source: VerificationInput) -> str:
        params = {
            "module": "contract",
            "action": "verifysourcecode",
            "contractaddress": address,
            "sourceCode": json.dumps(source.standard_json, sort_keys=True),
            "codeformat": "solidity-standard-json-input",
            "contractname": source.contract_name,
            "compilerversion": source.compiler_version,
            # The explorer API spells it this way.
            "constructorArguements": source.constructor_args,
        }
        ok, result = self._call("POST", params)
        if not ok:
            if _ALREADY_VERIFIED in str(result).lower():
                logger.info("%s is already verified", address)
                return str(result)
            raise SourceVerificationError(
                f"Explorer rejected verification of {address}: {result}"
            )

        guid = str(result)
        logger.info("Submitted source of %s for verification (guid %s)", address, guid)
        for _ in range(self._max_polls):
            self._sleep(self._poll_interval_s)
            ok, status = self._call(
                "GET", {"module": "contract", "action": "checkverifystatus", "guid": guid}
            )
            message = str(status)
            if _PENDING in message.lower():
                continue
            if ok or _ALREADY_VERIFIED in message.lower():
                return message
            raise SourceVerificationError(f"Verification of {address} failed: {message}")

        raise SourceVerificationError(
            f"Verification of {address} still pending after {self._max_polls} "
            f"checks (guid {guid})"
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _call(self, method: str, params: dict[str, Any]) -> tuple[bool, Any]:
        """One API request. Returns ``(status == "1", result)``."""
        query = dict(params)
        if self._api_key:
            query["apikey"] = self._api_key
        if self._chain_id is not None:
            query["chainid"] = str(self._chain_id)

        try:
            if method == "POST":
                response = self._http.post(self._api_url, data=query)
            else:
                response = self._http.get(self._api_url, params=query)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            if code == 429 or code >= 500:
                raise TransientNetworkError(f"Explorer returned HTTP {code}") from exc
            raise ExplorerError(f"Explorer returned HTTP {code}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Explorer unreachable: {exc}") from exc
        except ValueError as exc:
            raise ExplorerError(f"Explorer returned invalid JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise ExplorerError(f"Unexpected explorer response: {body!r}")
        result = body.get("result")
        if any(marker in str(result).lower() for marker in _RATE_LIMITED):
            raise TransientNetworkError(f"Explorer rate limit: {result}")
        return str(body.get("status")) == "1", result
