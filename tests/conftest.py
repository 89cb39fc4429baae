"""Shared test fixtures for deployforge."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployforge.core.artifact_cache import ArtifactCache
from deployforge.core.deployment_manager import DeploymentManager
from deployforge.core.retry import RetryPolicy
from deployforge.core.run_ledger import RunLedger
from deployforge.errors import ContractReverted, ExplorerError, TransientNetworkError
from deployforge.models.artifacts import normalize_address
from deployforge.models.config import ManagerConfig, RetrySettings
from deployforge.network.abi import selector
from deployforge.network.base import (
    SignedTransaction,
    TransactionReceipt,
    TransactionRequest,
    VerificationInput,
)

# Stand-in runtime code for addresses the tests never configured.
_CONTRACT_CODE = b"\x60\x80\x60\x40"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeNetworkClient:
    """In-memory chain: canned call responses, deterministic deployments.

    Responses are keyed by (address, calldata). A missing response reverts,
    the way a contract without that function does. Every address has code
    unless it was added with ``add_account``.

    ``lost_responses`` makes that many broadcasts reach the chain and then
    fail with a read timeout, as a dropped RPC response would.
    """

    def __init__(self, network: str = "testnet") -> None:
        self.network = network
        self.responses: dict[tuple[str, bytes], bytes | Callable[[], bytes]] = {}
        self.code: dict[str, bytes] = {}
        self.accounts: set[str] = set()
        self.calls: list[tuple[str, bytes]] = []
        self.signed: dict[str, TransactionRequest] = {}
        self.sent: list[TransactionRequest] = []
        self.lookups: list[str] = []
        self.receipts: dict[str, TransactionReceipt] = {}
        self.call_failures: list[Exception] = []
        self.send_failures: list[Exception] = []
        self.confirm_failures: list[Exception] = []
        self.lost_responses = 0
        self.fail_status = False

    def respond(
        self, address: str, signature: str, result: bytes | Callable[[], bytes]
    ) -> None:
        self.responses[(normalize_address(address), selector(signature))] = result

    def add_account(self, address: str) -> None:
        self.accounts.add(normalize_address(address))

    def call(self, address: str, data: bytes) -> bytes:
        self.calls.append((address, data))
        if self.call_failures:
            raise self.call_failures.pop(0)
        result = self.responses.get((normalize_address(address), bytes(data)))
        if result is None:
            raise ContractReverted("function selector was not recognized", address=address)
        return result() if callable(result) else result

    def get_code(self, address: str) -> bytes:
        key = normalize_address(address)
        if key in self.accounts:
            return b""
        return self.code.get(key, _CONTRACT_CODE)

    def sign_transaction(self, request: TransactionRequest) -> SignedTransaction:
        nonce = len(self.signed)
        tx_hash = f"0x{nonce + 1:064x}"
        self.signed[tx_hash] = request
        return SignedTransaction(tx_hash=tx_hash, raw=bytes(request.data), nonce=nonce)

    def send_raw_transaction(self, signed: SignedTransaction) -> str:
        if self.send_failures:
            raise self.send_failures.pop(0)
        if signed.tx_hash not in self.receipts:
            self._mine(signed.tx_hash, self.signed[signed.tx_hash])
        if self.lost_responses:
            self.lost_responses -= 1
            raise TransientNetworkError("read timed out")
        return signed.tx_hash

    def has_transaction(self, tx_hash: str) -> bool:
        self.lookups.append(tx_hash)
        return tx_hash in self.receipts

    def _mine(self, tx_hash: str, request: TransactionRequest) -> None:
        self.sent.append(request)
        n = len(self.sent)
        created = f"0x{0xC0DE0000 + n:040x}" if request.to is None else None
        self.receipts[tx_hash] = TransactionReceipt(
            tx_hash=tx_hash,
            status=0 if self.fail_status else 1,
            block_number=100 + n,
            contract_address=created,
        )
        if created:
            self.code[normalize_address(created)] = request.data

    def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        if self.confirm_failures:
            raise self.confirm_failures.pop(0)
        return self.receipts[tx_hash]

    def get_logs(self, **filters: Any) -> list[dict[str, Any]]:
        return []


class FakeBuildSource:
    """Creation bytecode is just the build id plus JSON-encoded args."""

    def creation_request(
        self, build_id: str, constructor_args: list[Any]
    ) -> TransactionRequest:
        payload = build_id.encode() + json.dumps(constructor_args).encode()
        return TransactionRequest(data=payload)

    def verification_input(
        self, build_id: str, constructor_args: list[Any]
    ) -> VerificationInput:
        return VerificationInput(
            contract_name=f"src/{build_id}.sol:{build_id}",
            compiler_version="v0.8.15+commit.e14f2714",
            standard_json={"language": "Solidity", "settings": {}, "sources": {}},
            constructor_args=json.dumps(constructor_args).encode().hex(),
        )


class FakeExplorer:
    """Block explorer that accepts every source and serves canned interfaces."""

    def __init__(self) -> None:
        self.submitted: list[tuple[str, VerificationInput]] = []
        self.interfaces: dict[str, list[dict[str, Any]]] = {}
        self.fetched: list[str] = []
        self.verify_failures: list[Exception] = []

    def verify_source(self, address: str, source: VerificationInput) -> str:
        if self.verify_failures:
            raise self.verify_failures.pop(0)
        self.submitted.append((address, source))
        return "Pass - Verified"

    def fetch_interface(self, address: str) -> list[dict[str, Any]]:
        self.fetched.append(address)
        try:
            return self.interfaces[normalize_address(address)]
        except KeyError:
            raise ExplorerError(f"No verified interface for {address}") from None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy(clock: FakeClock) -> RetryPolicy:
    """Fast retry policy on a fake clock: 2s budget, 100ms base delay."""
    return RetryPolicy(
        RetrySettings(budget_ms=2_000, base_delay_ms=100, max_delay_ms=800),
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def make_client() -> Callable[..., FakeNetworkClient]:
    """Factory fixture: a fresh in-memory chain for the named network."""

    def _factory(network: str = "testnet") -> FakeNetworkClient:
        return FakeNetworkClient(network)

    return _factory


@pytest.fixture
def client(make_client: Callable[..., FakeNetworkClient]) -> FakeNetworkClient:
    return make_client()


@pytest.fixture
def build_source() -> FakeBuildSource:
    return FakeBuildSource()


@pytest.fixture
def explorer() -> FakeExplorer:
    return FakeExplorer()


@pytest.fixture
def cache(tmp_dir: Path) -> ArtifactCache:
    """Provide a fresh ArtifactCache in a temp directory."""
    return ArtifactCache(tmp_dir / "deployments")


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def make_manager(
    tmp_dir: Path,
    client: FakeNetworkClient,
    build_source: FakeBuildSource,
    cache: ArtifactCache,
    policy: RetryPolicy,
) -> Callable[..., DeploymentManager]:
    """Factory fixture: a DeploymentManager over the fake client and temp cache."""

    def _factory(**overrides: Any) -> DeploymentManager:
        defaults: dict[str, Any] = {
            "network": "testnet",
            "deployment": "usdc",
            "client": client,
            "cache": cache,
            "builds": build_source,
            "config": ManagerConfig(cache_dir=tmp_dir / "deployments"),
            "policy": policy,
        }
        defaults.update(overrides)
        return DeploymentManager(
            defaults.pop("network"),
            defaults.pop("deployment"),
            defaults.pop("client"),
            **defaults,
        )

    return _factory


@pytest.fixture
def dm(make_manager: Callable[..., DeploymentManager]) -> DeploymentManager:
    """Convenience: a ready-made DeploymentManager for testnet/usdc."""
    return make_manager()
