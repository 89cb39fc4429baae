"""Network collaborators: the client protocol and its web3 implementation."""

from deployforge.network.base import (
    BuildSource,
    ContractHandle,
    NetworkClient,
    TransactionReceipt,
    TransactionRequest,
)

__all__ = [
    "BuildSource",
    "ContractHandle",
    "NetworkClient",
    "TransactionReceipt",
    "TransactionRequest",
]
