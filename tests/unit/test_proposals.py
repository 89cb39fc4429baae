"""Tests for governance proposal encoding."""

from __future__ import annotations

import pytest
from eth_abi import decode

from deployforge.governance.proposals import (
    CalldataAction,
    SignatureAction,
    calldata,
    proposal,
)
from deployforge.models.artifacts import normalize_address
from deployforge.network.abi import encode_call
from deployforge.network.base import TransactionRequest

ADDR_A = "0x" + "a1" * 20
ADDR_B = "0x" + "b2" * 20


class TestProposal:
    def test_parallel_arrays_in_order(self):
        raw = encode_call("setFactory(address,address)", [ADDR_A, ADDR_B])
        encoded = proposal(
            [
                SignatureAction(
                    target=ADDR_A, signature="setFactory(address,address)", args=[ADDR_A, ADDR_B]
                ),
                CalldataAction(target=ADDR_B, calldata=raw, value=5),
            ],
            "# Upgrade cUSDCv3\nSwitch the factory.",
        )

        assert len(encoded) == 2
        assert encoded.targets == [ADDR_A, ADDR_B]
        assert encoded.values == [0, 5]
        assert encoded.signatures == ["setFactory(address,address)", ""]
        assert encoded.calldatas[1] == raw
        assert encoded.description.startswith("# Upgrade")

    def test_signature_action_encodes_args_only(self):
        encoded = proposal(
            [SignatureAction(target=ADDR_A, signature="setSupplyCap(uint256)", args=[10**24])],
            "raise cap",
        )
        (data,) = encoded.calldatas
        assert len(data) == 32
        assert decode(["uint256"], data) == (10**24,)

    def test_no_arg_signature(self):
        encoded = proposal([SignatureAction(target=ADDR_A, signature="pause()")], "pause")
        assert encoded.calldatas == [b""]

    def test_as_args_matches_propose_order(self):
        encoded = proposal([SignatureAction(target=ADDR_A, signature="pause()")], "pause")
        targets, values, signatures, calldatas, description = encoded.as_args()
        assert targets == [ADDR_A]
        assert values == [0]
        assert signatures == ["pause()"]
        assert calldatas == [b""]
        assert description == "pause"

    def test_calldata_strips_selector(self):
        request = TransactionRequest(
            to=ADDR_A, data=encode_call("transfer(address,uint256)", [ADDR_B, 1])
        )
        args = calldata(request)
        address, amount = decode(["address", "uint256"], args)
        assert normalize_address(address) == normalize_address(ADDR_B)
        assert amount == 1


class TestProposalValidation:
    def test_empty_actions(self):
        with pytest.raises(ValueError, match="at least one action"):
            proposal([], "nothing")

    def test_blank_description(self):
        with pytest.raises(ValueError, match="description"):
            proposal([SignatureAction(target=ADDR_A, signature="pause()")], "  ")

    def test_wrong_arg_count(self):
        with pytest.raises(ValueError, match="takes 1 argument"):
            proposal(
                [SignatureAction(target=ADDR_A, signature="setSupplyCap(uint256)")], "cap"
            )

    def test_unencodable_arg(self):
        with pytest.raises(ValueError, match="Cannot encode setSupplyCap"):
            proposal(
                [
                    SignatureAction(
                        target=ADDR_A, signature="setSupplyCap(uint256)", args=["lots"]
                    )
                ],
                "cap",
            )

    def test_malformed_signature(self):
        with pytest.raises(ValueError, match="Malformed"):
            proposal([SignatureAction(target=ADDR_A, signature="pause")], "pause")
