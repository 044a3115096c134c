"""Burn batch construction and submission."""

import pytest
from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from hexbytes import HexBytes

from payroll_bridge.cctp.burn import build_burn_calls, calculate_total_amount, submit_burn_batch
from payroll_bridge.cctp.calls import DEPOSIT_FOR_BURN_SIGNATURE, BatchCall
from payroll_bridge.cctp.constants import CCTP_CHAINS
from payroll_bridge.cctp.errors import ConfigurationError, FailureKind
from payroll_bridge.cctp.recipient import Recipient

INITIATOR = "0x9f1c8c4b2b7d2e5ea1d3f8a2c4b6d8e0f2a4c6e8"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"

BURN_TYPES = ["uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"]


@pytest.fixture()
def recipients() -> list[Recipient]:
    return [
        Recipient(chain="base-sepolia", address=ALICE, amount=1_000_000),
        Recipient(chain="avalanche-fuji", address=BOB, amount=2_500_000),
        Recipient(chain="base-sepolia", address=CAROL, amount=4_999),
    ]


def _decode_burn(call: BatchCall) -> tuple:
    assert call.data[:4] == function_signature_to_4byte_selector(DEPOSIT_FOR_BURN_SIGNATURE)
    return decode(BURN_TYPES, call.data[4:])


def test_burn_batch_layout(recipients):
    """One approve of the total, then one burn per recipient in order."""
    source = CCTP_CHAINS["ethereum-sepolia"]
    calls = build_burn_calls(source, recipients)

    assert len(calls) == 4

    approve = calls[0]
    assert approve.to_address == source.token
    spender, total = decode(["address", "uint256"], approve.data[4:])
    assert to_checksum_address(spender) == to_checksum_address(source.token_messenger)
    assert total == 3_504_999

    burns = [_decode_burn(c) for c in calls[1:]]
    assert all(c.to_address == source.token_messenger for c in calls[1:])

    assert [b[0] for b in burns] == [1_000_000, 2_500_000, 4_999]
    assert [b[1] for b in burns] == [6, 1, 6]
    assert [b[2][12:] for b in burns] == [bytes.fromhex(a[2:]) for a in (ALICE, BOB, CAROL)]
    # Fee is truncated, small payouts pay nothing
    assert [b[5] for b in burns] == [200, 500, 0]
    assert all(b[6] == 1000 for b in burns)


def test_extra_calls_go_last(recipients):
    source = CCTP_CHAINS["ethereum-sepolia"]
    extra = BatchCall(to_address=ALICE, data=HexBytes("0x01"))
    calls = build_burn_calls(source, recipients, extra_calls=[extra])

    assert len(calls) == 5
    assert calls[-1] == extra


def test_total_is_exact():
    """Big amounts are summed as integers, never floats."""
    recipients = [
        Recipient(chain="base-sepolia", address=ALICE, amount=2**64 + 1),
        Recipient(chain="base-sepolia", address=BOB, amount=2**64 + 2),
    ]
    assert calculate_total_amount(recipients) == 2**65 + 3

    calls = build_burn_calls(CCTP_CHAINS["ethereum-sepolia"], recipients)
    _, total = decode(["address", "uint256"], calls[0].data[4:])
    assert total == 2**65 + 3


def test_no_recipients():
    with pytest.raises(ValueError):
        build_burn_calls(CCTP_CHAINS["ethereum-sepolia"], [])


def test_unknown_destination_chain():
    recipients = [Recipient(chain="solana-devnet", address=ALICE, amount=1)]
    with pytest.raises(ConfigurationError, match="solana-devnet") as exc_info:
        build_burn_calls(CCTP_CHAINS["ethereum-sepolia"], recipients)
    assert exc_info.value.kind == FailureKind.configuration


def test_submit_burn_batch(engine, recipients):
    queue_id = submit_burn_batch(engine, "ethereum-sepolia", INITIATOR, recipients)

    assert len(engine.submitted) == 1
    batch = engine.submitted[0]
    assert batch.queue_id == queue_id
    assert batch.chain_id == 11155111
    assert batch.wallet_address == INITIATOR
    assert len(batch.calls) == 4


def test_submit_burn_batch_unknown_source(engine, recipients):
    with pytest.raises(ConfigurationError):
        submit_burn_batch(engine, "ethereum-mainnet-but-typo", INITIATOR, recipients)
    assert engine.submitted == []
