"""Build and submit the source-chain burn batch.

One payroll run burns for every recipient in a single atomic batch:

1. ``approve()`` the sum of all amounts to TokenMessengerV2
2. one ``depositForBurn()`` per recipient, in recipient order
3. any extra calls the caller wants in the same batch

The wallet engine applies the batch all-or-nothing, so we never end up
with an approval but no burn, or some recipients burned and others not.
The order of the burn calls fixes the order of the CCTP messages Iris
returns, which the mint step relies on.
"""

import logging

from eth_typing import HexAddress

from payroll_bridge.cctp.calls import BatchCall, calculate_max_fee, encode_approve, encode_deposit_for_burn
from payroll_bridge.cctp.constants import FINALITY_THRESHOLD_FAST, ChainEndpoint, get_chain_endpoint
from payroll_bridge.cctp.recipient import Recipient
from payroll_bridge.engine.api import WalletEngine

logger = logging.getLogger(__name__)


def calculate_total_amount(recipients: list[Recipient]) -> int:
    """Exact sum of recipient amounts in raw units."""
    return sum(r.amount for r in recipients)


def build_burn_calls(
    source: ChainEndpoint,
    recipients: list[Recipient],
    extra_calls: list[BatchCall] | None = None,
    min_finality_threshold: int = FINALITY_THRESHOLD_FAST,
) -> list[BatchCall]:
    """Build approve + burn calls for a payroll batch.

    :param source:
        Chain the USDC is burned on.

    :param recipients:
        Payouts, in the order the burn messages should be emitted.

    :param extra_calls:
        Appended after the burns. Must not emit CCTP messages
        themselves, or attestation positions shift.

    :return:
        ``1 + len(recipients) + len(extra_calls)`` calls.

    :raise ValueError:
        If there are no recipients.

    :raise ConfigurationError:
        If a recipient's chain is not configured.
    """
    if not recipients:
        raise ValueError("Cannot build a burn batch without recipients")

    total = calculate_total_amount(recipients)

    calls = [
        BatchCall(
            to_address=source.token,
            data=encode_approve(source.token_messenger, total),
        )
    ]

    for recipient in recipients:
        destination = get_chain_endpoint(recipient.chain)
        calls.append(
            BatchCall(
                to_address=source.token_messenger,
                data=encode_deposit_for_burn(
                    amount=recipient.amount,
                    destination_domain=destination.domain,
                    mint_recipient=recipient.address,
                    burn_token=source.token,
                    max_fee=calculate_max_fee(recipient.amount),
                    min_finality_threshold=min_finality_threshold,
                ),
            )
        )

    if extra_calls:
        calls.extend(extra_calls)

    return calls


def submit_burn_batch(
    engine: WalletEngine,
    source_chain: str,
    initiator_address: HexAddress | str,
    recipients: list[Recipient],
    extra_calls: list[BatchCall] | None = None,
) -> str:
    """Submit the approve + burn batch for all recipients.

    :param engine:
        Wallet engine client.

    :param source_chain:
        Chain key to burn on.

    :param initiator_address:
        Backend wallet that holds the USDC.

    :param recipients:
        Non-empty list of payouts.

    :return:
        Wallet engine queue id, see :py:func:`~payroll_bridge.cctp.transaction_status.wait_for_transaction`.

    :raise ConfigurationError:
        Unknown source or destination chain.

    :raise SubmissionError:
        The wallet engine rejected the batch.
    """
    source = get_chain_endpoint(source_chain)
    calls = build_burn_calls(source, recipients, extra_calls)
    total = calculate_total_amount(recipients)

    logger.info(
        "Burning %d raw USDC on %s for %d recipients on %s",
        total,
        source.chain_key,
        len(recipients),
        ", ".join(sorted({r.chain for r in recipients})),
    )

    return engine.submit_transaction_batch(source.chain_id, initiator_address, calls)
