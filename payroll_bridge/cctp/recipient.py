"""Payroll recipients."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from eth_typing import HexAddress
from eth_utils import is_address, to_checksum_address

from payroll_bridge.cctp.constants import USDC_DECIMALS
from payroll_bridge.utils import to_raw_amount


@dataclass(slots=True, frozen=True)
class Recipient:
    """One payout: where the USDC is minted and how much.

    Immutable once a transfer starts.
    """

    #: Destination chain key in :py:data:`~payroll_bridge.cctp.constants.CCTP_CHAINS`
    chain: str

    #: Destination wallet address
    address: HexAddress

    #: Raw USDC units, 6 decimals, no implicit scaling
    amount: int

    def __post_init__(self):
        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            raise ValueError(f"Amount must be an int in raw token units, got {type(self.amount)}: {self.amount!r}")
        if self.amount <= 0:
            raise ValueError(f"Amount must be positive, got {self.amount}")
        if not is_address(self.address):
            raise ValueError(f"Not an EVM address: {self.address}")


def parse_recipients(text: str, decimals: int = USDC_DECIMALS) -> list[Recipient]:
    """Parse a ``chain:address:amount`` list.

    Amounts are human-readable USDC and converted exactly.

    Example::

        recipients = parse_recipients("base-sepolia:0xAbc...:12.5, avalanche-fuji:0xDef...:100")

    :param text:
        Comma or newline separated entries.

    :raises ValueError:
        On malformed entries.
    """
    recipients = []
    for raw_entry in text.replace("\n", ",").split(","):
        entry = raw_entry.strip()
        if not entry:
            continue
        parts = entry.split(":")
        if len(parts) != 3:
            raise ValueError(f"Recipient entry must be chain:address:amount, got {entry!r}")
        chain, address, amount = (p.strip() for p in parts)
        try:
            human_amount = Decimal(amount)
        except InvalidOperation as e:
            raise ValueError(f"Bad amount {amount!r} in recipient entry {entry!r}") from e
        recipients.append(
            Recipient(
                chain=chain,
                address=to_checksum_address(address) if is_address(address) else address,
                amount=to_raw_amount(human_amount, decimals),
            )
        )
    return recipients
