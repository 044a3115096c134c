"""Encode the contract calls a CCTP transfer needs.

The wallet engine takes raw ``{toAddress, data, value}`` triples,
so we ABI-encode calls ourselves instead of going through a
``web3.Contract``. Everything past this module treats
:py:attr:`BatchCall.data` as opaque bytes.
"""

from dataclasses import dataclass

from eth_abi import encode
from eth_typing import HexAddress
from eth_utils import function_signature_to_4byte_selector, is_address, to_bytes, to_checksum_address
from hexbytes import HexBytes

from payroll_bridge.cctp.constants import MAX_FEE_DIVISOR, ZERO_DESTINATION_CALLER

#: ERC-20 ``approve``
APPROVE_SIGNATURE = "approve(address,uint256)"

#: TokenMessengerV2 ``depositForBurn``
DEPOSIT_FOR_BURN_SIGNATURE = "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"

#: MessageTransmitterV2 ``receiveMessage``
RECEIVE_MESSAGE_SIGNATURE = "receiveMessage(bytes,bytes)"


@dataclass(slots=True, frozen=True)
class BatchCall:
    """One call inside an atomic wallet engine batch."""

    #: Contract the call goes to
    to_address: HexAddress

    #: ABI-encoded call data including the selector
    data: HexBytes

    #: Native token value in wei
    value: int = 0

    def to_json(self) -> dict:
        """Wallet engine wire format."""
        return {
            "toAddress": self.to_address,
            "data": "0x" + bytes(self.data).hex(),
            "value": str(self.value),
        }


def _encode_call(signature: str, types: list[str], args: list) -> HexBytes:
    selector = function_signature_to_4byte_selector(signature)
    return HexBytes(selector + encode(types, args))


def address_to_bytes32(address: HexAddress | str) -> bytes:
    """Left-pad a 20-byte EVM address to the 32-byte CCTP recipient format.

    :raises ValueError:
        If ``address`` is not a valid EVM address.
    """
    if not is_address(address):
        raise ValueError(f"Not an EVM address: {address}")
    return to_bytes(hexstr=to_checksum_address(address)).rjust(32, b"\x00")


def calculate_max_fee(amount: int) -> int:
    """Maximum fee the burn accepts for ``amount``.

    Integer division: TokenMessengerV2 truncates the same way.
    """
    return amount // MAX_FEE_DIVISOR


def encode_approve(spender: HexAddress | str, amount: int) -> HexBytes:
    """``approve(spender, amount)`` call data."""
    return _encode_call(APPROVE_SIGNATURE, ["address", "uint256"], [to_checksum_address(spender), amount])


def encode_deposit_for_burn(
    amount: int,
    destination_domain: int,
    mint_recipient: HexAddress | str,
    burn_token: HexAddress | str,
    max_fee: int,
    min_finality_threshold: int,
    destination_caller: bytes = ZERO_DESTINATION_CALLER,
) -> HexBytes:
    """``depositForBurn()`` call data for TokenMessengerV2.

    :param amount:
        Raw USDC units to burn.

    :param destination_domain:
        CCTP domain of the chain where USDC is minted.

    :param mint_recipient:
        Destination wallet, padded to ``bytes32``.

    :param burn_token:
        USDC address on the source chain.

    :param max_fee:
        Fee cap in raw units, see :py:func:`calculate_max_fee`.

    :param min_finality_threshold:
        1000 for fast transfers, 2000 for finalized.
    """
    return _encode_call(
        DEPOSIT_FOR_BURN_SIGNATURE,
        ["uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"],
        [
            amount,
            destination_domain,
            address_to_bytes32(mint_recipient),
            to_checksum_address(burn_token),
            destination_caller,
            max_fee,
            min_finality_threshold,
        ],
    )


def encode_receive_message(message: bytes, attestation: bytes) -> HexBytes:
    """``receiveMessage(message, attestation)`` call data for MessageTransmitterV2."""
    return _encode_call(RECEIVE_MESSAGE_SIGNATURE, ["bytes", "bytes"], [bytes(message), bytes(attestation)])
