"""Circle CCTP V2 constants.

Per-chain contract addresses and domain mappings for the chains
the payroll bridge can burn from and mint to.

CCTP enables burn-and-mint USDC transfers across chains:

1. Source chain: call ``depositForBurn()`` on TokenMessengerV2 to burn USDC
2. Circle's Iris attestation service signs the burn message
3. Destination chain: call ``receiveMessage()`` on MessageTransmitterV2 to mint USDC

CCTP uses its own domain identifiers, not EVM chain IDs.

- `CCTP V2 documentation <https://developers.circle.com/cctp>`_
- `EVM contract addresses <https://developers.circle.com/cctp/evm-smart-contracts>`_
"""

from dataclasses import dataclass

from eth_typing import HexAddress

from payroll_bridge.cctp.errors import ConfigurationError

#: CCTP V2 TokenMessengerV2 on testnets - entry point for ``depositForBurn()``.
TOKEN_MESSENGER_V2_TESTNET: HexAddress = HexAddress("0x8fe6b999dc680ccfdd5bf7eb0974218be2542daa")

#: CCTP V2 MessageTransmitterV2 on testnets - verifies attestations in ``receiveMessage()``.
MESSAGE_TRANSMITTER_V2_TESTNET: HexAddress = HexAddress("0xe737e5cebeeba77efe34d4aa090756590b1ce275")

#: Circle Iris attestation API base URL (mainnet).
IRIS_API_BASE_URL = "https://iris-api.circle.com"

#: Circle Iris attestation API base URL (testnet sandbox).
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com"

#: Value Iris puts in the ``attestation`` field until the message is signed
ATTESTATION_PENDING = "PENDING"

#: Minimum finality threshold for fast (confirmed) transfers.
FINALITY_THRESHOLD_FAST = 1000

#: Minimum finality threshold for standard (finalized) transfers.
FINALITY_THRESHOLD_STANDARD = 2000

#: Max fee for a burn is ``amount // MAX_FEE_DIVISOR``.
#:
#: TokenMessengerV2 compares against the truncated value, so never round.
MAX_FEE_DIVISOR = 5000

#: ``destinationCaller`` of all zeroes lets anyone relay the message
ZERO_DESTINATION_CALLER = b"\x00" * 32

#: USDC uses 6 decimals on every CCTP chain
USDC_DECIMALS = 6


@dataclass(slots=True, frozen=True)
class ChainEndpoint:
    """Static CCTP deployment data for one chain."""

    #: Our key for the chain, e.g. ``"base-sepolia"``
    chain_key: str

    #: Native USDC token address, also the ``burnToken`` for ``depositForBurn()``
    token: HexAddress

    #: TokenMessengerV2 address, spender for the approval
    token_messenger: HexAddress

    #: MessageTransmitterV2 address, receives ``receiveMessage()``
    message_transmitter: HexAddress

    #: CCTP domain id
    domain: int

    #: EVM chain id
    chain_id: int

    #: Block explorer base URL without trailing slash
    explorer_url: str

    #: Use the Iris sandbox for this chain
    is_testnet: bool = True


#: Chain key → deployment data.
#:
#: Read-only after import.
CCTP_CHAINS: dict[str, ChainEndpoint] = {
    "ethereum-sepolia": ChainEndpoint(
        chain_key="ethereum-sepolia",
        token=HexAddress("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"),
        token_messenger=TOKEN_MESSENGER_V2_TESTNET,
        message_transmitter=MESSAGE_TRANSMITTER_V2_TESTNET,
        domain=0,
        chain_id=11155111,
        explorer_url="https://sepolia.etherscan.io",
    ),
    "avalanche-fuji": ChainEndpoint(
        chain_key="avalanche-fuji",
        token=HexAddress("0x5425890298aed601595a70AB815c96711a31Bc65"),
        token_messenger=TOKEN_MESSENGER_V2_TESTNET,
        message_transmitter=MESSAGE_TRANSMITTER_V2_TESTNET,
        domain=1,
        chain_id=43113,
        explorer_url="https://testnet.snowtrace.io",
    ),
    "base-sepolia": ChainEndpoint(
        chain_key="base-sepolia",
        token=HexAddress("0x036CbD53842c5426634e7929541eC2318f3dCF7e"),
        token_messenger=TOKEN_MESSENGER_V2_TESTNET,
        message_transmitter=MESSAGE_TRANSMITTER_V2_TESTNET,
        domain=6,
        chain_id=84532,
        explorer_url="https://sepolia.basescan.org",
    ),
    "linea-sepolia": ChainEndpoint(
        chain_key="linea-sepolia",
        token=HexAddress("0xfece4462d57bd51a6a552365a011b95f0e16d9b7"),
        token_messenger=TOKEN_MESSENGER_V2_TESTNET,
        message_transmitter=MESSAGE_TRANSMITTER_V2_TESTNET,
        domain=11,
        chain_id=59141,
        explorer_url="https://sepolia.lineascan.build",
    ),
}

#: Mapping from CCTP domain ID to our chain key.
CCTP_DOMAIN_TO_CHAIN: dict[int, str] = {c.domain: c.chain_key for c in CCTP_CHAINS.values()}


def get_chain_endpoint(chain_key: str) -> ChainEndpoint:
    """Look up deployment data for a chain.

    :param chain_key:
        Key in :py:data:`CCTP_CHAINS`, e.g. ``"base-sepolia"``.

    :raises ConfigurationError:
        If the chain is not configured.
    """
    endpoint = CCTP_CHAINS.get(chain_key)
    if endpoint is None:
        raise ConfigurationError(f"Chain {chain_key!r} is not CCTP-enabled. Known chains: {', '.join(CCTP_CHAINS)}")
    return endpoint


def get_chain_by_chain_id(chain_id: int) -> ChainEndpoint:
    """Reverse lookup by EVM chain id.

    :raises ConfigurationError:
        If no configured chain has this id.
    """
    for endpoint in CCTP_CHAINS.values():
        if endpoint.chain_id == chain_id:
            return endpoint
    raise ConfigurationError(f"No CCTP-enabled chain with chain id {chain_id}")


def get_explorer_tx_url(chain_key: str, tx_hash: str) -> str:
    """Block explorer link for a transaction."""
    endpoint = get_chain_endpoint(chain_key)
    if not tx_hash.startswith("0x"):
        tx_hash = f"0x{tx_hash}"
    return f"{endpoint.explorer_url}/tx/{tx_hash}"
