"""Pay a list of recipients on several chains with one CCTP burn.

Burns the total on the source chain in one atomic batch, waits for
Circle attestations and mints on every destination chain in parallel.

Environment variables
---------------------
- ``ENGINE_URL``: Wallet engine URL (default: ``http://localhost:3005``).
- ``ENGINE_ACCESS_TOKEN``: Wallet engine access token (required).
- ``WALLET_ADDRESS``: Backend wallet that holds the USDC (required).
- ``SOURCE_CHAIN``: Chain key to burn on (default: ``ethereum-sepolia``).
- ``RECIPIENTS``: Comma separated ``chain:address:amount`` entries, amounts in USDC (required).
- ``NETWORK``: ``testnet`` (default) or ``mainnet``, selects the Iris API.
- ``CIRCLE_API_KEY``: Optional Circle API key for Iris.
- ``BURN_SUBMISSION_ID``: Resume a run whose burn batch was already queued.
- ``BURN_TX_HASH``: Resume a run whose burn is already confirmed.
- ``LOG_FILE``: Also write the log to this file.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    ENGINE_ACCESS_TOKEN=... \\
    WALLET_ADDRESS=0xAbc... \\
    RECIPIENTS="base-sepolia:0x111...:12.5,avalanche-fuji:0x222...:100" \\
        poetry run python scripts/cctp/payroll-transfer.py
"""

import logging
import os
import sys
from pathlib import Path

from tabulate import tabulate

from payroll_bridge.cctp.attestation import IrisAttestationService
from payroll_bridge.cctp.constants import CCTP_CHAINS, IRIS_API_BASE_URL, IRIS_API_SANDBOX_URL, USDC_DECIMALS, get_explorer_tx_url
from payroll_bridge.cctp.recipient import parse_recipients
from payroll_bridge.cctp.transfer import PayrollTransfer, TransferStage
from payroll_bridge.engine.api import WalletEngine
from payroll_bridge.engine.session import DEFAULT_ENGINE_URL, create_engine_session
from payroll_bridge.utils import from_raw_amount, setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    log_file = os.environ.get("LOG_FILE")
    setup_console_logging(
        default_log_level=log_level,
        log_file=Path(log_file) if log_file else None,
        coloured_threads=True,
    )

    access_token = os.environ.get("ENGINE_ACCESS_TOKEN")
    assert access_token, "ENGINE_ACCESS_TOKEN environment variable required"

    wallet_address = os.environ.get("WALLET_ADDRESS")
    assert wallet_address, "WALLET_ADDRESS environment variable required"

    recipients_text = os.environ.get("RECIPIENTS")
    assert recipients_text, "RECIPIENTS environment variable required"

    source_chain = os.environ.get("SOURCE_CHAIN", "ethereum-sepolia")
    assert source_chain in CCTP_CHAINS, f"SOURCE_CHAIN must be one of {', '.join(CCTP_CHAINS)}, got '{source_chain}'"

    network = os.environ.get("NETWORK", "testnet").lower()
    assert network in ("mainnet", "testnet"), f"NETWORK must be 'mainnet' or 'testnet', got '{network}'"

    engine_url = os.environ.get("ENGINE_URL", DEFAULT_ENGINE_URL)
    iris_url = IRIS_API_SANDBOX_URL if network == "testnet" else IRIS_API_BASE_URL

    recipients = parse_recipients(recipients_text)
    total = sum(r.amount for r in recipients)

    print(f"Wallet engine: {engine_url}")
    print(f"Iris: {iris_url}")
    print(f"Source: {source_chain}, wallet {wallet_address}")
    print(f"Total: {from_raw_amount(total, USDC_DECIMALS):,.6f} USDC to {len(recipients)} recipients")

    engine = WalletEngine(create_engine_session(api_url=engine_url, access_token=access_token))
    iris = IrisAttestationService(api_url=iris_url, api_key=os.environ.get("CIRCLE_API_KEY"))

    transfer = PayrollTransfer(
        engine=engine,
        iris=iris,
        source_chain=source_chain,
        initiator_address=wallet_address,
        recipients=recipients,
        progress=True,
    )

    state = transfer.run(
        burn_submission_id=os.environ.get("BURN_SUBMISSION_ID") or None,
        burn_tx_hash=os.environ.get("BURN_TX_HASH") or None,
    )

    if state.burn_tx_hash:
        print(f"\nBurn: {get_explorer_tx_url(source_chain, state.burn_tx_hash)}")
    elif state.burn_submission_id:
        print(f"\nBurn queue id: {state.burn_submission_id}, resume with BURN_SUBMISSION_ID")

    rows = [
        [
            recipient_state.recipient.chain,
            address,
            f"{from_raw_amount(recipient_state.recipient.amount, USDC_DECIMALS):,.6f}",
            recipient_state.status.value,
            get_explorer_tx_url(recipient_state.recipient.chain, recipient_state.mint_tx_hash) if recipient_state.mint_tx_hash else recipient_state.message,
        ]
        for address, recipient_state in state.recipients.items()
    ]
    print("\nRecipients:")
    print(tabulate(rows, headers=["Chain", "Address", "USDC", "Status", "Mint / message"], tablefmt="simple"))

    if state.stage != TransferStage.completed:
        print(f"\nTransfer failed ({state.failure_kind.value if state.failure_kind else 'unknown'}): {state.error}")
        sys.exit(1)

    print("\nAll recipients paid")


if __name__ == "__main__":
    main()
