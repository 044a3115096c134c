"""Show a backend wallet's USDC balance on every CCTP chain.

Run before a payroll transfer to check the source chain has enough USDC.

Environment variables
---------------------
- ``ENGINE_URL``: Wallet engine URL (default: ``http://localhost:3005``).
- ``ENGINE_ACCESS_TOKEN``: Wallet engine access token (required).
- ``WALLET_ADDRESS``: Backend wallet to check (required).
- ``LOG_LEVEL``: Logging level (default: ``warning``).

Usage::

    ENGINE_ACCESS_TOKEN=... WALLET_ADDRESS=0xAbc... poetry run python scripts/cctp/check-balances.py
"""

import logging
import os

from tabulate import tabulate

from payroll_bridge.cctp.constants import CCTP_CHAINS
from payroll_bridge.engine.api import WalletEngine, fetch_usdc_balances
from payroll_bridge.engine.session import DEFAULT_ENGINE_URL, create_engine_session
from payroll_bridge.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "warning")
    setup_console_logging(default_log_level=log_level)

    access_token = os.environ.get("ENGINE_ACCESS_TOKEN")
    assert access_token, "ENGINE_ACCESS_TOKEN environment variable required"

    wallet_address = os.environ.get("WALLET_ADDRESS")
    assert wallet_address, "WALLET_ADDRESS environment variable required"

    engine_url = os.environ.get("ENGINE_URL", DEFAULT_ENGINE_URL)
    engine = WalletEngine(create_engine_session(api_url=engine_url, access_token=access_token))

    print(f"Wallet: {wallet_address}")
    print(f"Wallet engine: {engine_url}")

    balances = fetch_usdc_balances(engine, wallet_address)
    rows = []
    for chain_key, balance in balances.items():
        chain = CCTP_CHAINS[chain_key]
        rows.append([chain_key, chain.chain_id, chain.domain, f"{balance.display_value:,.6f}" if balance else "error"])

    print()
    print(tabulate(rows, headers=["Chain", "Chain id", "CCTP domain", "USDC"], tablefmt="simple"))


if __name__ == "__main__":
    main()
