"""Wallet engine API client.

Typed wrappers for the backend wallet engine endpoints the payroll bridge uses:

- ``POST /backend-wallet/{chainId}/send-transaction-batch-atomic`` - queue an atomic batch
- ``GET /transaction/status/{queueId}`` - status of a queued batch
- ``GET /contract/{chainId}/{token}/erc20/balance-of`` - token balance read-through
- ``POST /backend-wallet/create`` - create a smart-account backend wallet

Example::

    from payroll_bridge.engine.api import WalletEngine
    from payroll_bridge.engine.session import create_engine_session

    engine = WalletEngine(create_engine_session(access_token="..."))
    status = engine.fetch_transaction_status("a1b2c3...")
    print(status.status, status.transaction_hash)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

import requests
from eth_typing import HexAddress

from payroll_bridge.cctp.calls import BatchCall
from payroll_bridge.cctp.constants import CCTP_CHAINS, ChainEndpoint
from payroll_bridge.cctp.errors import SubmissionError
from payroll_bridge.engine.session import EngineSession

logger = logging.getLogger(__name__)

#: Statuses where the engine is still working on the batch
PENDING_STATUSES = frozenset({"queued", "submitted", "sent"})

#: Statuses where the engine gave up on the batch
FAILED_STATUSES = frozenset({"failed", "errored"})

#: ``onchainStatus`` values meaning the transaction reverted
ONCHAIN_FAILED_STATUSES = frozenset({"failed", "reverted"})


@dataclass(slots=True)
class TransactionStatus:
    """Status of a queued wallet engine batch.

    Returned by :py:meth:`WalletEngine.fetch_transaction_status`.
    """

    #: Engine queue id the status is for
    queue_id: str

    #: One of ``queued``, ``submitted``, ``sent``, ``mined``, ``failed``, ``errored``
    status: str

    #: Transaction hash once the engine knows it.
    #:
    #: May show up after ``status`` has already become ``mined``.
    transaction_hash: str | None = None

    #: ``success``, ``failed``/``reverted`` or ``None`` when not yet known
    onchain_status: str | None = None

    #: Error detail from the engine or the reverted transaction
    error_message: str | None = None

    @property
    def is_onchain_success(self) -> bool:
        return self.onchain_status == "success"

    @property
    def is_onchain_failure(self) -> bool:
        return self.onchain_status in ONCHAIN_FAILED_STATUSES


@dataclass(slots=True)
class TokenBalance:
    """ERC-20 balance of a wallet.

    Returned by :py:meth:`WalletEngine.fetch_token_balance`.
    """

    #: Raw balance in token units
    value: int

    #: Token decimals
    decimals: int

    #: Human-readable balance
    display_value: Decimal

    #: Token symbol
    symbol: str


def parse_transaction_status(queue_id: str, data: dict) -> TransactionStatus:
    """Parse ``/transaction/status`` response body.

    The engine has used both ``transactionHash`` and ``txHash`` for the hash.
    """
    result = data.get("result") or {}
    return TransactionStatus(
        queue_id=result.get("queueId") or queue_id,
        status=str(result.get("status", "")),
        transaction_hash=result.get("transactionHash") or result.get("txHash") or None,
        onchain_status=result.get("onchainStatus") or None,
        error_message=result.get("errorMessage") or None,
    )


def _read_result(response: requests.Response) -> dict:
    """The ``result`` object of a 2xx engine response.

    :raise requests.exceptions.InvalidJSONError:
        Body is not JSON or has no ``result`` object, e.g. an HTML page from a proxy.
    """
    data = response.json()
    result = data.get("result") if isinstance(data, dict) else None
    if not isinstance(result, dict):
        raise requests.exceptions.InvalidJSONError(f"No result object in engine response: {response.text[:200]}", response=response)
    return result


def _extract_error(response: requests.Response) -> str:
    """Engine error message from a non-2xx response."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        error = error.get("message")
    return f"HTTP {response.status_code}: {error or data}"


class WalletEngine:
    """Client for the backend wallet engine.

    Thread safe as long as the underlying session is: one instance is
    shared by the parallel destination chain mints.
    """

    def __init__(self, session: EngineSession, timeout: float = 30.0):
        """
        :param session:
            From :py:func:`~payroll_bridge.engine.session.create_engine_session`.

        :param timeout:
            Per-request HTTP timeout in seconds.
        """
        self.session = session
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"<WalletEngine {self.session.api_url}>"

    def submit_transaction_batch(
        self,
        chain_id: int,
        wallet_address: HexAddress | str,
        calls: list[BatchCall],
    ) -> str:
        """Queue calls as one atomic batch.

        Either every call applies or none does.

        :param chain_id:
            EVM chain id to execute on.

        :param wallet_address:
            Backend wallet that sends the batch.

        :param calls:
            Calls in execution order.

        :return:
            Engine queue id.

        :raise SubmissionError:
            If the engine rejects the batch or cannot be reached.
        """
        assert calls, "Empty batch"
        url = f"{self.session.api_url}/backend-wallet/{chain_id}/send-transaction-batch-atomic"
        logger.info("Submitting %d call batch on chain %d from %s", len(calls), chain_id, wallet_address)
        try:
            response = self.session.post(
                url,
                json={"transactions": [c.to_json() for c in calls]},
                headers={"X-Backend-Wallet-Address": wallet_address},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SubmissionError(f"Wallet engine unreachable when submitting batch on chain {chain_id}: {e}") from e

        if not response.ok:
            raise SubmissionError(f"Wallet engine rejected batch on chain {chain_id}: {_extract_error(response)}")

        try:
            queue_id = _read_result(response).get("queueId")
        except requests.RequestException as e:
            raise SubmissionError(f"Wallet engine returned a malformed response for batch on chain {chain_id}: {e}") from e

        if not queue_id:
            raise SubmissionError(f"Wallet engine did not return a queue id for batch on chain {chain_id}")

        logger.info("Batch queued on chain %d with id %s", chain_id, queue_id)
        return queue_id

    def fetch_transaction_status(self, queue_id: str) -> TransactionStatus:
        """One-shot status query for a queued batch.

        :raise requests.RequestException:
            On transport or HTTP errors, or a malformed body. Pollers treat these as transient.
        """
        url = f"{self.session.api_url}/transaction/status/{queue_id}"
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return parse_transaction_status(queue_id, {"result": _read_result(response)})

    def fetch_token_balance(
        self,
        chain_id: int,
        token: HexAddress | str,
        wallet_address: HexAddress | str,
    ) -> TokenBalance:
        """ERC-20 balance of a wallet, read through the engine.

        :raise requests.RequestException:
            On transport or HTTP errors, or a malformed body.
        """
        url = f"{self.session.api_url}/contract/{chain_id}/{token}/erc20/balance-of"
        response = self.session.get(url, params={"wallet_address": wallet_address}, timeout=self.timeout)
        response.raise_for_status()
        result = _read_result(response)
        try:
            return TokenBalance(
                value=int(result["value"]),
                decimals=int(result["decimals"]),
                display_value=Decimal(result["displayValue"]),
                symbol=result.get("symbol", ""),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise requests.exceptions.InvalidJSONError(f"Malformed balance response: {result}", response=response) from e

    def create_backend_wallet(
        self,
        label: str,
        wallet_type: str = "smart:circle",
        credential_id: str | None = None,
        is_testnet: bool = True,
    ) -> HexAddress:
        """Ask the engine to create a new backend wallet.

        Keys stay inside the engine; we only get the address.

        :return:
            Address of the new wallet.
        """
        body = {
            "type": wallet_type,
            "label": label,
            "isTestnet": "true" if is_testnet else "false",
        }
        if credential_id:
            body["credentialId"] = credential_id

        try:
            response = self.session.post(f"{self.session.api_url}/backend-wallet/create", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise SubmissionError(f"Wallet engine unreachable when creating wallet {label!r}: {e}") from e

        if not response.ok:
            raise SubmissionError(f"Wallet engine could not create wallet {label!r}: {_extract_error(response)}")

        try:
            address = _read_result(response)["walletAddress"]
        except (requests.RequestException, KeyError) as e:
            raise SubmissionError(f"Wallet engine returned a malformed response when creating wallet {label!r}: {e}") from e
        logger.info("Created backend wallet %s (%s): %s", label, wallet_type, address)
        return address


def fetch_usdc_balances(
    engine: WalletEngine,
    wallet_address: HexAddress | str,
    chains: list[ChainEndpoint] | None = None,
) -> dict[str, TokenBalance | None]:
    """USDC balance of a wallet on every CCTP chain.

    A chain whose balance query fails maps to ``None`` so one unreachable
    RPC does not hide the rest.

    :param chains:
        Chains to check. Default to all of :py:data:`~payroll_bridge.cctp.constants.CCTP_CHAINS`.

    :return:
        Chain key -> balance
    """
    if chains is None:
        chains = list(CCTP_CHAINS.values())

    balances = {}
    for chain in chains:
        try:
            balances[chain.chain_key] = engine.fetch_token_balance(chain.chain_id, chain.token, wallet_address)
        except requests.RequestException as e:
            logger.warning("Balance query failed on %s: %s", chain.chain_key, e)
            balances[chain.chain_key] = None
    return balances
