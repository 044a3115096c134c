"""In-memory wallet engine and Iris fakes for tests.

The real wallet engine and Iris are remote services that take minutes
to settle a burn, so the transfer logic is tested against scripted
fakes. Both fakes duck-type the real clients and are thread safe, so
they can be shared by parallel destination chain mints.

Example::

    from payroll_bridge.cctp.testing import FakeIrisAttestationService, FakeWalletEngine, complete_messages, pending_status, mined_status

    engine = FakeWalletEngine()
    # Next batch on Base Sepolia is seen pending twice, then mined
    engine.plan_submission(84532, [pending_status(), pending_status(), mined_status("0xabc...")])

    iris = FakeIrisAttestationService(default_responses=[None, complete_messages(2)])
"""

import dataclasses
import threading
from collections import defaultdict
from dataclasses import dataclass

from eth_typing import HexAddress
from eth_utils import keccak, to_checksum_address

from payroll_bridge.cctp.calls import BatchCall
from payroll_bridge.cctp.constants import ATTESTATION_PENDING, USDC_DECIMALS
from payroll_bridge.engine.api import TokenBalance, TransactionStatus
from payroll_bridge.utils import from_raw_amount

#: Status plan entry: a status to return, or an exception to raise from the status query
StatusPlanEntry = TransactionStatus | Exception

#: Iris response entry: ``None`` for 404, a message list, or an exception to raise
IrisResponse = list[dict] | Exception | None


def make_tx_hash(seed: str) -> str:
    """Deterministic fake transaction hash."""
    return "0x" + keccak(text=seed).hex()


def pending_status(status: str = "sent") -> TransactionStatus:
    return TransactionStatus(queue_id="", status=status)


def mined_status(transaction_hash: str | None, onchain_status: str | None = "success") -> TransactionStatus:
    """Mined status, optionally with the hash or on-chain result still missing."""
    return TransactionStatus(
        queue_id="",
        status="mined",
        transaction_hash=transaction_hash,
        onchain_status=onchain_status,
    )


def failed_status(error_message: str, status: str = "errored", onchain_status: str | None = None) -> TransactionStatus:
    return TransactionStatus(
        queue_id="",
        status=status,
        onchain_status=onchain_status,
        error_message=error_message,
    )


def iris_message(index: int, status: str = "complete", signed: bool = True) -> dict:
    """One Iris ``/v2/messages`` entry.

    :param index:
        Makes the message and attestation bytes unique.

    :param signed:
        If ``False`` the attestation is the ``PENDING`` placeholder.
    """
    return {
        "message": "0x" + (b"\x01" + index.to_bytes(4, "big") * 8).hex(),
        "attestation": "0x" + (index.to_bytes(1, "big") * 65).hex() if signed else ATTESTATION_PENDING,
        "status": status,
        "eventNonce": str(index),
    }


def complete_messages(count: int) -> list[dict]:
    return [iris_message(i) for i in range(count)]


@dataclass(slots=True)
class SubmittedBatch:
    """A batch the fake engine accepted."""

    queue_id: str
    chain_id: int
    wallet_address: str
    calls: list[BatchCall]


class FakeWalletEngine:
    """Scripted stand-in for :py:class:`~payroll_bridge.engine.api.WalletEngine`.

    - Every accepted batch is recorded in :py:attr:`submitted`
    - Each submission on a chain takes the next plan queued with :py:meth:`plan_submission`
    - Without a plan the batch is mined successfully on the first poll
    - The last entry of a status plan repeats forever
    """

    def __init__(self):
        self.submitted: list[SubmittedBatch] = []
        self.status_queries: dict[str, int] = defaultdict(int)
        self.balances: dict[tuple[int, str], int] = {}
        self._lock = threading.Lock()
        self._plans: dict[int, list[tuple[Exception | None, list[StatusPlanEntry] | None]]] = defaultdict(list)
        self._statuses: dict[str, list[StatusPlanEntry]] = {}
        self._counter = 0

    def plan_submission(
        self,
        chain_id: int,
        statuses: list[StatusPlanEntry] | None = None,
        error: Exception | None = None,
    ):
        """Script the next submission on a chain.

        :param statuses:
            Status responses for the batch, in poll order.

        :param error:
            Raise this from :py:meth:`submit_transaction_batch` instead of accepting the batch.
        """
        assert statuses or error, "Give statuses or an error"
        with self._lock:
            self._plans[chain_id].append((error, statuses))

    def register_queue_id(self, queue_id: str, statuses: list[StatusPlanEntry]):
        """Pretend a batch was queued earlier, e.g. by a process that crashed."""
        with self._lock:
            self._statuses[queue_id] = statuses

    def set_balance(self, chain_id: int, wallet_address: str, value: int):
        self.balances[(chain_id, to_checksum_address(wallet_address))] = value

    def batches_for_chain(self, chain_id: int) -> list[SubmittedBatch]:
        with self._lock:
            return [b for b in self.submitted if b.chain_id == chain_id]

    def submit_transaction_batch(self, chain_id: int, wallet_address: HexAddress | str, calls: list[BatchCall]) -> str:
        with self._lock:
            plans = self._plans[chain_id]
            error, statuses = plans.pop(0) if plans else (None, None)
            if error is not None:
                raise error

            self._counter += 1
            queue_id = f"queue-{chain_id}-{self._counter}"
            self._statuses[queue_id] = statuses or [mined_status(make_tx_hash(queue_id))]
            self.submitted.append(SubmittedBatch(queue_id, chain_id, wallet_address, list(calls)))
            return queue_id

    def fetch_transaction_status(self, queue_id: str) -> TransactionStatus:
        with self._lock:
            plan = self._statuses[queue_id]
            entry = plan[min(self.status_queries[queue_id], len(plan) - 1)]
            self.status_queries[queue_id] += 1

        if isinstance(entry, Exception):
            raise entry
        return dataclasses.replace(entry, queue_id=queue_id)

    def fetch_token_balance(self, chain_id: int, token: HexAddress | str, wallet_address: HexAddress | str) -> TokenBalance:
        value = self.balances.get((chain_id, to_checksum_address(wallet_address)), 0)
        return TokenBalance(
            value=value,
            decimals=USDC_DECIMALS,
            display_value=from_raw_amount(value, USDC_DECIMALS),
            symbol="USDC",
        )


class FakeIrisAttestationService:
    """Scripted stand-in for :py:class:`~payroll_bridge.cctp.attestation.IrisAttestationService`.

    Responses are scripted per transaction hash with :py:meth:`script`,
    falling back to ``default_responses``. The last response repeats.
    """

    def __init__(self, default_responses: list[IrisResponse] | None = None):
        self.default_responses = default_responses or [None]
        self.requests: list[tuple[int, str]] = []
        self._responses: dict[str, list[IrisResponse]] = {}
        self._counts: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def script(self, transaction_hash: str, responses: list[IrisResponse]):
        assert responses, "Empty response script"
        self._responses[transaction_hash.lower()] = responses

    def fetch_messages(self, source_domain: int, transaction_hash: str) -> list[dict] | None:
        key = transaction_hash.lower()
        with self._lock:
            self.requests.append((source_domain, transaction_hash))
            responses = self._responses.get(key, self.default_responses)
            entry = responses[min(self._counts[key], len(responses) - 1)]
            self._counts[key] += 1

        if isinstance(entry, Exception):
            raise entry
        if entry is None:
            return None
        return [dict(m) for m in entry]
