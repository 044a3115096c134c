"""Payroll transfer orchestration.

:py:class:`PayrollTransfer` drives one transfer from one source chain to
any number of recipients on any number of destination chains:

1. **Submit** - one atomic approve + burn batch covering every recipient
2. **Burn confirmation** - poll the wallet engine until the batch is mined
3. **Attestation** - poll Iris until every burn message is signed
4. **Receive** - one ``receiveMessage()`` batch per destination chain,
   destination chains in parallel
5. **Completed** - every recipient has the mint hash of its chain's batch

Steps 1-3 are never retried here: a failed or timed out burn is terminal
for the transfer. Step 4 has its own retry policy in
:py:func:`~payroll_bridge.cctp.receive.submit_receipt`.

Destination chain groups are failure-isolated. If minting fails on one
chain, recipients already completed on another stay completed; the
transfer as a whole ends ``failed``.

Example::

    from payroll_bridge.cctp.attestation import IrisAttestationService
    from payroll_bridge.cctp.recipient import Recipient
    from payroll_bridge.cctp.transfer import PayrollTransfer
    from payroll_bridge.engine.api import WalletEngine
    from payroll_bridge.engine.session import create_engine_session

    transfer = PayrollTransfer(
        engine=WalletEngine(create_engine_session(access_token=token)),
        iris=IrisAttestationService(),
        source_chain="ethereum-sepolia",
        initiator_address=wallet,
        recipients=[
            Recipient(chain="base-sepolia", address=alice, amount=1_000_000),
            Recipient(chain="avalanche-fuji", address=bob, amount=2_500_000),
        ],
    )

    # Blocks until completed or failed; call transfer.cancel() from another thread to abort
    state = transfer.run()
    for address, recipient_state in state.recipients.items():
        print(address, recipient_state.status.value, recipient_state.mint_tx_hash)
"""

import copy
import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from eth_typing import HexAddress
from eth_utils import to_checksum_address
from tqdm_loggable.auto import tqdm

from payroll_bridge.cctp.attestation import (
    AttestationPollingConfig,
    CCTPAttestation,
    IrisAttestationService,
    wait_for_attestations,
)
from payroll_bridge.cctp.burn import submit_burn_batch
from payroll_bridge.cctp.calls import BatchCall
from payroll_bridge.cctp.constants import get_chain_endpoint
from payroll_bridge.cctp.errors import CCTPTransferError, FailureKind
from payroll_bridge.cctp.receive import ReceiveRetryConfig, submit_receipt
from payroll_bridge.cctp.recipient import Recipient
from payroll_bridge.cctp.transaction_status import TransactionPollingConfig, wait_for_transaction
from payroll_bridge.engine.api import WalletEngine

logger = logging.getLogger(__name__)


class TransferStage(enum.Enum):
    """Stage of a whole transfer."""

    idle = "idle"
    submitting = "submitting"
    awaiting_burn_confirmation = "awaiting_burn_confirmation"
    awaiting_attestation = "awaiting_attestation"
    receiving = "receiving"
    completed = "completed"
    failed = "failed"


class RecipientStatus(enum.Enum):
    """Per-recipient view of :py:class:`TransferStage`."""

    idle = "idle"
    processing = "processing"
    waiting_for_attestation = "waiting_for_attestation"
    receiving = "receiving"
    completed = "completed"
    failed = "failed"


#: Recipient statuses that are never overwritten
TERMINAL_RECIPIENT_STATUSES = frozenset({RecipientStatus.completed, RecipientStatus.failed})


@dataclass(slots=True)
class RecipientState:
    """Progress of one recipient."""

    #: The payout this state is for
    recipient: Recipient

    status: RecipientStatus = RecipientStatus.idle

    #: Human-readable progress or error message
    message: str = "Waiting to start"

    #: Burn transaction, shared by all recipients of the transfer
    burn_tx_hash: str | None = None

    #: Mint transaction, shared by all recipients on the same destination chain
    mint_tx_hash: str | None = None

    #: Set when ``status`` is ``failed``
    failure_kind: FailureKind | None = None


@dataclass(slots=True)
class TransferState:
    """Snapshot of a transfer.

    :py:attr:`recipients` holds exactly one entry per recipient
    from the moment the transfer is created.
    """

    stage: TransferStage

    #: Checksummed recipient address → state
    recipients: dict[str, RecipientState]

    #: Wallet engine queue id of the burn batch
    burn_submission_id: str | None = None

    #: Burn transaction hash once confirmed
    burn_tx_hash: str | None = None

    #: Destination chains being minted on, in recipient order
    receiving_chains: list[str] = field(default_factory=list)

    #: Destination chain key → confirmed mint transaction hash
    mint_tx_hashes: dict[str, str] = field(default_factory=dict)

    #: Error message when ``stage`` is ``failed``
    error: str | None = None

    failure_kind: FailureKind | None = None

    @property
    def is_finished(self) -> bool:
        return self.stage in (TransferStage.completed, TransferStage.failed)


def group_recipients_by_chain(recipients: list[Recipient]) -> dict[str, list[tuple[int, Recipient]]]:
    """Group recipients by destination chain.

    Each recipient keeps its position in the burn batch, which is also
    the position of its attestation.

    :return:
        Chain key → ``(burn position, recipient)`` pairs.
        Chains in order of first appearance.
    """
    groups: dict[str, list[tuple[int, Recipient]]] = {}
    for idx, recipient in enumerate(recipients):
        groups.setdefault(recipient.chain, []).append((idx, recipient))
    return groups


class PayrollTransfer:
    """One burn-and-mint payroll run.

    - :py:meth:`run` executes the saga in the calling thread
    - :py:meth:`snapshot` can be called from any thread for progress display
    - :py:meth:`cancel` requests a cooperative abort; polling loops notice it
      on their next iteration

    A transfer runs once. Create a new instance for a new run.
    """

    def __init__(
        self,
        engine: WalletEngine,
        iris: IrisAttestationService,
        source_chain: str,
        initiator_address: HexAddress | str,
        recipients: list[Recipient],
        extra_calls: list[BatchCall] | None = None,
        transaction_polling: TransactionPollingConfig | None = None,
        attestation_polling: AttestationPollingConfig | None = None,
        receive_retry: ReceiveRetryConfig | None = None,
        max_workers: int | None = None,
        progress: bool = False,
    ):
        """
        :param engine:
            Wallet engine client used on every chain.

        :param iris:
            Attestation service client.

        :param source_chain:
            Chain key to burn on.

        :param initiator_address:
            Backend wallet that burns on the source chain and relays on the destinations.

        :param recipients:
            Non-empty list of payouts with distinct addresses.

        :param extra_calls:
            Appended to the burn batch. Must not emit CCTP messages.

        :param max_workers:
            Destination chains minted in parallel. Defaults to all of them.

        :param progress:
            Show a ``tqdm`` progress bar.

        :raise ValueError:
            On empty or duplicate recipients.
        """
        if not recipients:
            raise ValueError("A transfer needs at least one recipient")

        recipient_states: dict[str, RecipientState] = {}
        for recipient in recipients:
            key = to_checksum_address(recipient.address)
            if key in recipient_states:
                raise ValueError(f"Duplicate recipient address {key}")
            recipient_states[key] = RecipientState(recipient=recipient)

        self.engine = engine
        self.iris = iris
        self.source_chain = source_chain
        self.initiator_address = initiator_address
        self.recipients = list(recipients)
        self.extra_calls = extra_calls
        self.transaction_polling = transaction_polling
        self.attestation_polling = attestation_polling
        self.receive_retry = receive_retry
        self.max_workers = max_workers
        self.progress = progress

        self._state = TransferState(stage=TransferStage.idle, recipients=recipient_states)
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._started = False
        self._progress_bar = None

    def __repr__(self) -> str:
        return f"<PayrollTransfer {self.source_chain} → {len(self.recipients)} recipients, stage {self._state.stage.value}>"

    def snapshot(self) -> TransferState:
        """Consistent deep copy of the current state."""
        with self._lock:
            return copy.deepcopy(self._state)

    def cancel(self):
        """Ask the running transfer to stop at its next poll iteration."""
        logger.info("Cancel requested for %r", self)
        self._cancel_event.set()

    def is_active(self) -> bool:
        """Cancel check handed to the pollers."""
        return not self._cancel_event.is_set()

    def _set_stage(self, stage: TransferStage, recipient_status: RecipientStatus, message: str):
        logger.info("Transfer stage %s → %s: %s", self._state.stage.value, stage.value, message)
        with self._lock:
            self._state.stage = stage
            for recipient_state in self._state.recipients.values():
                if recipient_state.status not in TERMINAL_RECIPIENT_STATUSES:
                    recipient_state.status = recipient_status
                    recipient_state.message = message

    def _update_recipient(self, address: str, **changes):
        """Update one recipient entry in place.

        Parallel mint threads only ever touch their own recipients,
        and never replace the whole map.
        """
        with self._lock:
            recipient_state = self._state.recipients[to_checksum_address(address)]
            for name, value in changes.items():
                setattr(recipient_state, name, value)

    def _advance_progress(self, description: str):
        if self._progress_bar is not None:
            self._progress_bar.update(1)
            self._progress_bar.set_description(description)

    def _fail(self, error: CCTPTransferError):
        logger.error("Transfer failed at stage %s: %s", self._state.stage.value, error)
        with self._lock:
            self._state.stage = TransferStage.failed
            self._state.error = str(error)
            self._state.failure_kind = error.kind
            for recipient_state in self._state.recipients.values():
                if recipient_state.status not in TERMINAL_RECIPIENT_STATUSES:
                    recipient_state.status = RecipientStatus.failed
                    recipient_state.message = f"Failed: {error}"
                    recipient_state.failure_kind = error.kind

    def run(
        self,
        burn_submission_id: str | None = None,
        burn_tx_hash: str | None = None,
    ) -> TransferState:
        """Run the transfer to a terminal stage.

        To resume after a restart, pass what is already known and
        the completed stages are skipped:

        - ``burn_submission_id`` - the burn batch was submitted, wait for it
        - ``burn_tx_hash`` - the burn is confirmed, go straight to attestation

        :return:
            Final state, ``completed`` or ``failed``. Typed failures
            end up in :py:attr:`TransferState.error`, they are not raised.
        """
        assert not self._started, f"{self!r} has already been run"
        self._started = True

        groups = group_recipients_by_chain(self.recipients)
        self._progress_bar = tqdm(
            total=3 + len(groups),
            desc="CCTP payroll",
            unit="step",
            disable=not self.progress,
        )

        try:
            attestations = self._burn_and_attest(burn_submission_id, burn_tx_hash)
            if attestations is not None:
                self._receive(groups, attestations)
        finally:
            self._progress_bar.close()
            self._progress_bar = None

        return self.snapshot()

    def _burn_and_attest(self, burn_submission_id: str | None, burn_tx_hash: str | None) -> list[CCTPAttestation] | None:
        """Steps 1-3. Returns ``None`` if the transfer failed."""
        try:
            source = get_chain_endpoint(self.source_chain)

            if burn_tx_hash is None:
                if burn_submission_id is None:
                    self._set_stage(TransferStage.submitting, RecipientStatus.processing, "Submitting approval and burn batch")
                    burn_submission_id = submit_burn_batch(
                        self.engine,
                        self.source_chain,
                        self.initiator_address,
                        self.recipients,
                        self.extra_calls,
                    )
                else:
                    logger.info("Resuming with burn submission %s", burn_submission_id)

                with self._lock:
                    self._state.burn_submission_id = burn_submission_id
                self._advance_progress("Burn submitted")

                self._set_stage(TransferStage.awaiting_burn_confirmation, RecipientStatus.processing, "Waiting for burn confirmation")
                burn_tx_hash = wait_for_transaction(self.engine, burn_submission_id, self.transaction_polling, self.is_active)
            else:
                logger.info("Resuming with confirmed burn %s", burn_tx_hash)
                self._advance_progress("Burn submitted")

            with self._lock:
                self._state.burn_tx_hash = burn_tx_hash
                for recipient_state in self._state.recipients.values():
                    recipient_state.burn_tx_hash = burn_tx_hash
            self._advance_progress("Burn confirmed")

            self._set_stage(TransferStage.awaiting_attestation, RecipientStatus.waiting_for_attestation, "Waiting for attestation")

            def on_phase(phase: str, attempt: int):
                message = f"Waiting for attestation: {phase.replace('_', ' ')}, poll {attempt}"
                for recipient in self.recipients:
                    self._update_recipient(recipient.address, message=message)

            attestations = wait_for_attestations(
                self.iris,
                source.domain,
                burn_tx_hash,
                config=self.attestation_polling,
                cancel_check=self.is_active,
                expected_count=len(self.recipients),
                on_phase_change=on_phase,
            )
            self._advance_progress("Attested")
            return attestations

        except CCTPTransferError as e:
            self._fail(e)
            return None

    def _receive(self, groups: dict[str, list[tuple[int, Recipient]]], attestations: list[CCTPAttestation]):
        """Step 4-5. Mint per destination chain, chains in parallel."""
        assert len(attestations) == len(self.recipients), f"Got {len(attestations)} attestations for {len(self.recipients)} recipients"

        with self._lock:
            self._state.stage = TransferStage.receiving
            self._state.receiving_chains = list(groups)

        for chain, members in groups.items():
            for _, recipient in members:
                self._update_recipient(recipient.address, status=RecipientStatus.receiving, message=f"Minting on {chain}")

        logger.info("Minting on %d destination chains: %s", len(groups), ", ".join(groups))

        def _receive_group(chain: str, members: list[tuple[int, Recipient]]) -> str:
            threading.current_thread().name = f"cctp-receive-{chain}"
            try:
                tx_hash = submit_receipt(
                    self.engine,
                    chain,
                    self.initiator_address,
                    [attestations[idx] for idx, _ in members],
                    cancel_check=self.is_active,
                    retry_config=self.receive_retry,
                    polling_config=self.transaction_polling,
                )
            except CCTPTransferError as e:
                for _, recipient in members:
                    self._update_recipient(
                        recipient.address,
                        status=RecipientStatus.failed,
                        message=f"Failed: {e}",
                        failure_kind=e.kind,
                    )
                raise

            with self._lock:
                self._state.mint_tx_hashes[chain] = tx_hash
            for _, recipient in members:
                self._update_recipient(
                    recipient.address,
                    status=RecipientStatus.completed,
                    message=f"Minted on {chain}",
                    mint_tx_hash=tx_hash,
                )
            return tx_hash

        failures: dict[str, CCTPTransferError] = {}
        max_workers = self.max_workers or len(groups)
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cctp-receive") as executor:
            futures = {executor.submit(_receive_group, chain, members): chain for chain, members in groups.items()}
            for future in as_completed(futures):
                chain = futures[future]
                try:
                    future.result()
                except CCTPTransferError as e:
                    logger.error("Mint on %s failed: %s", chain, e)
                    failures[chain] = e
                self._advance_progress(f"Minted on {chain}")

        with self._lock:
            if failures:
                failed_chains = [c for c in groups if c in failures]
                first_error = failures[failed_chains[0]]
                self._state.stage = TransferStage.failed
                self._state.error = f"Mint failed on {', '.join(failed_chains)}: {first_error}"
                self._state.failure_kind = first_error.kind
            else:
                self._state.stage = TransferStage.completed

        logger.info("Transfer finished: %s", self._state.stage.value)
