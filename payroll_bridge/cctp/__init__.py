"""Circle CCTP V2 burn-and-mint transfer orchestration.

The flow for one transfer:

1. :py:func:`~payroll_bridge.cctp.burn.submit_burn_batch` - approve + one ``depositForBurn()`` per recipient,
   submitted as a single atomic batch through the wallet engine
2. :py:func:`~payroll_bridge.cctp.transaction_status.wait_for_transaction` - wait for the burn to be mined
3. :py:func:`~payroll_bridge.cctp.attestation.wait_for_attestations` - wait until Iris signs every burn message
4. :py:func:`~payroll_bridge.cctp.receive.submit_receipt` - ``receiveMessage()`` batch per destination chain

:py:class:`~payroll_bridge.cctp.transfer.PayrollTransfer` sequences the steps and keeps
a per-recipient status projection.
"""
