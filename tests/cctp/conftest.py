"""Shared fixtures for CCTP payroll tests."""

import pytest

from payroll_bridge.cctp.attestation import AttestationPollingConfig
from payroll_bridge.cctp.receive import ReceiveRetryConfig
from payroll_bridge.cctp.testing import FakeIrisAttestationService, FakeWalletEngine
from payroll_bridge.cctp.transaction_status import TransactionPollingConfig


@pytest.fixture()
def engine() -> FakeWalletEngine:
    return FakeWalletEngine()


@pytest.fixture()
def iris() -> FakeIrisAttestationService:
    return FakeIrisAttestationService()


@pytest.fixture()
def transaction_polling() -> TransactionPollingConfig:
    return TransactionPollingConfig.create_test_config()


@pytest.fixture()
def attestation_polling() -> AttestationPollingConfig:
    return AttestationPollingConfig.create_test_config()


@pytest.fixture()
def receive_retry() -> ReceiveRetryConfig:
    return ReceiveRetryConfig.create_test_config()


@pytest.fixture()
def short_transaction_polling() -> TransactionPollingConfig:
    """Times out almost immediately."""
    return TransactionPollingConfig(settle_delay=0.0, poll_interval=0.01, timeout=0.05)


@pytest.fixture()
def short_attestation_polling() -> AttestationPollingConfig:
    """Times out almost immediately."""
    return AttestationPollingConfig(poll_interval=0.01, timeout=0.05)
