"""Backend wallet engine client.

The engine holds the keys of smart-account wallets and executes
atomic transaction batches on their behalf. We only need a wallet
address and the submit/status endpoints.
"""
