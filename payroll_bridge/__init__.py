"""Cross-chain USDC payroll over Circle CCTP V2.

- :py:mod:`payroll_bridge.cctp` drives burn, attestation and mint for one or many recipients
- :py:mod:`payroll_bridge.engine` talks to the backend wallet engine that holds the keys
"""
