"""Elastic Smart Contracts: elasticity control for ledger-hosted analytics."""

__all__: list[str] = []
