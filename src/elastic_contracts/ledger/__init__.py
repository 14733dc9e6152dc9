"""Ledger adapter interface + local adapter."""

from .adapter import EventListener, LedgerAdapter, LedgerEvent, LedgerNetwork, TransactionError, decode_result
from .chaincode import register_analytics_chaincode
from .local import ContractContext, LocalLedger, LocalNetwork

__all__ = [
    "ContractContext",
    "EventListener",
    "LedgerAdapter",
    "LedgerEvent",
    "LedgerNetwork",
    "LocalLedger",
    "LocalNetwork",
    "TransactionError",
    "decode_result",
    "register_analytics_chaincode",
]
