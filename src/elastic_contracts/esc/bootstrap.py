"""One-off ledger storage initialisation for configured chaincodes."""

from __future__ import annotations

import logging
from typing import Sequence

from elastic_contracts.ledger import LedgerNetwork, decode_result

from .config import EscConfig


logger = logging.getLogger("elastic_contracts.esc.bootstrap")


async def bootstrap_storage(network: LedgerNetwork, configs: Sequence[EscConfig]) -> dict[str, list[str]]:
    """Create data and calculation storage once per distinct chaincode.

    Returns the contracts submitted per chaincode name.
    """
    done: dict[str, list[str]] = {}
    for config in configs:
        if config.chaincode_name in done:
            continue
        ledger = network.contract(config.chaincode_name)
        submitted: list[str] = []
        for contract in (config.data_storage_contract, config.calculation_storage_contract):
            raw = await ledger.submit_transaction(contract)
            logger.info(
                "Chaincode %s: %s -> %s",
                config.chaincode_name,
                contract,
                decode_result(raw),
            )
            submitted.append(contract)
        done[config.chaincode_name] = submitted
    return done
