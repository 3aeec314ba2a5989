from __future__ import annotations

import pytest

from fetchbridge.config import LedgerConfig, RelayerConfig
from fetchbridge.ledger import Ledger

CONTRACT = "fetcher.test"
RELAYER = "relayer.test"
ALICE = "alice.test"


@pytest.fixture()
def ledger_config() -> LedgerConfig:
    return LedgerConfig(contract_id=CONTRACT, trusted_relayer=RELAYER)


@pytest.fixture()
def ledger(ledger_config: LedgerConfig) -> Ledger:
    # No scheduler: continuations only time out when a test expires them.
    return Ledger(ledger_config)


@pytest.fixture()
def relayer_config() -> RelayerConfig:
    return RelayerConfig(
        rpc_url="http://ledger.test",
        contract_id=CONTRACT,
        relayer_id=RELAYER,
        secret_key="relayer-key",
        poll_interval_secs=1,
    )
