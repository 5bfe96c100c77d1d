from __future__ import annotations

import json
import logging
from typing import Any

from fastapi.testclient import TestClient

from star_ledger.core.logging import JsonFormatter
from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.memory_store import MemoryLedgerStore
from star_ledger.ledger.records import ShopItem
from star_ledger.main import app


def test_json_formatter_includes_structured_fields() -> None:
    record = logging.LogRecord(
        name="stars.ledger.coordinator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="ledger.purchase.committed",
        args=(),
        exc_info=None,
    )
    record.child_id = "kid-1"
    record.item_id = "cap"
    record.amount = 5
    record.unrelated = "dropped"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "ledger.purchase.committed"
    assert payload["service"] == "star-ledger"
    assert payload["environment"] == "test"
    assert payload["child_id"] == "kid-1"
    assert payload["item_id"] == "cap"
    assert payload["amount"] == 5
    assert "unrelated" not in payload
    assert "request_id" not in payload


def test_decline_is_logged_with_reason(caplog: Any) -> None:
    coordinator = LedgerCoordinator(MemoryLedgerStore(), retry_backoff_seconds=0)
    coordinator.credit("kid-1", 10, "seed")
    item = ShopItem(id="cap", name="Cap", price=4)
    coordinator.purchase("kid-1", item)

    with caplog.at_level(logging.INFO, logger="stars.ledger.coordinator"):
        assert coordinator.purchase("kid-1", item) is False
        assert coordinator.debit("kid-1", 100, "too much") is False

    reasons = {record.getMessage(): record.reason for record in caplog.records}
    assert reasons == {
        "ledger.purchase.declined": "already_owned",
        "ledger.debit.declined": "insufficient_funds",
    }


def test_request_log_names_route_child_and_backend(caplog: Any) -> None:
    with TestClient(app) as client:
        with caplog.at_level(logging.INFO, logger="stars.api.request"):
            response = client.get("/stars/kid-7/balance", headers={"X-Request-Id": "req-7"})

    assert response.status_code == 200
    completed = [record for record in caplog.records if record.getMessage() == "request.completed"]
    assert len(completed) == 1
    record = completed[0]
    assert record.request_id == "req-7"
    assert record.route == "/stars/{child_id}/balance"
    assert record.child_id == "kid-7"
    assert record.backend == "memory"
    assert record.status_code == 200
