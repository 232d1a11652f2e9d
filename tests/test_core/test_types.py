"""Tests for stockly/core/types.py — alert normalisation, state serialisation."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from stockly.core.types import (
    Alert,
    AlertDirection,
    AlertStateSnapshot,
    AlertStatus,
    DeliveryRecord,
    DeliveryStatus,
)


class TestAlert:
    def test_symbol_is_uppercased_and_stripped(self) -> None:
        alert = Alert(id="a1", symbol="  aapl ", direction="above", threshold=190)
        assert alert.symbol == "AAPL"

    def test_defaults(self) -> None:
        alert = Alert(id="a1", symbol="MSFT", direction=AlertDirection.BELOW, threshold=300)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.target == ""
        assert alert.user_id is None

    def test_unknown_direction_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Alert(id="a1", symbol="MSFT", direction="sideways", threshold=300)

    def test_frozen(self) -> None:
        alert = Alert(id="a1", symbol="MSFT", direction="above", threshold=300)
        with pytest.raises(ValidationError):
            alert.threshold = 10  # type: ignore[misc]


class TestAlertStateSnapshot:
    def test_json_uses_camel_case_keys(self) -> None:
        snap = AlertStateSnapshot(
            last_condition_met=True,
            last_price=191.5,
            last_triggered_at=1_700_000_000_000,
        )
        payload = json.loads(snap.to_json())
        assert payload == {
            "lastConditionMet": True,
            "lastPrice": 191.5,
            "lastTriggeredAt": 1_700_000_000_000,
        }

    def test_json_omits_unset_optionals(self) -> None:
        payload = json.loads(AlertStateSnapshot().to_json())
        assert payload == {"lastConditionMet": False}

    def test_from_json_reads_camel_case(self) -> None:
        snap = AlertStateSnapshot.from_json('{"lastConditionMet": true, "lastPrice": 12.5}')
        assert snap.last_condition_met is True
        assert snap.last_price == 12.5
        assert snap.last_triggered_at is None

    def test_from_json_rejects_garbage(self) -> None:
        with pytest.raises(ValidationError):
            AlertStateSnapshot.from_json("not json")


class TestDeliveryRecord:
    def test_sent_at_defaults_to_now(self) -> None:
        rec = DeliveryRecord(
            id="a1_1_1",
            alert_id="a1",
            symbol="AAPL",
            threshold=190,
            price=191,
            direction=AlertDirection.ABOVE,
            push_token="tok",
            status=DeliveryStatus.SUCCESS,
        )
        assert rec.sent_at.endswith("+00:00")
        assert rec.attempt_count == 1
