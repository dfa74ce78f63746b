"""Tests for json_serializer."""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from fabric_api.lro import OperationState, OperationStatus
from fabric_core.utils.json_serializers import json_serializer


def test_known_types():
    assert json_serializer(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == (
        "2024-01-02T03:04:05+00:00"
    )
    assert json_serializer(timedelta(minutes=5)) == 300.0
    assert json_serializer(Decimal("1.5")) == 1.5
    assert json_serializer(Path("logs/fabric.log")) == str(Path("logs/fabric.log"))


def test_enum_uses_value():
    assert json.dumps({"s": OperationStatus.RUNNING}, default=json_serializer) == '{"s": "Running"}'


def test_fallback_to_str():
    class Opaque:
        def __str__(self):
            return "opaque"

    assert json_serializer(Opaque()) == "opaque"


def test_pydantic_model_uses_wire_names():
    state = OperationState.from_body({"id": "op-1", "status": "Running", "percentComplete": 10})
    assert json_serializer(state) == {"id": "op-1", "status": "Running", "percentComplete": 10.0}


def test_sets_are_sorted_lists():
    assert json_serializer({"b", "a"}) == ["a", "b"]
