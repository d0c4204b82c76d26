"""Unit tests for the data-update event decoder."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from fleetsync.services.event_parser import (
    EntityType, EventDecodeError, describe_event, parse_data_update,
)


class TestDataUpdateParsing:
    def test_socket_payload(self):
        event = parse_data_update({
            "entityType": "reservations",
            "action": "updated",
            "data": {"id": 12, "vehicleId": 7, "customerId": 3},
            "timestamp": "2025-10-17T09:00:00Z",
        })
        assert event.entity is EntityType.RESERVATIONS
        assert event.action == "updated"
        assert event.entity_id == 12
        assert event.vehicle_id == 7
        assert event.customer_id == 3
        assert event.timestamp.year == 2025
        assert '"entityType"' in event.raw_payload

    def test_raw_json_bytes(self):
        event = parse_data_update(b'{"entityType": "expenses", "action": "created", "data": {"id": 42, "vehicleId": 7}}')
        assert event.entity is EntityType.EXPENSES
        assert event.entity_id == 42
        assert event.vehicle_id == 7

    def test_numeric_string_ids(self):
        event = parse_data_update({"entityType": "documents", "action": "deleted", "data": {"id": "5", "vehicleId": "9"}})
        assert event.entity_id == 5
        assert event.vehicle_id == 9

    def test_fractional_ids_rejected(self):
        event = parse_data_update({"entityType": "expenses", "action": "updated",
                                   "data": {"id": 7.9, "vehicleId": 7.0, "customerId": "3.5"}})
        assert event.entity_id is None
        assert event.vehicle_id == 7
        assert event.customer_id is None

    def test_missing_data_is_empty(self):
        event = parse_data_update({"entityType": "users", "action": "created"})
        assert event.data == {}
        assert event.entity_id is None
        assert event.vehicle_id is None

    def test_unknown_entity_type_kept(self):
        event = parse_data_update({"entityType": "maintenance", "action": "updated", "data": {"id": 1}})
        assert event.entity is None
        assert event.entity_type == "maintenance"

    def test_bad_timestamp_ignored(self):
        event = parse_data_update({"entityType": "users", "action": "updated", "timestamp": "yesterday"})
        assert event.timestamp is None

    def test_missing_entity_type_rejected(self):
        with pytest.raises(EventDecodeError):
            parse_data_update({"action": "updated"})

    def test_non_json_rejected(self):
        with pytest.raises(EventDecodeError):
            parse_data_update(b"<xml/>")

    def test_non_object_rejected(self):
        with pytest.raises(EventDecodeError):
            parse_data_update("[1, 2]")


class TestDescribeEvent:
    def test_update_with_name(self):
        event = parse_data_update({"entityType": "vehicles", "action": "updated", "data": {"id": 1, "name": "AB-123-C"}})
        assert describe_event(event) == "vehicle updated: AB-123-C"

    def test_created_reads_added(self):
        event = parse_data_update({"entityType": "reservations", "action": "created", "data": {"id": 1}})
        assert describe_event(event) == "reservation added"

    def test_deleted_reads_removed(self):
        event = parse_data_update({"entityType": "customers", "action": "deleted"})
        assert describe_event(event) == "customer removed"
