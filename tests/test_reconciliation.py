"""
Ekart response interpretation tests
"""
from datetime import datetime, timezone

import pytest

from app.services.ekart_errors import NotFoundError, RequestRejectedError, ServiceabilityError, TransportError
from app.services.ekart_reconciliation import (
    accepted_tracking_id,
    latest_tracking_event,
    parse_create_response,
    parse_event_date,
    shipment_details,
    tracking_entry,
)


class TestCreateResponse:
    @pytest.mark.parametrize("status", ["REQUEST_ACCEPTED", "REQUEST_RECEIVED", "request_accepted"])
    def test_accepted_statuses(self, status):
        outcome = parse_create_response({"response": [{"status": status, "tracking_id": "X123"}]})
        assert outcome.accepted
        assert outcome.tracking_id == "X123"

    def test_echoed_tracking_id_preferred(self):
        data = {"response": [{"status": "REQUEST_ACCEPTED", "tracking_id": "X123"}]}
        assert accepted_tracking_id(data, "CLTC1") == "X123"

    def test_requested_tracking_id_when_not_echoed(self):
        data = {"response": [{"status": "REQUEST_RECEIVED"}]}
        assert accepted_tracking_id(data, "CLTC1") == "CLTC1"

    def test_rejection_is_classified(self):
        data = {"response": [{"status": "REQUEST_REJECTED", "message": ["No vendor has pickup serviceability"]}]}
        with pytest.raises(ServiceabilityError):
            accepted_tracking_id(data, "CLTC1")

    def test_empty_response_is_rejected(self):
        with pytest.raises(RequestRejectedError):
            accepted_tracking_id({"response": []}, "CLTC1")


class TestEventDate:
    def test_iso_date(self):
        assert parse_event_date("2024-01-01") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_epoch_millis(self):
        assert parse_event_date(1704067200000) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_epoch_seconds_as_string(self):
        assert parse_event_date("1704067200") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_garbage_uses_default(self):
        default = datetime(2020, 5, 5, tzinfo=timezone.utc)
        assert parse_event_date("not a date", default) == default


class TestTrackingPayload:
    def test_entry_lookup(self):
        assert tracking_entry({"X123": {"history": []}}, "X123") == {"history": []}

    def test_missing_entry_is_not_found(self):
        with pytest.raises(NotFoundError):
            tracking_entry({"OTHER": {}}, "X123")

    def test_non_dict_payload_is_transport_error(self):
        with pytest.raises(TransportError):
            tracking_entry(["X123"], "X123")

    def test_latest_event_is_first_history_entry(self):
        entry = {
            "history": [
                {"status": "Delivered", "event_date": "2024-01-02", "city": "Pune", "hub_name": "PNQ", "public_description": "Delivered to seller"},
                {"status": "In Transit", "event_date": "2024-01-01"},
            ]
        }
        event = latest_tracking_event(entry)
        assert event.status == "Delivered"
        assert event.city == "Pune"
        assert event.hub_name == "PNQ"
        assert event.description == "Delivered to seller"
        assert event.timestamp == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_no_history_means_no_event(self):
        assert latest_tracking_event({"history": []}) is None
        assert latest_tracking_event({}) is None

    def test_shipment_details(self):
        details = shipment_details({"delivered": False, "shipment_value": 1499, "current_hub": "BLR"})
        assert details == {
            "delivered": False,
            "shipment_value": 1499,
            "current_hub": "BLR",
            "expected_delivery_date": None,
        }
