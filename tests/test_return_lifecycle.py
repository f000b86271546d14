"""
Return lifecycle tests: create, track, retry-reset and reschedule against a scripted Ekart.
"""
import asyncio

import httpx
import pytest

from app.models import PICKUP_CANCELLED_STATUS
from app.services.ekart_errors import (
    AuthError,
    DuplicateShipmentError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotFoundError,
    RequestRejectedError,
    ServiceabilityError,
    TransportError,
    ValidationError,
)

from conftest import AUTH_URL, CREATE_URL, TRACK_URL, accepted, rejected


def snapshot(order):
    tracking = order.return_tracking
    return {
        "status": order.status,
        "ekart_response": order.ekart_response,
        "destination_pincode": order.destination_pincode,
        "current_status": tracking.current_status,
        "ekart_tracking_id": tracking.ekart_tracking_id,
        "retry_count": tracking.retry_count,
        "previous_tracking_id": tracking.previous_tracking_id,
        "history": [(e.seq, e.status, e.timestamp, e.previous_tracking_id) for e in tracking.history],
    }


def track_payload(tracking_id, *statuses):
    return {
        tracking_id: {
            "history": [{"status": s, "event_date": "2024-01-01"} for s in statuses],
            "delivered": statuses[0] == "Delivered" if statuses else False,
        }
    }


def sent_tracking_ids(fake_ekart):
    return [
        body["services"][0]["service_details"][0]["shipment"]["tracking_id"]
        for body in fake_ekart.json_bodies(CREATE_URL)
    ]


class TestCreateReturn:
    @pytest.mark.asyncio
    async def test_accepted_create(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        fake_ekart.create_responses = [accepted("X123")]

        result = await manager.create_return("1001")

        assert result == {"trackingId": "X123", "orderStatus": "RETURN_REQUESTED"}
        db_session.refresh(order)
        assert order.status == "RETURN_REQUESTED"
        assert order.return_tracking.ekart_tracking_id == "X123"
        assert order.return_tracking.current_status == "RETURN_REQUESTED"
        assert len(order.return_tracking.history) == 1
        assert order.return_tracking.history[0].status == "RETURN_REQUESTED"
        assert order.ekart_response == accepted("X123")

    @pytest.mark.asyncio
    async def test_create_sends_bearer_token_and_merchant_code(self, manager, make_order, fake_ekart):
        make_order("1001")
        fake_ekart.create_responses = [accepted("X123")]
        await manager.create_return("1001")
        request = fake_ekart.calls(CREATE_URL)[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["HTTP_X_MERCHANT_CODE"] == "IKK"

    @pytest.mark.asyncio
    async def test_token_reused_across_calls(self, manager, make_order, fake_ekart):
        make_order("1001")
        make_order("1002")
        fake_ekart.create_responses = [accepted("X1"), accepted("X2")]
        await manager.create_return("1001")
        await manager.create_return("1002")
        assert len(fake_ekart.calls(AUTH_URL)) == 1
        assert len(fake_ekart.calls(CREATE_URL)) == 2

    @pytest.mark.asyncio
    async def test_generated_tracking_id_used_when_not_echoed(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        fake_ekart.create_responses = [{"response": [{"status": "REQUEST_RECEIVED"}]}]
        result = await manager.create_return("1001")
        assert result["trackingId"] == sent_tracking_ids(fake_ekart)[0]
        assert result["trackingId"].startswith("CLTC001001")
        db_session.refresh(order)
        assert order.return_tracking.ekart_tracking_id == result["trackingId"]

    @pytest.mark.asyncio
    async def test_serviceability_rejection_leaves_order_unchanged(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        before = snapshot(order)
        fake_ekart.create_responses = [rejected("No vendor has pickup serviceability for pincode 560001")]

        with pytest.raises(ServiceabilityError) as exc:
            await manager.create_return("1001")

        assert exc.value.remediation
        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, error", [
        (rejected("Shipment already present for tracking id"), DuplicateShipmentError),
        ((400, rejected("No vendor has pickup serviceability")), ServiceabilityError),
        ((502, None), TransportError),
        (httpx.ReadTimeout("timed out"), TransportError),
        ({"unexpected": True}, RequestRejectedError),
    ])
    async def test_any_failed_create_is_zero_mutation(self, manager, make_order, fake_ekart, db_session, response, error):
        order = make_order("1001")
        before = snapshot(order)
        fake_ekart.create_responses = [response]

        with pytest.raises(error):
            await manager.create_return("1001")

        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    async def test_unauthorized_create_invalidates_token(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        fake_ekart.create_responses = [(401, {"message": "token expired"})]
        with pytest.raises(AuthError):
            await manager.create_return("1001")
        assert not manager.ekart.token_cache.is_valid
        db_session.refresh(order)
        assert order.status == "New"

    @pytest.mark.asyncio
    async def test_auth_failure_sends_no_create(self, manager, make_order, fake_ekart):
        make_order("1001")
        fake_ekart.auth_responses = [(403, {"message": "forbidden"})]
        with pytest.raises(AuthError):
            await manager.create_return("1001")
        assert fake_ekart.calls(CREATE_URL) == []

    @pytest.mark.asyncio
    async def test_missing_field_fails_before_courier_call(self, manager, make_order, fake_ekart):
        make_order("1001", hsn_code=None)
        with pytest.raises(ValidationError, match="hsn"):
            await manager.create_return("1001")
        assert fake_ekart.requests == []

    @pytest.mark.asyncio
    async def test_caller_fields_fill_gaps(self, manager, make_order, fake_ekart):
        make_order("1001", hsn_code=None)
        fake_ekart.create_responses = [accepted("X123")]
        await manager.create_return("1001", {"hsn": "6204"})
        item = fake_ekart.json_bodies(CREATE_URL)[0]["services"][0]["service_details"][0]["shipment"]["shipment_items"][0]
        assert item["hsn"] == "6204"

    @pytest.mark.asyncio
    async def test_destination_recorded_on_order(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        fake_ekart.create_responses = [accepted("X123")]
        await manager.create_return("1001", destination_overrides={"destination_pincode": "400001"})
        db_session.refresh(order)
        assert order.destination_pincode == "400001"
        assert order.destination_city == "Gurugram"

    @pytest.mark.asyncio
    async def test_unknown_order(self, manager, setup_database, fake_ekart):
        with pytest.raises(OrderNotFoundError):
            await manager.create_return("missing")
        assert fake_ekart.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("current_status", ["RETURN_REQUESTED", "In Transit", PICKUP_CANCELLED_STATUS])
    async def test_create_requires_no_existing_return(self, manager, make_order, fake_ekart, current_status):
        make_order("1001", current_status=current_status, tracking_id="X123")
        with pytest.raises(InvalidTransitionError) as exc:
            await manager.create_return("1001")
        assert exc.value.current_status == current_status
        assert fake_ekart.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_creates_on_one_order_call_ekart_once(self, manager, make_order, fake_ekart):
        make_order("1001")
        fake_ekart.create_responses = [accepted("X123")]
        results = await asyncio.gather(
            manager.create_return("1001"),
            manager.create_return("1001"),
            return_exceptions=True,
        )
        assert len(fake_ekart.calls(CREATE_URL)) == 1
        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        assert len(manager.locks) == 0


class TestTrackReturn:
    @pytest.mark.asyncio
    async def test_track_appends_latest_event(self, manager, make_order, fake_ekart, db_session):
        order = make_order(
            "1001",
            status="RETURN_REQUESTED",
            current_status="RETURN_REQUESTED",
            tracking_id="X123",
            history=["RETURN_REQUESTED"],
        )
        fake_ekart.track_responses = [track_payload("X123", "Delivered")]

        result = await manager.track_return("1001")

        assert result["currentStatus"] == "Delivered"
        assert len(result["history"]) == 2
        assert result["shipmentDetails"]["delivered"] is True
        db_session.refresh(order)
        assert order.status == "RETURN_REQUESTED"
        assert order.return_tracking.current_status == "Delivered"
        assert [e.status for e in order.return_tracking.history] == ["RETURN_REQUESTED", "Delivered"]
        body = fake_ekart.json_bodies(TRACK_URL)[0]
        assert body["tracking_ids"] == ["X123"]
        assert body["request_id"]

    @pytest.mark.asyncio
    async def test_history_is_append_only(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001", current_status="RETURN_REQUESTED", tracking_id="X123", history=["RETURN_REQUESTED"])
        fake_ekart.track_responses = [
            track_payload("X123", "Pickup Scheduled"),
            track_payload("X123", "Picked Up", "Pickup Scheduled"),
            track_payload("X123", "In Transit", "Picked Up", "Pickup Scheduled"),
        ]
        seen = snapshot(order)["history"]
        for _ in range(3):
            await manager.track_return("1001")
            db_session.refresh(order)
            now = snapshot(order)["history"]
            assert len(now) >= len(seen)
            assert now[:len(seen)] == seen
            seen = now
        assert [entry[1] for entry in seen] == ["RETURN_REQUESTED", "Pickup Scheduled", "Picked Up", "In Transit"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_status", ["New", "RETURN_REQUESTED", "InfoReceived"])
    async def test_track_never_changes_order_status(self, manager, make_order, fake_ekart, db_session, order_status):
        order = make_order("1001", status=order_status, current_status="RETURN_REQUESTED", tracking_id="X123")
        fake_ekart.track_responses = [track_payload("X123", PICKUP_CANCELLED_STATUS)]
        await manager.track_return("1001")
        db_session.refresh(order)
        assert order.status == order_status

    @pytest.mark.asyncio
    async def test_empty_courier_history_appends_nothing(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001", current_status="RETURN_REQUESTED", tracking_id="X123", history=["RETURN_REQUESTED"])
        fake_ekart.track_responses = [track_payload("X123")]
        result = await manager.track_return("1001")
        assert result["currentStatus"] == "RETURN_REQUESTED"
        db_session.refresh(order)
        assert len(order.return_tracking.history) == 1

    @pytest.mark.asyncio
    async def test_no_tracking_id(self, manager, make_order, fake_ekart):
        make_order("1001")
        with pytest.raises(NotFoundError, match="No Ekart tracking ID"):
            await manager.track_return("1001")
        assert fake_ekart.requests == []

    @pytest.mark.asyncio
    async def test_courier_has_no_entry(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001", current_status="RETURN_REQUESTED", tracking_id="X123")
        before = snapshot(order)
        fake_ekart.track_responses = [{"OTHER": {"history": []}}]
        with pytest.raises(NotFoundError):
            await manager.track_return("1001")
        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response, error", [
        (httpx.ReadTimeout("timed out"), TransportError),
        ((502, None), TransportError),
        ((500, {"message": "tracking service unavailable"}), RequestRejectedError),
        ((401, {"message": "token expired"}), AuthError),
    ])
    async def test_failed_poll_leaves_tracking_unchanged(self, manager, make_order, fake_ekart, db_session, response, error):
        order = make_order("1001", current_status="RETURN_REQUESTED", tracking_id="X123", history=["RETURN_REQUESTED"])
        before = snapshot(order)
        fake_ekart.track_responses = [response]

        with pytest.raises(error):
            await manager.track_return("1001")

        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    async def test_bulk_track_returns_raw_payload(self, manager, fake_ekart):
        payload = {**track_payload("A1", "In Transit"), **track_payload("B2", "Delivered")}
        fake_ekart.track_responses = [payload]
        assert await manager.bulk_track(["A1", "B2"]) == payload

    @pytest.mark.asyncio
    async def test_bulk_track_requires_ids(self, manager):
        with pytest.raises(ValidationError):
            await manager.bulk_track([])

    def test_stored_tracking_needs_no_courier(self, manager, make_order, fake_ekart):
        make_order("1001", current_status="RETURN_REQUESTED", tracking_id="X123", history=["RETURN_REQUESTED"])
        data = manager.get_tracking("1001")
        assert data["ekartTrackingId"] == "X123"
        assert data["currentStatus"] == "RETURN_REQUESTED"
        assert len(data["history"]) == 1
        assert fake_ekart.requests == []


class TestRetryFailedReturn:
    @pytest.mark.asyncio
    async def test_reset_after_cancelled_pickup(self, manager, make_order, fake_ekart, db_session):
        make_order(
            "1001",
            status="RETURN_REQUESTED",
            current_status=PICKUP_CANCELLED_STATUS,
            tracking_id="X123",
            history=["RETURN_REQUESTED", PICKUP_CANCELLED_STATUS],
        )

        order = await manager.retry_failed_return("1001")

        assert order.status == "New"
        tracking = order.return_tracking
        assert tracking.current_status == ""
        assert tracking.ekart_tracking_id == ""
        assert tracking.history == []
        assert tracking.retry_count == 0
        assert fake_ekart.requests == []

    @pytest.mark.asyncio
    async def test_reset_order_can_be_returned_again(self, manager, make_order, fake_ekart):
        make_order("1001", current_status=PICKUP_CANCELLED_STATUS, tracking_id="X123", history=[PICKUP_CANCELLED_STATUS])
        await manager.retry_failed_return("1001")
        fake_ekart.create_responses = [accepted("X999")]
        result = await manager.create_return("1001")
        assert result["trackingId"] == "X999"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("current_status", ["", "RETURN_REQUESTED", "In Transit", "Delivered", "reverse pickup cancelled"])
    async def test_reset_requires_cancelled_pickup(self, manager, make_order, db_session, current_status):
        order = make_order("1001", current_status=current_status, tracking_id="X123" if current_status else "")
        before = snapshot(order)
        with pytest.raises(InvalidTransitionError):
            await manager.retry_failed_return("1001")
        db_session.refresh(order)
        assert snapshot(order) == before


class TestReschedulePickup:
    @pytest.mark.asyncio
    async def test_reschedule_records_lineage(self, manager, make_order, fake_ekart, db_session):
        order = make_order(
            "1001",
            status="RETURN_REQUESTED",
            current_status=PICKUP_CANCELLED_STATUS,
            tracking_id="X123",
            history=["RETURN_REQUESTED", PICKUP_CANCELLED_STATUS],
        )
        fake_ekart.create_responses = [{"response": [{"status": "REQUEST_ACCEPTED"}]}]

        result = await manager.reschedule_pickup("1001")

        assert result["trackingId"] != "X123"
        assert result["trackingId"] == sent_tracking_ids(fake_ekart)[0]
        assert result["orderStatus"] == "RETURN_REQUESTED"
        assert result["retryCount"] == 1
        assert result["previousTrackingId"] == "X123"
        db_session.refresh(order)
        tracking = order.return_tracking
        assert tracking.current_status == "RETURN_REQUESTED"
        assert tracking.ekart_tracking_id == result["trackingId"]
        assert tracking.previous_attempt_cancelled is True
        assert tracking.cancelled_date is not None
        assert len(tracking.history) == 3
        assert tracking.history[-1].previous_tracking_id == "X123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("current_status", ["", "RETURN_REQUESTED", "In Transit", "Delivered", "Reverse Pickup Cancelled"])
    async def test_reschedule_requires_cancelled_pickup(self, manager, make_order, fake_ekart, db_session, current_status):
        order = make_order("1001", current_status=current_status, tracking_id="X123" if current_status else "")
        before = snapshot(order)
        with pytest.raises(InvalidTransitionError):
            await manager.reschedule_pickup("1001")
        assert fake_ekart.requests == []
        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    async def test_rejected_reschedule_leaves_order_unchanged(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001", current_status=PICKUP_CANCELLED_STATUS, tracking_id="X123", history=[PICKUP_CANCELLED_STATUS])
        before = snapshot(order)
        fake_ekart.create_responses = [rejected("No vendor has pickup serviceability")]
        with pytest.raises(ServiceabilityError):
            await manager.reschedule_pickup("1001", {"pincode": "560002"})
        db_session.refresh(order)
        assert snapshot(order) == before

    @pytest.mark.asyncio
    async def test_tracking_ids_distinct_across_cycles(self, manager, make_order, fake_ekart, db_session):
        order = make_order("1001")
        fake_ekart.create_responses = [{"response": [{"status": "REQUEST_ACCEPTED"}]}]
        ids = [(await manager.create_return("1001"))["trackingId"]]
        for _ in range(4):
            fake_ekart.track_responses = [track_payload(ids[-1], PICKUP_CANCELLED_STATUS)]
            await manager.track_return("1001")
            ids.append((await manager.reschedule_pickup("1001"))["trackingId"])

        assert len(set(ids)) == len(ids)
        assert sent_tracking_ids(fake_ekart) == ids
        db_session.refresh(order)
        assert order.return_tracking.retry_count == 4
        assert order.return_tracking.previous_tracking_id == ids[-2]
