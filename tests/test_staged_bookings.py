from datetime import timedelta

import pytest

from parcelbook.errors import InvalidArgument
from parcelbook.models import StagedBooking
from parcelbook.domain.staged_bookings.repository import StagedBookingRepository, staged_id_for
from parcelbook.shared.clock import utcnow

PAYLOAD = {
    "pickup": {"city": "Bengaluru"},
    "drop": {"city": "Mumbai"},
    "parcelDetails": {"type": "box", "weight": 2},
    "paymentMethod": "online",
}


def test_staged_id_is_storage_safe():
    assert staged_id_for("TMP-user1-1700000000000-abc123") == "stg_TMP-user1-1700000000000-abc123"
    assert staged_id_for("TMP/odd ref.1") == "stg_TMP_odd_ref_1"


def test_stage_and_read_back(db):
    staged_id = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 944, "TMP-a-1")
    staged = StagedBookingRepository.get(db, "TMP-a-1")
    assert staged.id == staged_id
    assert staged.fare == 944
    assert staged.payload["drop"]["city"] == "Mumbai"
    assert staged.booking_id is None


def test_stage_requires_booking_details(db):
    with pytest.raises(InvalidArgument):
        StagedBookingRepository.stage(db, "user-1", {"pickup": {"city": "X"}}, 100, "TMP-a-2")


@pytest.mark.parametrize("fare", [None, 0, -10])
def test_stage_requires_positive_fare(db, fare):
    with pytest.raises(InvalidArgument):
        StagedBookingRepository.stage(db, "user-1", PAYLOAD, fare, "TMP-a-3")


def test_expired_records_read_as_absent(db):
    staged_id = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-a-4", ttl_seconds=60)
    staged = db.query(StagedBooking).filter(StagedBooking.id == staged_id).one()
    staged.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    assert StagedBookingRepository.get(db, "TMP-a-4") is None
    assert StagedBookingRepository.get_by_id(db, staged_id) is None


def test_claim_succeeds_only_once(db):
    staged_id = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-a-5")
    assert StagedBookingRepository.claim(db, staged_id) is True
    db.commit()
    assert StagedBookingRepository.claim(db, staged_id) is False


def test_attach_and_delete(db):
    staged_id = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-a-6")
    StagedBookingRepository.attach_booking_id(db, staged_id, "PBS-16-10-2026-001")
    db.expire_all()
    assert StagedBookingRepository.get_by_id(db, staged_id).booking_id == "PBS-16-10-2026-001"

    assert StagedBookingRepository.delete(db, staged_id) is True
    assert StagedBookingRepository.delete(db, staged_id) is False


def test_purge_expired_keeps_live_records(db):
    live = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-live")
    stale = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-stale")
    row = db.query(StagedBooking).filter(StagedBooking.id == stale).one()
    row.expires_at = utcnow() - timedelta(minutes=5)
    db.commit()

    assert StagedBookingRepository.purge_expired(db) == 1
    db.expire_all()
    assert db.query(StagedBooking).filter(StagedBooking.id == live).count() == 1
    assert db.query(StagedBooking).filter(StagedBooking.id == stale).count() == 0


def test_purge_expired_removes_materialized_leftovers(db):
    staged_id = StagedBookingRepository.stage(db, "user-1", PAYLOAD, 100, "TMP-done")
    StagedBookingRepository.attach_booking_id(db, staged_id, "PBS-16-10-2026-004")
    row = db.query(StagedBooking).filter(StagedBooking.id == staged_id).one()
    row.expires_at = utcnow() - timedelta(minutes=5)
    db.commit()

    assert StagedBookingRepository.purge_expired(db) == 1
    assert db.query(StagedBooking).count() == 0
