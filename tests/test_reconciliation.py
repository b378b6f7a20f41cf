import asyncio
import threading
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from parcelbook.database import Base
from parcelbook.domain.bookings import state_machine as sm
from parcelbook.domain.bookings.schemas import BookingCreate
from parcelbook.domain.bookings.service import BookingService
from parcelbook.domain.payments.merchant_reference import (
    KIND_BOOKING,
    KIND_STAGED,
    new_booking_reference,
    new_staged_reference,
)
from parcelbook.domain.payments.reconciliation import PaymentReconciler
from parcelbook.domain.payments.repository import PaymentAttemptRepository
from parcelbook.domain.pricing.schemas import CouponCreate
from parcelbook.domain.pricing.service import PricingService
from parcelbook.domain.staged_bookings.repository import StagedBookingRepository
from parcelbook.errors import InternalError, NotFound
from parcelbook.models import Booking, Coupon, PaymentOutbox, StagedBooking
from parcelbook.shared.background import drain_pending_tasks
from parcelbook.shared.clock import utcnow


@pytest.fixture
def reconciler(db, notifier):
    return PaymentReconciler(db, notifier, delete_grace_seconds=0)


def stage_payment(db, booking_data, customer, coupon_code=None):
    """Stage booking data for an online payment and open its payment attempt"""
    data = BookingCreate(**{**booking_data, "paymentMethod": "online"})
    reference = new_staged_reference(customer.uid)
    staged_id = StagedBookingRepository.stage(
        db, customer.uid, data.payload(), data.fare, reference.value, coupon_code
    )
    PaymentAttemptRepository.create_attempt(
        db, reference.value, KIND_STAGED, customer.uid, data.fare, staged_booking_id=staged_id
    )
    return reference.value


@pytest.fixture
def staged_payment(db, booking_data, customer):
    return stage_payment(db, booking_data, customer)


@pytest.fixture
def unpaid_booking(db, booking_data, customer):
    booking = BookingService(db).create_booking(BookingCreate(**booking_data), customer)
    reference = new_booking_reference(booking.id)
    PaymentAttemptRepository.create_attempt(
        db, reference.value, KIND_BOOKING, customer.uid, booking.fare, booking_id=booking.id
    )
    return booking, reference.value


class TestStagedPayments:
    async def test_success_creates_paid_booking(self, db, reconciler, staged_payment, notifier):
        result = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS, gateway_reference_id="PG-1")

        assert result.created is True
        booking = db.query(Booking).filter(Booking.id == result.booking_id).one()
        assert booking.status == sm.CREATED
        assert booking.payment_status == sm.PAYMENT_PAID
        assert booking.payment_method == sm.METHOD_ONLINE
        assert booking.fare == 944

        attempt = PaymentAttemptRepository.get_attempt(db, staged_payment)
        assert attempt.status == sm.OUTCOME_SUCCESS
        assert attempt.booking_id == booking.id
        assert attempt.gateway_reference_id == "PG-1"
        assert "Booking Confirmed" in notifier.titles
        assert "Payment Received" in notifier.titles

    async def test_staged_record_removed_after_grace_period(self, db, reconciler, staged_payment):
        await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        await drain_pending_tasks()

        db.expire_all()
        assert db.query(StagedBooking).count() == 0

    async def test_repeated_success_returns_same_booking(self, db, reconciler, staged_payment):
        first = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        second = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)

        assert second.booking_id == first.booking_id
        assert second.created is False
        assert db.query(Booking).count() == 1

    async def test_gathered_callbacks_create_one_booking(self, db, reconciler, staged_payment):
        results = await asyncio.gather(
            reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS),
            reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS),
            reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS),
        )

        assert len({r.booking_id for r in results}) == 1
        assert sum(r.created for r in results) == 1
        assert db.query(Booking).count() == 1

    async def test_staged_booking_id_is_reused(self, db, reconciler, staged_payment):
        first = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        # Attempt row lost its outcome; the staged record still points at the booking
        attempt = PaymentAttemptRepository.get_attempt(db, staged_payment)
        attempt.status = "PENDING"
        db.commit()

        again = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        assert again.booking_id == first.booking_id
        assert db.query(Booking).count() == 1

    async def test_claimed_record_is_left_to_the_claimer(self, db, reconciler, staged_payment):
        staged = StagedBookingRepository.get(db, staged_payment)
        staged.claimed_at = utcnow()
        db.commit()

        result = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        assert result.booking_id is None
        assert result.message == "Booking is being created"
        assert db.query(Booking).count() == 0

    async def test_failure_discards_staged_record(self, db, reconciler, staged_payment):
        result = await reconciler.reconcile(staged_payment, sm.OUTCOME_FAILED)

        assert result.outcome == sm.OUTCOME_FAILED
        assert result.booking_id is None
        assert db.query(Booking).count() == 0
        assert db.query(StagedBooking).count() == 0
        assert PaymentAttemptRepository.get_attempt(db, staged_payment).status == sm.OUTCOME_FAILED

    async def test_failure_after_success_is_ignored(self, db, reconciler, staged_payment):
        created = await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        result = await reconciler.reconcile(staged_payment, sm.OUTCOME_FAILED)

        assert result.outcome == sm.OUTCOME_SUCCESS
        assert result.booking_id == created.booking_id
        booking = db.query(Booking).one()
        assert booking.payment_status == sm.PAYMENT_PAID

    async def test_expired_staged_record(self, db, reconciler, staged_payment):
        staged = StagedBookingRepository.get(db, staged_payment)
        staged.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        with pytest.raises(NotFound):
            await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)
        assert db.query(Booking).count() == 0

    async def test_pending_changes_nothing(self, db, reconciler, staged_payment):
        result = await reconciler.reconcile(staged_payment, sm.OUTCOME_PENDING)
        assert result.outcome == sm.OUTCOME_PENDING
        assert db.query(Booking).count() == 0
        assert db.query(StagedBooking).count() == 1

    async def test_unknown_reference(self, reconciler):
        with pytest.raises(NotFound):
            await reconciler.reconcile("TMP-nobody-1-abc", sm.OUTCOME_SUCCESS)


class TestExistingBookingPayments:
    async def test_success_marks_booking_paid(self, db, reconciler, unpaid_booking):
        booking, ref = unpaid_booking
        result = await reconciler.reconcile(ref, sm.OUTCOME_SUCCESS)

        assert result.booking_id == booking.id
        assert result.payment_status == sm.PAYMENT_PAID
        assert result.booking_status == sm.CREATED

    async def test_failure_marks_booking_failed(self, reconciler, unpaid_booking):
        _booking, ref = unpaid_booking
        result = await reconciler.reconcile(ref, sm.OUTCOME_FAILED)
        assert result.payment_status == sm.PAYMENT_FAILED

    async def test_failure_after_paid_is_ignored(self, reconciler, unpaid_booking):
        _booking, ref = unpaid_booking
        await reconciler.reconcile(ref, sm.OUTCOME_SUCCESS)
        result = await reconciler.reconcile(ref, sm.OUTCOME_FAILED)
        assert result.payment_status == sm.PAYMENT_PAID


class TestOutbox:
    async def test_write_failure_after_success_is_queued(self, db, reconciler, staged_payment, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("INSERT INTO bookings", {}, Exception("database is locked"))

        monkeypatch.setattr(reconciler.bookings, "add_paid_online_booking", broken)

        with pytest.raises(InternalError):
            await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS)

        entries = db.query(PaymentOutbox).all()
        assert len(entries) == 1
        assert entries[0].merchant_reference_id == staged_payment
        assert entries[0].outcome == sm.OUTCOME_SUCCESS
        assert entries[0].resolved_at is None
        # The claim was rolled back with the failed write
        assert StagedBookingRepository.get(db, staged_payment).claimed_at is None

    async def test_replay_without_recording(self, db, reconciler, staged_payment, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))

        monkeypatch.setattr(reconciler.bookings, "add_paid_online_booking", broken)

        with pytest.raises(InternalError):
            await reconciler.reconcile(staged_payment, sm.OUTCOME_SUCCESS, record_failures=False)
        assert db.query(PaymentOutbox).count() == 0


class TestStagedCoupons:
    @staticmethod
    def add_coupon(db, code, **overrides):
        values = {
            "code": code,
            "discountType": "fixed",
            "discountValue": 50,
            "validFrom": utcnow() - timedelta(days=1),
            "validUntil": utcnow() + timedelta(days=1),
        }
        values.update(overrides)
        return PricingService(db).create_coupon(CouponCreate(**values))

    async def test_valid_coupon_is_redeemed(self, db, reconciler, booking_data, customer):
        self.add_coupon(db, "SAVE50")
        ref = stage_payment(db, booking_data, customer, coupon_code="SAVE50")

        result = await reconciler.reconcile(ref, sm.OUTCOME_SUCCESS)

        assert db.query(Booking).filter(Booking.id == result.booking_id).one().coupon_code == "SAVE50"
        db.expire_all()
        assert db.query(Coupon).one().current_usage == 1

    async def test_lapsed_coupon_is_dropped(self, db, reconciler, booking_data, customer):
        coupon = self.add_coupon(db, "LAPSED")
        ref = stage_payment(db, booking_data, customer, coupon_code="LAPSED")
        # Deactivated while the customer was paying
        coupon.is_active = False
        db.commit()

        result = await reconciler.reconcile(ref, sm.OUTCOME_SUCCESS)

        assert result.created is True
        assert db.query(Booking).one().coupon_code is None
        db.expire_all()
        assert db.query(Coupon).one().current_usage == 0


class TestConcurrentCallbacks:
    def test_racing_threads_create_one_booking(self, tmp_path, booking_data, customer, monkeypatch):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = Session()
        try:
            ref = stage_payment(setup, booking_data, customer)
        finally:
            setup.close()

        # Both callbacks reach the claim before either has written anything
        barrier = threading.Barrier(2, timeout=10)
        claim = StagedBookingRepository.claim

        def claim_together(db, staged_id):
            barrier.wait()
            return claim(db, staged_id)

        monkeypatch.setattr(StagedBookingRepository, "claim", staticmethod(claim_together))

        results = []
        errors = []

        def settle():
            db = Session()
            try:
                reconciler = PaymentReconciler(db, session_factory=Session, delete_grace_seconds=60)
                results.append(asyncio.run(reconciler.reconcile(ref, sm.OUTCOME_SUCCESS)))
            except Exception as e:
                errors.append(e)
            finally:
                db.close()

        threads = [threading.Thread(target=settle) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        check = Session()
        try:
            assert errors == []
            booking = check.query(Booking).one()
            assert [r.booking_id for r in results] == [booking.id, booking.id]
            assert sorted(r.created for r in results) == [False, True]
            assert booking.payment_status == sm.PAYMENT_PAID
        finally:
            check.close()
            engine.dispose()
