"""Tests for the appointment lifecycle."""

from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from telemed.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from telemed.repositories.users import UserDirectory
from telemed.schemas.appointments import (
    AppointmentFilters,
    AppointmentStatus,
    ConsultationType,
    Medication,
    PaymentStatus,
    PaymentUpdate,
    PrescriptionCreate,
    RatingCreate,
)
from telemed.schemas.notifications import (
    NotificationChannel,
    NotificationFilters,
    NotificationPriority,
    NotificationType,
)
from telemed.services.appointment_service import AppointmentService
from telemed.services.booking_lock import LocalBookingLock
from telemed.services.slot_resolver import SlotResolver


async def _inbox(notification_service, user_id):
    page = await notification_service.list_notifications(user_id, NotificationFilters())
    return page.notifications


async def _latest(notification_service, user_id, notification_type):
    page = await notification_service.list_notifications(
        user_id, NotificationFilters(notification_type=[notification_type])
    )
    return page.notifications[0]


@pytest.mark.asyncio
async def test_booking_notifies_both_parties(
    book, notification_service, patient, doctor, slot_at
) -> None:
    appointment = await book(slot_at(1, 10))

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.payment_status == PaymentStatus.PENDING
    assert appointment.appointment_at == slot_at(1, 10)
    assert appointment.video_call_id is None

    [to_doctor] = await _inbox(notification_service, doctor.id)
    assert to_doctor.notification_type == NotificationType.APPOINTMENT_SCHEDULED
    assert to_doctor.title == "New Appointment Scheduled"
    assert to_doctor.sender_id == patient.id
    assert to_doctor.action_url == f"/doctor/appointments/{appointment.id}"
    assert to_doctor.data == {"appointment_id": str(appointment.id)}

    [to_patient] = await _inbox(notification_service, patient.id)
    assert to_patient.title == "Appointment Scheduled Successfully"
    assert "Dr. Gregory House" in to_patient.message
    assert to_patient.action_url == f"/patient/appointments/{appointment.id}"


@pytest.mark.asyncio
async def test_booking_within_thirty_minutes_conflicts(
    book, appointment_service, other_patient, slot_at
) -> None:
    await book(slot_at(1, 10))

    with pytest.raises(ConflictException, match="not available"):
        await book(slot_at(1, 10, 15), patient_id=other_patient.id)

    later = await book(slot_at(1, 10, 31), patient_id=other_patient.id)
    assert later.status == AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_booked_again(
    book, appointment_service, patient, slot_at
) -> None:
    first = await book(slot_at(3, 10))
    await appointment_service.cancel_appointment(first.id, patient.id, reason="Travelling")

    again = await book(slot_at(3, 10))

    assert again.id != first.id


@pytest.mark.asyncio
async def test_booking_in_the_past_is_rejected(book, clock) -> None:
    with pytest.raises(ValidationException, match="future"):
        await book(clock.now)


@pytest.mark.asyncio
async def test_booking_checks_participant_roles(book, patient, doctor, other_patient) -> None:
    with pytest.raises(ValidationException, match="Invalid doctor ID"):
        await book(doctor_id=other_patient.id)

    with pytest.raises(NotFoundException, match="Doctor not found"):
        await book(doctor_id=uuid4())

    with pytest.raises(ValidationException, match="Invalid patient ID"):
        await book(patient_id=doctor.id)

    with pytest.raises(NotFoundException, match="Patient not found"):
        await book(patient_id=uuid4())


@pytest.mark.asyncio
async def test_booking_survives_failing_channels(
    book, fail_channel, notification_service, doctor
) -> None:
    fail_channel(NotificationChannel.IN_APP)

    appointment = await book()

    assert appointment.status == AppointmentStatus.SCHEDULED
    [notice] = await _inbox(notification_service, doctor.id)
    assert notice.delivery_status[NotificationChannel.IN_APP].delivered is False


@pytest.mark.asyncio
async def test_only_participants_see_an_appointment(
    book, appointment_service, patient, doctor, other_patient
) -> None:
    appointment = await book()

    for user in (patient, doctor):
        seen = await appointment_service.get_appointment(appointment.id, user.id)
        assert seen.id == appointment.id
    with pytest.raises(NotFoundException):
        await appointment_service.get_appointment(appointment.id, other_patient.id)


@pytest.mark.asyncio
async def test_confirming_video_appointment_opens_a_call(
    book, appointment_service, notification_service, video_calls, patient, doctor
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)

    confirmed = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.video_call_id == "c1"
    assert confirmed.video_call_url == "http://x/c1"
    assert video_calls.created == [appointment.id]

    confirmation = await _latest(
        notification_service, patient.id, NotificationType.APPOINTMENT_CONFIRMED
    )
    assert confirmation.notification_type == NotificationType.APPOINTMENT_CONFIRMED
    assert confirmation.title == "Appointment Status Updated"
    assert confirmation.sender_id == doctor.id
    assert confirmation.data["video_call_url"] == "http://x/c1"
    assert "Dr. Gregory House" in confirmation.message


@pytest.mark.asyncio
async def test_in_person_confirmation_opens_no_call(
    book, appointment_service, video_calls, doctor
) -> None:
    appointment = await book()

    confirmed = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    assert confirmed.video_call_id is None
    assert video_calls.created == []


@pytest.mark.asyncio
async def test_failed_confirmation_write_ends_the_new_call(
    book, appointment_service, appointment_repository, video_calls, doctor, monkeypatch
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)
    monkeypatch.setattr(
        appointment_repository, "update", AsyncMock(side_effect=RuntimeError("db down"))
    )

    with pytest.raises(RuntimeError, match="db down"):
        await appointment_service.transition_status(
            appointment.id, AppointmentStatus.CONFIRMED, doctor.id
        )

    assert video_calls.created == [appointment.id]
    assert video_calls.ended == ["c1"]


@pytest.mark.asyncio
async def test_call_provisioning_failure_still_confirms(
    db_session,
    appointment_repository,
    notification_service,
    broken_video_calls,
    book,
    patient,
    doctor,
    clock,
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)
    service = AppointmentService(
        appointments=appointment_repository,
        users=UserDirectory(db_session),
        notifications=notification_service,
        slots=SlotResolver(appointment_repository, clock=clock),
        video_calls=broken_video_calls,
        booking_lock=LocalBookingLock(),
        clock=clock,
    )

    confirmed = await service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )
    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.video_call_id is None

    completed = await service.transition_status(
        appointment.id, AppointmentStatus.COMPLETED, doctor.id
    )
    assert completed.status == AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_call_lives_through_consultation_and_closes_at_the_end(
    book, appointment_service, notification_service, video_calls, patient, doctor
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)
    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    started = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.IN_PROGRESS, doctor.id
    )
    assert started.video_call_id == "c1"
    assert await _latest(notification_service, patient.id, NotificationType.VIDEO_CALL_STARTING)

    completed = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.COMPLETED, doctor.id, notes="Rest and fluids"
    )
    assert completed.video_call_id is None
    assert completed.video_call_url is None
    assert completed.notes == "Rest and fluids"
    assert video_calls.ended == ["c1"]


@pytest.mark.asyncio
async def test_disallowed_transitions_are_rejected(book, appointment_service, doctor) -> None:
    appointment = await book()

    with pytest.raises(ValidationException, match="from scheduled to completed"):
        await appointment_service.transition_status(
            appointment.id, AppointmentStatus.COMPLETED, doctor.id
        )
    with pytest.raises(ValidationException):
        await appointment_service.transition_status(
            appointment.id, AppointmentStatus.IN_PROGRESS, doctor.id
        )

    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.NO_SHOW, doctor.id
    )
    with pytest.raises(ValidationException, match="from no-show to confirmed"):
        await appointment_service.transition_status(
            appointment.id, AppointmentStatus.CONFIRMED, doctor.id
        )


@pytest.mark.asyncio
async def test_same_status_is_a_quiet_no_op(
    book, appointment_service, notification_service, patient, doctor
) -> None:
    appointment = await book()
    before = await _inbox(notification_service, patient.id)

    unchanged = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.SCHEDULED, doctor.id
    )

    assert unchanged.status == AppointmentStatus.SCHEDULED
    assert unchanged.updated_at == appointment.updated_at
    assert len(await _inbox(notification_service, patient.id)) == len(before)


@pytest.mark.asyncio
async def test_cancellation_needs_more_than_a_day_of_notice(
    book, appointment_service, patient, slot_at, clock
) -> None:
    appointment = await book(slot_at(2, 10))

    clock.now = appointment.appointment_at - timedelta(hours=24)
    with pytest.raises(ForbiddenException, match="less than 24 hours"):
        await appointment_service.cancel_appointment(appointment.id, patient.id)

    clock.now = appointment.appointment_at - timedelta(hours=24, seconds=1)
    cancelled = await appointment_service.cancel_appointment(
        appointment.id, patient.id, reason="Feeling better"
    )

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Feeling better"
    assert cancelled.cancelled_at == clock.now


@pytest.mark.asyncio
async def test_cancellation_notifies_the_other_party(
    book, appointment_service, notification_service, patient, doctor, slot_at
) -> None:
    appointment = await book(slot_at(3, 10))

    await appointment_service.cancel_appointment(appointment.id, patient.id, reason="Travelling")

    notice = await _latest(notification_service, doctor.id, NotificationType.APPOINTMENT_CANCELLED)
    assert notice.notification_type == NotificationType.APPOINTMENT_CANCELLED
    assert notice.priority == NotificationPriority.HIGH
    assert notice.sender_id == patient.id
    assert notice.message.endswith("Reason: Travelling")
    assert notice.action_url == "/doctor/appointments"


@pytest.mark.asyncio
async def test_cancelled_status_goes_through_cancellation(
    book, appointment_service, video_calls, doctor, slot_at
) -> None:
    appointment = await book(slot_at(3, 10), consultation_type=ConsultationType.VIDEO)
    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    cancelled = await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CANCELLED, doctor.id, notes="Doctor unavailable"
    )

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Doctor unavailable"
    assert cancelled.video_call_id is None
    assert video_calls.ended == ["c1"]


@pytest.mark.asyncio
async def test_started_appointments_cannot_be_cancelled(
    book, appointment_service, doctor, slot_at
) -> None:
    appointment = await book(slot_at(3, 10))
    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )
    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.IN_PROGRESS, doctor.id
    )

    with pytest.raises(ForbiddenException):
        await appointment_service.cancel_appointment(appointment.id, doctor.id)


@pytest.mark.asyncio
async def test_only_the_doctor_prescribes(
    book, appointment_service, notification_service, patient, doctor, clock
) -> None:
    appointment = await book()
    prescription = PrescriptionCreate(
        medications=[
            Medication(
                name="Ibuprofen", dosage="400mg", frequency="Twice daily", duration="5 days"
            )
        ],
        diagnosis="Tension headache",
    )

    with pytest.raises(ForbiddenException):
        await appointment_service.add_prescription(appointment.id, patient.id, prescription)

    updated = await appointment_service.add_prescription(appointment.id, doctor.id, prescription)

    assert updated.prescription["diagnosis"] == "Tension headache"
    assert updated.prescription["medications"][0]["name"] == "Ibuprofen"
    assert updated.prescription["issued_at"] == clock.now.isoformat()

    notice = await _latest(notification_service, patient.id, NotificationType.PRESCRIPTION_READY)
    assert notice.notification_type == NotificationType.PRESCRIPTION_READY
    assert notice.action_text == "View Prescription"


@pytest.mark.asyncio
async def test_ratings_need_a_completed_appointment(
    book, appointment_service, patient, doctor
) -> None:
    appointment = await book()

    with pytest.raises(ValidationException, match="completed"):
        await appointment_service.add_rating(appointment.id, patient.id, RatingCreate(rating=5))

    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )
    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.COMPLETED, doctor.id
    )

    rated = await appointment_service.add_rating(
        appointment.id, patient.id, RatingCreate(rating=4, review="Very thorough")
    )
    rated = await appointment_service.add_rating(appointment.id, doctor.id, RatingCreate(rating=5))

    assert rated.rating == {
        "patient_rating": 4,
        "patient_review": "Very thorough",
        "doctor_rating": 5,
        "doctor_review": None,
    }

    stats = await appointment_service.get_appointment_stats(doctor)
    assert stats.average_rating == 4.0
    assert stats.completed == 1


@pytest.mark.asyncio
async def test_payment_notifies_once(
    book, appointment_service, notification_service, patient, doctor
) -> None:
    appointment = await book()

    paid = await appointment_service.update_payment(
        appointment.id,
        patient.id,
        PaymentUpdate(payment_status=PaymentStatus.PAID, payment_id="pay_123"),
    )
    await appointment_service.update_payment(
        appointment.id, patient.id, PaymentUpdate(payment_status=PaymentStatus.PAID)
    )

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.payment_id == "pay_123"
    payments = [
        notice
        for notice in await _inbox(notification_service, doctor.id)
        if notice.notification_type == NotificationType.PAYMENT_RECEIVED
    ]
    assert len(payments) == 1
    assert payments[0].data["payment_id"] == "pay_123"


@pytest.mark.asyncio
async def test_reminders_cover_the_window_and_repeat(
    appointment_service,
    notification_service,
    insert_appointment,
    senders,
    patient,
    doctor,
    clock,
) -> None:
    await insert_appointment(clock.now + timedelta(hours=3))
    await insert_appointment(clock.now + timedelta(hours=30))
    await insert_appointment(clock.now + timedelta(hours=5), status="cancelled")

    assert await appointment_service.send_reminders(window_hours=24) == 2
    assert await appointment_service.send_reminders(window_hours=24) == 2

    patient_reminders = await notification_service.list_notifications(
        patient.id,
        NotificationFilters(notification_type=[NotificationType.APPOINTMENT_REMINDER]),
    )
    assert patient_reminders.total_count == 2
    reminder = patient_reminders.notifications[0]
    assert reminder.channels == [
        NotificationChannel.IN_APP,
        NotificationChannel.EMAIL,
        NotificationChannel.SMS,
    ]
    assert "Dr. Gregory House" in reminder.message

    doctor_reminders = await notification_service.list_notifications(
        doctor.id,
        NotificationFilters(notification_type=[NotificationType.APPOINTMENT_REMINDER]),
    )
    assert doctor_reminders.notifications[0].channels == [
        NotificationChannel.IN_APP,
        NotificationChannel.EMAIL,
    ]
    assert "Jane Patient" in doctor_reminders.notifications[0].message
    assert len(senders[NotificationChannel.SMS].sent) == 2


@pytest.mark.asyncio
async def test_doctor_ends_the_call_and_completes(
    book, appointment_service, video_calls, patient, doctor
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)

    with pytest.raises(ValidationException, match="no active video call"):
        await appointment_service.end_video_call(appointment.id, doctor.id)

    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    with pytest.raises(ForbiddenException):
        await appointment_service.end_video_call(appointment.id, patient.id)

    ended = await appointment_service.end_video_call(appointment.id, doctor.id)

    assert ended.status == AppointmentStatus.COMPLETED
    assert ended.video_call_id is None
    assert video_calls.ended == ["c1"]


@pytest.mark.asyncio
async def test_call_tokens_make_the_doctor_host(
    book, appointment_service, patient, doctor
) -> None:
    appointment = await book(consultation_type=ConsultationType.VIDEO)
    with pytest.raises(ValidationException):
        await appointment_service.generate_call_token(appointment.id, patient.id)

    await appointment_service.transition_status(
        appointment.id, AppointmentStatus.CONFIRMED, doctor.id
    )

    host = await appointment_service.generate_call_token(appointment.id, doctor.id)
    guest = await appointment_service.generate_call_token(appointment.id, patient.id)

    assert host.role.value == "host"
    assert host.token == f"tok-host-{doctor.id}"
    assert guest.role.value == "guest"
    assert guest.call_url == "http://x/c1"


@pytest.mark.asyncio
async def test_listing_and_stats_follow_the_callers_role(
    book, appointment_service, patient, other_patient, doctor, slot_at
) -> None:
    first = await book(slot_at(1, 10))
    await book(slot_at(2, 10), patient_id=other_patient.id)
    await appointment_service.transition_status(first.id, AppointmentStatus.CONFIRMED, doctor.id)

    mine = await appointment_service.list_appointments(patient, AppointmentFilters())
    assert mine.total == 1
    assert mine.items[0].id == first.id

    theirs = await appointment_service.list_appointments(doctor, AppointmentFilters())
    assert theirs.total == 2
    assert theirs.items[0].appointment_at > theirs.items[1].appointment_at

    confirmed = await appointment_service.list_appointments(
        doctor, AppointmentFilters(status=AppointmentStatus.CONFIRMED)
    )
    assert [item.id for item in confirmed.items] == [first.id]

    stats = await appointment_service.get_appointment_stats(doctor)
    assert stats.total == 2
    assert stats.upcoming == 2
    assert stats.by_status == {"scheduled": 1, "confirmed": 1}
    assert stats.average_rating is None


@pytest.mark.asyncio
async def test_availability_requires_a_doctor(
    book, appointment_service, patient, doctor, slot_at
) -> None:
    await book(slot_at(1, 10))

    availability = await appointment_service.get_availability(doctor.id, slot_at(1).date())
    assert "10:00" in availability.booked_slots

    with pytest.raises(NotFoundException):
        await appointment_service.get_availability(patient.id, slot_at(1).date())
