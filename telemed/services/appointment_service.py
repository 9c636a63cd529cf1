"""Appointment lifecycle: booking, status transitions and their side effects."""

import math
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog

from telemed.config import settings
from telemed.core.clock import ensure_utc, utc_now
from telemed.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from telemed.repositories.appointments import AppointmentRepository
from telemed.repositories.users import UserDirectory
from telemed.schemas.appointments import (
    TERMINAL_STATUSES,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRecord,
    AppointmentStats,
    AppointmentStatus,
    ConsultationType,
    DoctorAvailability,
    PaymentStatus,
    PaymentUpdate,
    PrescriptionCreate,
    RatingCreate,
)
from telemed.schemas.notifications import (
    NotificationChannel,
    NotificationPriority,
    NotificationType,
)
from telemed.schemas.users import UserRecord, UserRole
from telemed.schemas.video_calls import CallRole, CallTokenResponse
from telemed.services.booking_lock import BookingLock
from telemed.services.notification_service import NotificationService
from telemed.services.slot_resolver import SlotResolver
from telemed.services.video_call_service import VideoCallProvider

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

CLEARED_CALL = {"video_call_id": None, "video_call_url": None}


def appointment_link(role: str, appointment_id: UUID) -> str:
    """Deep link to an appointment in the role's part of the app."""
    return f"/{role}/appointments/{appointment_id}"


class AppointmentService:
    """Service for managing appointments."""

    def __init__(
        self,
        appointments: AppointmentRepository,
        users: UserDirectory,
        notifications: NotificationService,
        slots: SlotResolver,
        video_calls: VideoCallProvider,
        booking_lock: BookingLock,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service with its collaborators."""
        self.appointments = appointments
        self.users = users
        self.notifications = notifications
        self.slots = slots
        self.video_calls = video_calls
        self.booking_lock = booking_lock
        self.clock = clock

    async def _notify(self, **fields: Any) -> None:
        """Send a notification; failures are logged and never undo the appointment write."""
        try:
            await self.notifications.notify(**fields)
        except Exception as e:
            logger.warning(
                "failed_to_send_appointment_notification",
                recipient_id=str(fields.get("recipient_id")),
                notification_type=str(fields.get("notification_type")),
                error=str(e),
            )

    async def _name_of(self, user_id: UUID) -> str:
        user = await self.users.find_by_id(user_id)
        if user is None:
            return "your care provider"
        if user.role == UserRole.DOCTOR:
            return f"Dr. {user.display_name}"
        return user.display_name

    @staticmethod
    def _counterpart(appointment: AppointmentRecord, actor_id: UUID) -> tuple[UUID, str]:
        """The other party of an appointment and their role."""
        if actor_id == appointment.doctor_id:
            return appointment.patient_id, UserRole.PATIENT.value
        return appointment.doctor_id, UserRole.DOCTOR.value

    async def create_appointment(
        self,
        patient_id: UUID,
        data: AppointmentCreate,
    ) -> AppointmentRecord:
        """
        Book a new appointment.

        Args:
            patient_id: ID of the patient booking the appointment
            data: Appointment creation data

        Returns:
            Created appointment in ``scheduled`` status

        Raises:
            NotFoundException: If patient or doctor does not exist
            ValidationException: If roles are wrong or the date is not in the future
            ConflictException: If the doctor is booked within 30 minutes
        """
        patient = await self.users.find_by_id(patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        if patient.role != UserRole.PATIENT:
            raise ValidationException("Invalid patient ID")

        doctor = await self.users.find_by_id(data.doctor_id)
        if doctor is None:
            raise NotFoundException("Doctor not found")
        if doctor.role != UserRole.DOCTOR or not doctor.is_active:
            raise ValidationException("Invalid doctor ID")

        appointment_at = ensure_utc(data.appointment_at)
        now = self.clock()
        if appointment_at <= now:
            raise ValidationException("Appointment date must be in the future")

        async with self.booking_lock.hold(doctor.id):
            conflict = await self.slots.find_conflict(doctor.id, appointment_at)
            if conflict is not None:
                raise ConflictException("Doctor is not available at this time slot")

            appointment = await self.appointments.create(
                {
                    "id": uuid4(),
                    "patient_id": patient.id,
                    "doctor_id": doctor.id,
                    "appointment_at": appointment_at,
                    "duration_minutes": data.duration_minutes,
                    "consultation_type": data.consultation_type.value,
                    "status": AppointmentStatus.SCHEDULED.value,
                    "symptoms": data.symptoms,
                    "specialization": data.specialization,
                    "fee": data.fee,
                    "notes": data.notes,
                    "payment_status": PaymentStatus.PENDING.value,
                    "created_at": now,
                    "updated_at": now,
                }
            )

        logger.info(
            "appointment_created",
            appointment_id=str(appointment.id),
            doctor_id=str(doctor.id),
            patient_id=str(patient.id),
        )

        when = appointment_at.strftime("%a %b %d %Y %H:%M UTC")
        payload = {"appointment_id": str(appointment.id)}
        await self._notify(
            recipient_id=doctor.id,
            sender_id=patient.id,
            notification_type=NotificationType.APPOINTMENT_SCHEDULED,
            title="New Appointment Scheduled",
            message=f"A new appointment has been scheduled for {when}",
            data=payload,
            action_url=appointment_link(UserRole.DOCTOR.value, appointment.id),
            action_text="View Appointment",
        )
        await self._notify(
            recipient_id=patient.id,
            notification_type=NotificationType.APPOINTMENT_SCHEDULED,
            title="Appointment Scheduled Successfully",
            message=f"Your appointment with Dr. {doctor.display_name} is scheduled for {when}",
            data=payload,
            action_url=appointment_link(UserRole.PATIENT.value, appointment.id),
            action_text="View Appointment",
        )

        return appointment

    async def get_appointment(self, appointment_id: UUID, user_id: UUID) -> AppointmentRecord:
        """
        Get an appointment the user takes part in.

        Raises:
            NotFoundException: If absent or the user is neither patient nor doctor
        """
        appointment = await self.appointments.get(appointment_id)
        if appointment is None or user_id not in appointment.participant_ids():
            raise NotFoundException("Appointment not found")
        return appointment

    async def list_appointments(
        self,
        user: UserRecord,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """List the user's appointments with filtering and pagination."""
        items, total = await self.appointments.list_for_user(user.id, user.role.value, filters)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=math.ceil(total / filters.page_size) if total else 0,
            items=items,
        )

    async def get_appointment_stats(self, user: UserRecord) -> AppointmentStats:
        """Counters for the user's dashboard."""
        by_status = await self.appointments.count_by_status(user.id, user.role.value)

        average_rating = None
        if user.role == UserRole.DOCTOR:
            scores = [
                rating["patient_rating"]
                for rating in await self.appointments.ratings_for_doctor(user.id)
                if rating.get("patient_rating") is not None
            ]
            if scores:
                average_rating = round(sum(scores) / len(scores), 2)

        return AppointmentStats(
            total=sum(by_status.values()),
            by_status=by_status,
            upcoming=by_status.get(AppointmentStatus.SCHEDULED.value, 0)
            + by_status.get(AppointmentStatus.CONFIRMED.value, 0),
            completed=by_status.get(AppointmentStatus.COMPLETED.value, 0),
            cancelled=by_status.get(AppointmentStatus.CANCELLED.value, 0),
            average_rating=average_rating,
        )

    async def get_availability(self, doctor_id: UUID, day: date) -> DoctorAvailability:
        """
        Free slots of a doctor on one day.

        Raises:
            NotFoundException: If the doctor does not exist
            ValidationException: If ``day`` is in the past
        """
        doctor = await self.users.find_by_id(doctor_id)
        if doctor is None or doctor.role != UserRole.DOCTOR:
            raise NotFoundException("Doctor not found")
        return await self.slots.available_slots(doctor_id, day)

    async def _close_call(self, appointment: AppointmentRecord) -> None:
        if not appointment.video_call_id:
            return
        try:
            await self.video_calls.end_call(appointment.video_call_id)
        except Exception as e:
            logger.error(
                "video_call_end_failed",
                appointment_id=str(appointment.id),
                call_id=appointment.video_call_id,
                error=str(e),
            )

    async def _notify_status_change(
        self,
        appointment: AppointmentRecord,
        actor_id: UUID,
    ) -> None:
        recipient_id, recipient_role = self._counterpart(appointment, actor_id)
        actor_name = await self._name_of(actor_id)
        status = appointment.status

        if status == AppointmentStatus.CONFIRMED:
            notification_type = NotificationType.APPOINTMENT_CONFIRMED
        elif status == AppointmentStatus.CANCELLED:
            notification_type = NotificationType.APPOINTMENT_CANCELLED
        elif (
            status == AppointmentStatus.IN_PROGRESS
            and appointment.consultation_type == ConsultationType.VIDEO
        ):
            notification_type = NotificationType.VIDEO_CALL_STARTING
        else:
            notification_type = NotificationType.GENERAL

        data: dict[str, Any] = {
            "appointment_id": str(appointment.id),
            "status": status.value,
        }
        if appointment.video_call_url:
            data["video_call_url"] = appointment.video_call_url

        await self._notify(
            recipient_id=recipient_id,
            sender_id=actor_id,
            notification_type=notification_type,
            title="Appointment Status Updated",
            message=f"Your appointment with {actor_name} has been {status.value}",
            data=data,
            action_url=appointment_link(recipient_role, appointment.id),
            action_text="View Appointment",
        )

    async def transition_status(
        self,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        user_id: UUID,
        notes: str | None = None,
    ) -> AppointmentRecord:
        """
        Move an appointment to a new status.

        Confirming a video appointment provisions a call. A transition to the
        current status succeeds without side effects.

        Raises:
            NotFoundException: If the user is not a participant
            ValidationException: If the transition is not allowed
            ForbiddenException: If cancelling inside the 24 hour window
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        old_status = appointment.status

        if new_status == old_status:
            return appointment

        if new_status == AppointmentStatus.CANCELLED:
            return await self.cancel_appointment(appointment_id, user_id, reason=notes)

        if new_status not in ALLOWED_TRANSITIONS[old_status]:
            raise ValidationException(
                f"Cannot change appointment status from {old_status.value} to {new_status.value}"
            )

        values: dict[str, Any] = {"status": new_status.value, "updated_at": self.clock()}
        if notes:
            values["notes"] = notes

        provisioned = None

        if (
            new_status == AppointmentStatus.CONFIRMED
            and appointment.consultation_type == ConsultationType.VIDEO
        ):
            try:
                provisioned = await self.video_calls.create_call(appointment.id)
                values["video_call_id"] = provisioned.call_id
                values["video_call_url"] = provisioned.call_url
            except Exception as e:
                logger.error(
                    "video_call_provisioning_failed",
                    appointment_id=str(appointment.id),
                    error=str(e),
                )

        if new_status in TERMINAL_STATUSES:
            await self._close_call(appointment)
            values.update(CLEARED_CALL)

        try:
            updated = await self.appointments.update(appointment.id, values)
        except Exception:
            if provisioned is not None:
                await self._close_call(
                    appointment.model_copy(update={"video_call_id": provisioned.call_id})
                )
            raise

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment.id),
            old_status=old_status.value,
            new_status=new_status.value,
            actor_id=str(user_id),
        )

        await self._notify_status_change(updated, user_id)
        return updated

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        user_id: UUID,
        reason: str | None = None,
    ) -> AppointmentRecord:
        """
        Cancel an appointment more than 24 hours ahead.

        Raises:
            NotFoundException: If the user is not a participant
            ForbiddenException: If the appointment cannot be cancelled
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        now = self.clock()

        if not appointment.can_be_cancelled_at(now):
            raise ForbiddenException(
                "Appointment cannot be cancelled (less than 24 hours remaining)"
            )

        await self._close_call(appointment)
        updated = await self.appointments.update(
            appointment.id,
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancellation_reason": reason,
                "cancelled_at": now,
                "updated_at": now,
                **CLEARED_CALL,
            },
        )

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment.id),
            actor_id=str(user_id),
        )

        recipient_id, recipient_role = self._counterpart(updated, user_id)
        actor_name = await self._name_of(user_id)
        message = f"Your appointment with {actor_name} has been cancelled."
        if reason:
            message = f"{message} Reason: {reason}"

        await self._notify(
            recipient_id=recipient_id,
            sender_id=user_id,
            notification_type=NotificationType.APPOINTMENT_CANCELLED,
            priority=NotificationPriority.HIGH,
            title="Appointment Cancelled",
            message=message,
            data={"appointment_id": str(updated.id), "reason": reason},
            action_url=f"/{recipient_role}/appointments",
            action_text="View Appointments",
        )

        return updated

    async def add_prescription(
        self,
        appointment_id: UUID,
        user_id: UUID,
        data: PrescriptionCreate,
    ) -> AppointmentRecord:
        """
        Attach a prescription. Only the appointment's doctor may do this.

        Raises:
            ForbiddenException: If the user is not the appointment's doctor
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        if appointment.doctor_id != user_id:
            raise ForbiddenException("Only the assigned doctor can add prescriptions")

        now = self.clock()
        prescription = data.model_dump(mode="json")
        prescription["issued_at"] = now.isoformat()

        updated = await self.appointments.update(
            appointment.id, {"prescription": prescription, "updated_at": now}
        )

        doctor_name = await self._name_of(user_id)
        await self._notify(
            recipient_id=updated.patient_id,
            sender_id=user_id,
            notification_type=NotificationType.PRESCRIPTION_READY,
            title="Prescription Ready",
            message=f"Your prescription from {doctor_name} is ready",
            data={"appointment_id": str(updated.id)},
            action_url=appointment_link(UserRole.PATIENT.value, updated.id),
            action_text="View Prescription",
        )

        return updated

    async def add_rating(
        self,
        appointment_id: UUID,
        user_id: UUID,
        data: RatingCreate,
    ) -> AppointmentRecord:
        """
        Rate a completed appointment on the caller's side.

        Raises:
            ValidationException: If the appointment is not completed
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        if appointment.status != AppointmentStatus.COMPLETED:
            raise ValidationException("Can only rate completed appointments")

        side = "patient" if user_id == appointment.patient_id else "doctor"
        rating = dict(appointment.rating or {})
        rating[f"{side}_rating"] = data.rating
        rating[f"{side}_review"] = data.review

        return await self.appointments.update(
            appointment.id, {"rating": rating, "updated_at": self.clock()}
        )

    async def update_payment(
        self,
        appointment_id: UUID,
        user_id: UUID,
        data: PaymentUpdate,
    ) -> AppointmentRecord:
        """Record a payment outcome; a newly paid appointment notifies the counterpart."""
        appointment = await self.get_appointment(appointment_id, user_id)

        values: dict[str, Any] = {
            "payment_status": data.payment_status.value,
            "updated_at": self.clock(),
        }
        if data.payment_id:
            values["payment_id"] = data.payment_id

        updated = await self.appointments.update(appointment.id, values)

        if (
            data.payment_status == PaymentStatus.PAID
            and appointment.payment_status != PaymentStatus.PAID
        ):
            recipient_id, recipient_role = self._counterpart(updated, user_id)
            actor_name = await self._name_of(user_id)
            await self._notify(
                recipient_id=recipient_id,
                sender_id=user_id,
                notification_type=NotificationType.PAYMENT_RECEIVED,
                title="Payment Completed",
                message=f"Payment for your appointment with {actor_name} has been completed",
                data={"appointment_id": str(updated.id), "payment_id": updated.payment_id},
                action_url=appointment_link(recipient_role, updated.id),
                action_text="View Appointment",
            )

        return updated

    async def send_reminders(self, window_hours: int | None = None) -> int:
        """
        Remind both parties of every booked appointment in the coming window.

        Reminders are not de-duplicated: running the sweep twice reminds twice.

        Returns:
            Number of reminder notifications created
        """
        hours = window_hours if window_hours is not None else settings.reminder_window_hours
        now = self.clock()
        upcoming = await self.appointments.list_active_between(now, now + timedelta(hours=hours))

        sent = 0
        for appointment in upcoming:
            try:
                doctor_name = await self._name_of(appointment.doctor_id)
                patient_name = await self._name_of(appointment.patient_id)
                when = appointment.appointment_at.strftime("%Y-%m-%d %H:%M UTC")
                payload = {"appointment_id": str(appointment.id)}

                await self.notifications.notify(
                    recipient_id=appointment.patient_id,
                    notification_type=NotificationType.APPOINTMENT_REMINDER,
                    title="Appointment Reminder",
                    message=f"You have an appointment with {doctor_name} at {when}",
                    data=payload,
                    action_url=appointment_link(UserRole.PATIENT.value, appointment.id),
                    action_text="View Appointment",
                    channels=[
                        NotificationChannel.IN_APP,
                        NotificationChannel.EMAIL,
                        NotificationChannel.SMS,
                    ],
                )
                sent += 1

                await self.notifications.notify(
                    recipient_id=appointment.doctor_id,
                    notification_type=NotificationType.APPOINTMENT_REMINDER,
                    title="Appointment Reminder",
                    message=f"You have an appointment with {patient_name} at {when}",
                    data=payload,
                    action_url=appointment_link(UserRole.DOCTOR.value, appointment.id),
                    action_text="View Appointment",
                    channels=[NotificationChannel.IN_APP, NotificationChannel.EMAIL],
                )
                sent += 1
            except Exception as e:
                logger.error(
                    "appointment_reminder_failed",
                    appointment_id=str(appointment.id),
                    error=str(e),
                )

        logger.info("appointment_reminders_sent", appointments=len(upcoming), notifications=sent)
        return sent

    async def end_video_call(self, appointment_id: UUID, user_id: UUID) -> AppointmentRecord:
        """
        End the consultation call and complete the appointment.

        Raises:
            ForbiddenException: If the user is not the appointment's doctor
            ValidationException: If there is no call to end
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        if appointment.doctor_id != user_id:
            raise ForbiddenException("Only the doctor can end the video call")
        if not appointment.video_call_id:
            raise ValidationException("Appointment has no active video call")

        session = await self.video_calls.end_call(appointment.video_call_id)

        values: dict[str, Any] = {"updated_at": self.clock(), **CLEARED_CALL}
        completes = AppointmentStatus.COMPLETED in ALLOWED_TRANSITIONS[appointment.status]
        if completes:
            values["status"] = AppointmentStatus.COMPLETED.value

        updated = await self.appointments.update(appointment.id, values)

        logger.info(
            "video_call_finished",
            appointment_id=str(appointment.id),
            call_id=session.call_id,
        )

        if completes:
            await self._notify_status_change(updated, user_id)
        return updated

    async def generate_call_token(self, appointment_id: UUID, user_id: UUID) -> CallTokenResponse:
        """
        Join token for the appointment's call; the doctor hosts.

        Raises:
            ValidationException: If the appointment has no call
        """
        appointment = await self.get_appointment(appointment_id, user_id)
        if not appointment.video_call_id:
            raise ValidationException("Appointment has no active video call")

        role = CallRole.HOST if user_id == appointment.doctor_id else CallRole.GUEST
        token = await self.video_calls.generate_token(appointment.video_call_id, user_id, role)

        return CallTokenResponse(
            call_id=appointment.video_call_id,
            call_url=appointment.video_call_url,
            token=token,
            role=role,
        )
