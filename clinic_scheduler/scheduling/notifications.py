"""Notification Dispatcher.

Scheduling code calls ``notify`` after its writes have committed. Delivery
runs on a worker pool; a failing sink is logged and dropped, never retried
inline and never allowed to reach the booking that triggered it.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date as Date
from enum import Enum

import httpx
from pydantic import BaseModel

from clinic_scheduler.core import config
from clinic_scheduler.core.roles import Role
from clinic_scheduler.core.timeslots import format_time

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    APPOINTMENT_BOOKED = 'appointment_booked'
    APPOINTMENT_CANCELLED = 'appointment_cancelled'
    APPOINTMENT_COMPLETED = 'appointment_completed'
    APPOINTMENT_RESCHEDULED = 'appointment_rescheduled'
    SCHEDULE_CHANGED = 'schedule_changed'


class NotificationEvent(BaseModel):
    kind: NotificationKind
    recipient_role: Role
    appointment_id: int | None = None
    doctor_id: int | None = None
    patient_id: int | None = None
    date: Date | None = None
    time: str | None = None
    old_date: Date | None = None
    old_time: str | None = None
    detail: str | None = None

    @classmethod
    def for_appointment(cls, kind: NotificationKind, recipient_role: Role, appointment, **extra) -> 'NotificationEvent':
        return cls(
            kind=kind,
            recipient_role=recipient_role,
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            date=appointment.appointment_date,
            time=format_time(appointment.slot_minute),
            **extra,
        )


NotificationSink = Callable[[NotificationEvent], None]


def log_sink(event: NotificationEvent) -> None:
    logger.info('Notification %s for %s: %s', event.kind.value, event.recipient_role.value, event.model_dump_json())


class HttpNotificationSink:
    """POST each event as JSON to the notification service."""

    def __init__(self, url: str, timeout: float = config.NOTIFICATION_TIMEOUT_SECONDS, client: httpx.Client | None = None):
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    def __call__(self, event: NotificationEvent) -> None:
        response = self._client.post(self._url, json=event.model_dump(mode='json'))
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink = log_sink, max_workers: int = config.NOTIFICATION_WORKERS):
        self._sink = sink
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='notify')

    def notify(self, event: NotificationEvent) -> Future | None:
        try:
            return self._executor.submit(self._deliver, event)
        except RuntimeError:
            logger.exception('Notification dispatcher is shut down; dropped %s', event.kind.value)
            return None

    def notify_all(self, events: list[NotificationEvent]) -> list[Future]:
        futures = [self.notify(event) for event in events]
        return [future for future in futures if future is not None]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        close = getattr(self._sink, 'close', None)
        if close is not None:
            close()

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            self._sink(event)
        except Exception:
            logger.exception(
                'Failed to deliver %s notification for appointment %s',
                event.kind.value,
                event.appointment_id,
            )


def build_dispatcher() -> NotificationDispatcher:
    if config.NOTIFICATION_SERVICE_URL:
        return NotificationDispatcher(sink=HttpNotificationSink(config.NOTIFICATION_SERVICE_URL))
    return NotificationDispatcher()
