"""Process-wide service instances handed to routes through FastAPI dependencies."""

from functools import lru_cache

from clinic_scheduler.database import SessionLocal
from clinic_scheduler.scheduling.notifications import NotificationDispatcher, build_dispatcher
from clinic_scheduler.scheduling.schedules import ScheduleManager
from clinic_scheduler.scheduling.service import SchedulingService


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return build_dispatcher()


@lru_cache
def get_scheduling_service() -> SchedulingService:
    return SchedulingService(SessionLocal, get_dispatcher())


@lru_cache
def get_schedule_manager() -> ScheduleManager:
    return ScheduleManager(SessionLocal, get_dispatcher())


def shutdown_services() -> None:
    if get_dispatcher.cache_info().currsize:
        get_dispatcher().shutdown(wait=False)
    get_scheduling_service.cache_clear()
    get_schedule_manager.cache_clear()
    get_dispatcher.cache_clear()
