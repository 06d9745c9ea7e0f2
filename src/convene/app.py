from dataclasses import dataclass
from typing import Callable

from redis import Redis
from rq import Queue

from convene.activity import ActivityLog
from convene.appointment import AppointmentRepository
from convene.audience import AudienceRepository, MembershipRepository
from convene.booking import (
    AudienceBookingRepository,
    BookingAssociationRepository,
    BookingService,
    ConflictDetector,
)
from convene.cache import build_cache
from convene.config import Config, config as default_config
from convene.context import anonymous_actor, no_admins, utcnow
from convene.custom_field import CustomFieldRepository, UserFieldDataRepository
from convene.db import PostgresStore
from convene.environment import EnvironmentRepository
from convene.privacy import PrivacyService
from convene.reregistration import ReregistrationRepository
from convene.schedule import ScheduleRepository


@dataclass
class App:
    config: Config
    store: object
    cache: object
    audiences: AudienceRepository
    memberships: MembershipRepository
    custom_fields: CustomFieldRepository
    user_field_data: UserFieldDataRepository
    schedules: ScheduleRepository
    environments: EnvironmentRepository
    associations: BookingAssociationRepository
    bookings: AudienceBookingRepository
    conflicts: ConflictDetector
    booking_service: BookingService
    appointments: AppointmentRepository
    reregistrations: ReregistrationRepository
    activity: ActivityLog
    privacy: PrivacyService

    def task_queue(self, name: str = "default") -> Queue:
        return Queue(name, connection=Redis.from_url(self.config.redis_url))


def create_app(
    config: Config | None = None,
    store=None,
    cache=None,
    clock: Callable = utcnow,
    actor: Callable[[], int] = anonymous_actor,
    is_admin: Callable[[int], bool] = no_admins,
) -> App:
    """Application factory: one Store and one Cache shared by every component."""
    config = config or default_config
    store = store if store is not None else PostgresStore(config.database_url)
    cache = cache if cache is not None else build_cache(config)

    audiences = AudienceRepository(store, cache, clock, actor, config.max_hierarchy_depth)
    memberships = MembershipRepository(store, audiences, cache, clock)
    custom_fields = CustomFieldRepository(store, audiences, memberships, cache, clock)
    user_field_data = UserFieldDataRepository(store, clock)
    schedules = ScheduleRepository(store, cache, clock, actor, is_admin)
    environments = EnvironmentRepository(store, cache, clock)
    associations = BookingAssociationRepository(store, cache)
    bookings = AudienceBookingRepository(store, cache, associations, clock, actor)
    conflicts = ConflictDetector(store)
    activity = ActivityLog(
        store, clock, config.activity_log_enabled, config.activity_log_buffer_size
    )

    return App(
        config=config,
        store=store,
        cache=cache,
        audiences=audiences,
        memberships=memberships,
        custom_fields=custom_fields,
        user_field_data=user_field_data,
        schedules=schedules,
        environments=environments,
        associations=associations,
        bookings=bookings,
        conflicts=conflicts,
        booking_service=BookingService(
            store, bookings, conflicts, environments, activity, schedules
        ),
        appointments=AppointmentRepository(store, cache, clock, actor),
        reregistrations=ReregistrationRepository(store, audiences, memberships, clock, actor),
        activity=activity,
        privacy=PrivacyService(
            memberships, custom_fields, user_field_data, associations, bookings, activity, schedules
        ),
    )
