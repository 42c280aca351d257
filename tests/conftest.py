import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bikemanager.db.base import Base
from bikemanager.models import Bike, ScheduledMaintenance, User, UserEmailPreference
from bikemanager.reminders.config import ReminderSettings
from bikemanager.reminders.exceptions import NotifierError
from bikemanager.reminders.notifier import SendResult
from bikemanager.reminders.schemas import EmailJob, MaintenanceReminderData

SAO_PAULO = ZoneInfo("America/Sao_Paulo")
UTC = dt_timezone.utc


def local(year, month, day, hour=0, minute=0, second=0) -> datetime:
    """A Sao Paulo wall-clock time expressed in UTC (how rows are stored)."""
    return datetime(year, month, day, hour, minute, second, tzinfo=SAO_PAULO).astimezone(UTC)


class ManualClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeNotifier:
    """Records sends; fails the first `fail_times` calls."""

    def __init__(self, fail_times: int = 0, result: SendResult = None):
        self.calls = []
        self.fail_times = fail_times
        self.result = result

    def send_maintenance_reminder(
        self,
        recipient_email,
        recipient_name,
        bike_name,
        service_description,
        due_date,
        *,
        bike_id=None,
        days_until=None,
    ):
        self.calls.append(
            {
                "recipient_email": recipient_email,
                "recipient_name": recipient_name,
                "bike_name": bike_name,
                "service_description": service_description,
                "due_date": due_date,
                "bike_id": bike_id,
                "days_until": days_until,
            }
        )
        if self.fail_times > 0:
            self.fail_times -= 1
            raise NotifierError("provider unavailable")
        return self.result or SendResult(success=True, message_id=f"<msg-{len(self.calls)}@bikemanager.test>")


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def zrem(self, *args):
        self.calls.append(("zrem", args))

    def zadd(self, *args):
        self.calls.append(("zadd", args))

    def execute(self):
        for name, args in self.calls:
            getattr(self.client, name)(*args)
        self.calls = []


class FakeRedis:
    """The subset of redis.Redis the ledger uses (decode_responses=True semantics)."""

    def __init__(self):
        self.strings = {}
        self.ttls = {}
        self.zsets = {}
        self.closed = False

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.strings:
            return None
        self.strings[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key):
        return self.strings.get(key)

    def delete(self, key):
        self.strings.pop(key, None)
        self.ttls.pop(key, None)

    def pipeline(self):
        return FakePipeline(self)

    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zrem(self, key, member):
        self.zsets.get(key, {}).pop(member, None)

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def zremrangebyrank(self, key, start, end):
        ranked = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1])
        if end < 0:
            end = len(ranked) + end
        doomed = ranked[start:end + 1] if end >= start else []
        for member, _ in doomed:
            del self.zsets[key][member]
        return len(doomed)

    def zremrangebyscore(self, key, low, high):
        doomed = [m for m, score in self.zsets.get(key, {}).items() if score <= high]
        for member in doomed:
            del self.zsets[key][member]
        return len(doomed)

    def close(self):
        self.closed = True


class FakeCeleryApp:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.closed = False

    def send_task(self, name, args=None, **options):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.sent.append({"name": name, "args": args, **options})

    def close(self):
        self.closed = True


def make_job(sm_id: str = "sm-1", user_id: str = "user-1", days_until: int = 3, job_type: str = "maintenance-reminder") -> EmailJob:
    return EmailJob(
        type=job_type,
        data=MaintenanceReminderData(
            user_id=user_id,
            scheduled_maintenance_id=sm_id,
            bike_name="Trek Domane",
            service_description="Chain and cassette replacement",
            scheduled_date=datetime(2026, 10, 22, 3, 0, tzinfo=UTC),
            days_until=days_until,
        ),
    )


def seed_maintenance(
    db,
    scheduled_date: datetime,
    notification_days_before=3,
    *,
    is_completed: bool = False,
    reminders_enabled=None,
    bike_name: str = "Trek Domane",
    service_description: str = "Chain and cassette replacement",
) -> ScheduledMaintenance:
    user = User(email=f"rider-{uuid.uuid4().hex[:8]}@example.com", name="Alex Rider")
    bike = Bike(name=bike_name, owner=user)
    maintenance = ScheduledMaintenance(
        bike=bike,
        scheduled_date=scheduled_date,
        service_description=service_description,
        notification_days_before=notification_days_before,
        is_completed=is_completed,
    )
    db.add_all([user, bike, maintenance])
    if reminders_enabled is not None:
        db.add(UserEmailPreference(user=user, maintenance_reminders=reminders_enabled))
    db.commit()
    return maintenance


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def reminder_settings():
    return ReminderSettings(
        ENABLED=False,
        RUN_ON_STARTUP=False,
        QUEUE_BACKEND="memory",
        TIMEZONE="America/Sao_Paulo",
        CRON="0 9 * * *",
        WORKER_CONCURRENCY=1,
        METRICS_ENABLED=False,
    )


@pytest.fixture
def notifier():
    return FakeNotifier()
