from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, Driver, WeeklyPlatformAggregate
from settlement_system.events.event_bus import eventBus
from settlement_system.utils.time_machine import timeMachine


def _build_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session_factory():
    return _build_session_factory()


@pytest.fixture
def session(session_factory):
    with session_factory() as db:
        yield db


@pytest.fixture(autouse=True)
def reset_singletons():
    eventBus.clear()
    timeMachine.resetToRealTime()
    yield
    eventBus.clear()
    timeMachine.resetToRealTime()


@pytest.fixture
def frozen_now():
    now = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
    timeMachine.setTime(now)
    return now


@pytest.fixture
def make_driver(session):
    def _make(name, **fields):
        fields.setdefault("type", "affiliate")
        fields.setdefault("status", "active")
        driver = Driver(name=name, **fields)
        session.add(driver)
        session.commit()
        return driver
    return _make


@pytest.fixture
def add_aggregate(session):
    def _add(driver, week_id, platform, value, aggregation_pass=1, trips=0):
        session.add(WeeklyPlatformAggregate(
            driverID=driver.driverID,
            weekId=week_id,
            platform=platform,
            totalValue=Decimal(str(value)),
            totalTrips=trips,
            aggregationPass=aggregation_pass
        ))
        session.commit()
    return _add
