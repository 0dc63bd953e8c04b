"""Shared fixtures: in-memory database seeded with maintenance reference data."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cmms_core import models
from cmms_core.config import Settings
from cmms_core.services import WorkOrderService

SYSTEM_USER = 1
REQUESTER = 2
SUPERVISOR = 3
TECHNICIAN = 4
OTHER_TECHNICIAN = 5

ASSET_ID = 7
ROUTINE_ID = 3
PREVENTIVE_CATEGORY = 1
CORRECTIVE_CATEGORY = 2
PREVENTIVE_TYPE = 1
CORRECTIVE_TYPE = 2
FORM_VERSION_ID = 1
REQUIRED_TASKS = (1, 2)
OPTIONAL_TASK = 3


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    _seed(session)
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", system_actor_id=SYSTEM_USER)


@pytest.fixture
def service(db, settings):
    return WorkOrderService(db, settings=settings)


@pytest.fixture
def manual_order_data():
    return {
        "title": "Replace leaking seal",
        "description": "Seal on pump 7 is dripping",
        "work_order_category_id": CORRECTIVE_CATEGORY,
        "work_order_type_id": CORRECTIVE_TYPE,
        "asset_id": ASSET_ID,
        "source_type": "manual",
        "form_version_id": FORM_VERSION_ID,
    }


@pytest.fixture
def work_order(service, manual_order_data):
    """A manual corrective work order in requested status."""
    return service.create(manual_order_data, REQUESTER)


@pytest.fixture
def scheduled_order(service, work_order):
    """The manual work order advanced to scheduled for TECHNICIAN tomorrow 08:00-12:00."""
    start = datetime.utcnow().replace(hour=8, minute=0, second=0, microsecond=0) + timedelta(days=1)
    service.approve(work_order, SUPERVISOR)
    service.plan(work_order, SUPERVISOR, {"estimated_hours": 4, "estimated_labor_cost": 200})
    return service.schedule(work_order, SUPERVISOR, {
        "scheduled_start_date": start,
        "scheduled_end_date": start + timedelta(hours=4),
        "assigned_technician_id": TECHNICIAN,
    })


def _seed(db):
    now = datetime.utcnow()

    db.add_all([
        models.User(id=SYSTEM_USER, name="System"),
        models.User(id=REQUESTER, name="Operator"),
        models.User(id=SUPERVISOR, name="Supervisor"),
        models.User(id=TECHNICIAN, name="Technician A"),
        models.User(id=OTHER_TECHNICIAN, name="Technician B"),
    ])
    db.add(models.Asset(id=ASSET_ID, tag="PUMP-007", name="Cooling water pump", current_runtime_hours=1200))

    db.add_all([
        models.WorkOrderCategory(
            id=PREVENTIVE_CATEGORY,
            code="preventive",
            name="Preventive",
            discipline="maintenance",
            allowed_source_types=["manual", "routine"],
        ),
        models.WorkOrderCategory(
            id=CORRECTIVE_CATEGORY,
            code="corrective",
            name="Corrective",
            discipline="maintenance",
            allowed_source_types=["manual", "work_order"],
        ),
    ])
    db.flush()
    db.add_all([
        models.WorkOrderType(
            id=PREVENTIVE_TYPE,
            work_order_category_id=PREVENTIVE_CATEGORY,
            code="lubrication",
            name="Lubrication PM",
            auto_approve_from_routine=True,
        ),
        models.WorkOrderType(
            id=CORRECTIVE_TYPE,
            work_order_category_id=CORRECTIVE_CATEGORY,
            code="repair",
            name="Repair",
        ),
    ])

    db.add(models.Form(id=1, name="Pump checklist", current_version_id=FORM_VERSION_ID))
    db.flush()
    db.add(models.FormVersion(id=FORM_VERSION_ID, form_id=1, version_number=1))
    db.flush()
    db.add_all([
        models.FormTask(id=1, form_version_id=FORM_VERSION_ID, description="Isolate pump", position=1),
        models.FormTask(id=2, form_version_id=FORM_VERSION_ID, description="Check seal", position=2),
        models.FormTask(
            id=OPTIONAL_TASK, form_version_id=FORM_VERSION_ID, description="Photograph", position=3,
            is_required=False,
        ),
    ])

    db.add(models.Routine(
        id=ROUTINE_ID,
        asset_id=ASSET_ID,
        name="Pump lubrication",
        trigger_type="calendar_days",
        trigger_calendar_days=30,
        execution_mode="automatic",
        advance_generation_hours=24,
        priority_score=50,
        last_execution_completed_at=now - timedelta(days=31),
        form_id=1,
        active_form_version_id=FORM_VERSION_ID,
    ))
    db.commit()
