import os
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid
from datetime import date, time

sys.path.append(str(Path(__file__).resolve().parents[2]))

from diversion.main import app
from diversion.database import Base, get_db
from diversion import models, schemas
from diversion.services import issuance

SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def clean_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def create_patient(
    db,
    *,
    first_name: str = "Jordan",
    last_name: str = "Rivera",
    phone: str | None = None,
    email: str | None = None,
    home: tuple[float, float] | None = None,
    geofence_radius: float | None = None,
) -> models.Patient:
    """
    purpose: seed a patient (and optionally a geocoded home address) for take-home tests
    outputs: committed Patient row
    status: active
    """

    patient = models.Patient(
        first_name=first_name,
        last_name=last_name,
        mrn=f"MRN-{uuid.uuid4().hex[:8]}",
        phone=phone,
        email=email,
    )
    db.add(patient)
    db.flush()
    if home is not None:
        db.add(
            models.PatientHomeAddress(
                patient_id=patient.id,
                street_address="100 Woodward Ave",
                latitude=home[0],
                longitude=home[1],
                geofence_radius_meters=geofence_radius,
                is_active=True,
            )
        )
    db.commit()
    db.refresh(patient)
    return patient


def issue_bottles(
    db,
    patient_id,
    *,
    count: int = 3,
    start: date = date(2024, 1, 1),
    window: tuple[time, time] | None = None,
) -> list[models.TakeHomeBottle]:
    payload = schemas.KitIssueRequest(
        patient_id=patient_id,
        medication_name="Methadone",
        dose_amount=80,
        bottle_count=count,
        start_date=start,
        dispensed_by="nurse-1",
        dosing_window=schemas.DosingWindow(start=window[0], end=window[1]) if window else None,
    )
    bottles = issuance.issue_kit(db, payload)
    db.commit()
    for bottle in bottles:
        db.refresh(bottle)
    return bottles
