import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RUN_QUEUE_WORKERS", "false")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import pytest
from datetime import timedelta
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.config import settings
from app.core.services import Services, build_services
from app.database import Base, import_models
from app.main import create_app
from app.models.appointment import Appointment
from app.models.base import utcnow, new_id
from app.models.customer import Customer
from app.models.organization import Organization
from app.models.service_job import ServiceJob
from app.models.user import User, UserRole
from app.services.twilio_client import TwilioClient, TwilioError
from app.utils.quiet_hours import get_timezone, to_local

# A window that never matches: start == end
NEVER_QUIET = {"quiet_hours_start": "00:00", "quiet_hours_end": "00:00"}

API_KEY = "test-admin-key"


class FakeTwilio(TwilioClient):
	"""Configured Twilio client that records sends instead of calling the API"""

	def __init__(self, error: TwilioError = None):
		super().__init__(account_sid="AC_test", auth_token="token")
		self.error = error
		self.sent = []

	async def send_message(self, to: str, from_number: str, body: str) -> str:
		if self.error is not None:
			raise self.error
		self.sent.append({"to": to, "from": from_number, "body": body})
		return f"SM{len(self.sent):032d}"


@pytest.fixture
async def engine(tmp_path):
	"""Create a per-test SQLite database"""
	import_models()
	engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	yield engine

	await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
	return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
	"""Create a test database session"""
	async with session_factory() as session:
		yield session


@pytest.fixture
def twilio() -> TwilioClient:
	"""Unconfigured client: sends go through the mock path"""
	return TwilioClient(account_sid=None, auth_token=None)


@pytest.fixture
async def services(session_factory, twilio) -> AsyncGenerator[Services, None]:
	services = build_services(session_factory, twilio=twilio)
	yield services
	await services.stop_workers()


@pytest.fixture
async def client(services: Services, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
	"""Create a test client"""
	monkeypatch.setattr(settings, "ADMIN_API_KEY", API_KEY)
	app = create_app(services=services, run_workers=False)

	async with AsyncClient(
			transport=ASGITransport(app=app),
			base_url="http://test",
			headers={"X-API-Key": API_KEY}
	) as client:
		yield client


@pytest.fixture
async def organization(db_session: AsyncSession) -> Organization:
	org = Organization(
		id=new_id(),
		name="Acme Plumbing",
		timezone="America/New_York",
		phone_number="+15550001111",
		settings={"ai_settings": dict(NEVER_QUIET)},
	)
	db_session.add(org)
	await db_session.commit()
	return org


@pytest.fixture
async def customer(db_session: AsyncSession, organization: Organization) -> Customer:
	customer = Customer(
		id=new_id(),
		organization_id=organization.id,
		first_name="Jane",
		last_name="Doe",
		phone="+15552223333",
	)
	db_session.add(customer)
	await db_session.commit()
	return customer


@pytest.fixture
async def technician(db_session: AsyncSession, organization: Organization) -> User:
	user = User(
		id=new_id(),
		organization_id=organization.id,
		email="tech@acme.test",
		first_name="Bob",
		last_name="Smith",
		role=UserRole.TECHNICIAN,
	)
	db_session.add(user)
	await db_session.commit()
	return user


@pytest.fixture
async def appointment(db_session: AsyncSession, organization, customer, technician) -> Appointment:
	appointment = Appointment(
		id=new_id(),
		organization_id=organization.id,
		customer_id=customer.id,
		assigned_to_id=technician.id,
		scheduled_at=utcnow() + timedelta(days=3),
		status="scheduled",
		appointment_metadata={},
	)
	db_session.add(appointment)
	await db_session.commit()
	return appointment


@pytest.fixture
async def service_job(db_session: AsyncSession, organization, customer, technician) -> ServiceJob:
	job = ServiceJob(
		id=new_id(),
		organization_id=organization.id,
		customer_id=customer.id,
		technician_id=technician.id,
		title="Replace water heater",
		type="plumbing",
		status="in_progress",
	)
	db_session.add(job)
	await db_session.commit()
	return job


@pytest.fixture
def quiet_now(session_factory):
	"""Put an organization inside a quiet-hours window around the current time"""

	async def apply(organization_id: str):
		local = to_local(utcnow(), get_timezone("America/New_York"))
		start = (local - timedelta(hours=1)).strftime("%H:%M")
		end = (local + timedelta(hours=1)).strftime("%H:%M")

		async with session_factory() as db:
			org = await db.get(Organization, organization_id)
			org.settings = {"ai_settings": {"quiet_hours_start": start, "quiet_hours_end": end}}
			await db.commit()

	return apply


@pytest.fixture
def fake_twilio() -> FakeTwilio:
	return FakeTwilio()


@pytest.fixture
async def make_services(session_factory):
	"""Build an extra service set around a FakeTwilio that raises the given error"""
	built = []

	def make(error: TwilioError = None) -> Services:
		services = build_services(session_factory, twilio=FakeTwilio(error=error))
		built.append(services)
		return services

	yield make

	for services in built:
		await services.stop_workers()
