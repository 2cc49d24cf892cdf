"""
Shared fixtures: in-memory database, actors, recording mailer, API client.

The environment is set before ``case_ledger`` is imported so settings (and the
module-level engine) pick up SQLite instead of PostgreSQL.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ESCALATION_SWEEP_ENABLED", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from case_ledger.core import LoginThrottle, create_access_token, get_session  # noqa: E402
from case_ledger.core.identifiers import generate_account_id, generate_case_id  # noqa: E402
from case_ledger.jobs import EscalationSupervisor  # noqa: E402
from case_ledger.models import (  # noqa: E402
    Base,
    Case,
    CaseState,
    CaseType,
    ConfirmedClient,
    Lead,
    LeadStatus,
    Role,
)
from case_ledger.services import Actor, StaffService  # noqa: E402
from case_ledger.services.mailer import MailChannel, Mailer, get_mailer  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

STAFF = {
    "admirim": Role.ADMIN,
    "lenci": Role.MANAGER,
    "kejdi1": Role.INTAKE,
    "kejdi2": Role.INTAKE,
    "kejdi": Role.CONSULTANT,
    "albert": Role.CONSULTANT,
}
PASSWORD = "correct-horse-battery"


# =============================================================================
# MAIL
# =============================================================================


class RecordingChannel(MailChannel):
    """Captures outbound mail instead of sending it."""

    def __init__(self):
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> tuple[bool, str | None]:
        self.sent.append({"to": to, "subject": subject, "body": body})
        return True, None


@pytest.fixture
def mailer() -> Mailer:
    return Mailer(RecordingChannel())


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# ACTORS
# =============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor.for_username("admirim", Role.ADMIN)


@pytest.fixture
def manager() -> Actor:
    return Actor.for_username("lenci", Role.MANAGER)


@pytest.fixture
def intake() -> Actor:
    return Actor.for_username("kejdi1", Role.INTAKE)


@pytest.fixture
def other_intake() -> Actor:
    return Actor.for_username("kejdi2", Role.INTAKE)


@pytest.fixture
def consultant() -> Actor:
    return Actor.for_username("kejdi", Role.CONSULTANT)


# =============================================================================
# RECORD FACTORIES
# =============================================================================


@pytest.fixture
def make_lead(session):
    """Insert a lead directly, bypassing the services."""

    async def _make(
        name: str = "Ana Hoxha",
        status: LeadStatus = LeadStatus.INTAKE,
        assigned_to: str = "Kejdi 1",
        created_by: str = "kejdi1",
        registered_at: datetime = T0,
        status_changed_at: datetime | None = None,
        **extra: Any,
    ) -> Lead:
        history = [{"status": LeadStatus.INTAKE.value, "date": registered_at.isoformat(), "changed_by": created_by}]
        if status != LeadStatus.INTAKE:
            history.append({
                "status": status.value,
                "date": (status_changed_at or registered_at).isoformat(),
                "changed_by": created_by,
            })
        lead = Lead(
            customer_id=generate_account_id(created_by),
            name=name,
            email=extra.pop("email", "ana@example.com"),
            status=status,
            assigned_to=assigned_to,
            created_by=created_by,
            registered_at=registered_at,
            status_history=history,
            services=extra.pop("services", []),
            proposal_fields=extra.pop("proposal_fields", {}),
            version=1,
            **extra,
        )
        session.add(lead)
        await session.commit()
        return lead

    return _make


@pytest.fixture
def make_client(session):
    async def _make(
        name: str = "Besa Krasniqi",
        assigned_to: str = "Kejdi",
        created_by: str = "admirim",
        **extra: Any,
    ) -> ConfirmedClient:
        client = ConfirmedClient(
            customer_id=generate_account_id(created_by),
            name=name,
            email=extra.pop("email", "besa@example.com"),
            status=LeadStatus.CLIENT,
            assigned_to=assigned_to,
            created_by=created_by,
            registered_at=T0,
            status_history=[{"status": "CLIENT", "date": T0.isoformat(), "changed_by": created_by}],
            services=[],
            proposal_fields={},
            confirmed_at=T0,
            version=1,
            **extra,
        )
        session.add(client)
        await session.commit()
        return client

    return _make


@pytest.fixture
def make_case(session):
    async def _make(
        customer_id: str,
        case_type: CaseType = CaseType.CUSTOMER,
        assigned_to: str = "Kejdi 1",
        state: CaseState = CaseState.INTAKE,
        created_by: str = "kejdi1",
    ) -> Case:
        case = Case(
            case_id=generate_case_id("CC" if case_type == CaseType.CUSTOMER else "CL", created_by),
            customer_id=customer_id,
            case_type=case_type,
            state=state,
            title="Residency permit",
            category="immigration",
            priority="medium",
            assigned_to=assigned_to,
            created_by=created_by,
            last_state_change=T0,
            version=1,
        )
        session.add(case)
        await session.commit()
        return case

    return _make


# =============================================================================
# API
# =============================================================================


@pytest.fixture
async def staff_users(session):
    service = StaffService(session)
    for username, role in STAFF.items():
        await service.create_user(username, PASSWORD, role)
    await session.commit()
    return STAFF


@pytest.fixture
def auth_headers(staff_users):
    def _headers(username: str) -> dict[str, str]:
        token = create_access_token(username=username, role=staff_users[username].value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def app(session_factory, mailer):
    from case_ledger.main import app as fastapi_app

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = _session
    fastapi_app.dependency_overrides[get_mailer] = lambda: mailer

    # ASGITransport does not run the lifespan
    fastapi_app.state.login_throttle = LoginThrottle(max_attempts=3, window_seconds=600)
    fastapi_app.state.escalation = EscalationSupervisor(session_factory, mailer=mailer)

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def hours_after(hours: float, start: datetime = T0) -> datetime:
    return start + timedelta(hours=hours)
