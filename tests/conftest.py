from collections.abc import AsyncGenerator, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from smartdesk.config import settings
from smartdesk.database import enable_sqlite_savepoints, get_db
from smartdesk.main import create_app
from smartdesk.models import Base, Department, SlaPolicy, Tenant, Ticket, User
from smartdesk.models.base import TicketPriority, UserRole
from smartdesk.schemas.ticket import TicketCreate
from smartdesk.services import notification_service, ticket_service

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest.fixture(autouse=True)
def _no_background_monitor(monkeypatch):
    monkeypatch.setattr(settings, "sla_monitor_enabled", False)


@pytest.fixture
async def engine():
    """A fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the FastAPI app with test DB override."""
    app = create_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def events() -> list[tuple[str, str]]:
    """Collect (ticket_number, event) pairs sent to the notification sink."""
    received: list[tuple[str, str]] = []

    def capture(ticket, event):
        received.append((ticket.ticket_number, event.value))

    notification_service.register_handler(capture)
    yield received
    notification_service.unregister_handler(capture)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


@pytest.fixture
async def tenant(db: AsyncSession) -> Tenant:
    tenant = Tenant(name="Acme")
    db.add(tenant)
    await db.commit()
    return tenant


@pytest.fixture
async def support(db: AsyncSession, tenant: Tenant) -> Department:
    department = Department(tenant_id=tenant.id, name="Support")
    db.add(department)
    await db.commit()
    return department


@pytest.fixture
async def billing(db: AsyncSession, tenant: Tenant) -> Department:
    department = Department(tenant_id=tenant.id, name="Billing")
    db.add(department)
    await db.commit()
    return department


@pytest.fixture
def make_user(db: AsyncSession, tenant: Tenant) -> Callable:
    """Factory for users of the test tenant."""

    async def _make(
        full_name: str,
        role: UserRole = UserRole.agent,
        department: Department | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            tenant_id=tenant.id,
            department_id=department.id if department else None,
            email=f"{full_name.lower().replace(' ', '.')}@acme.example",
            full_name=full_name,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
async def agent(make_user, support: Department) -> User:
    return await make_user("Alex Agent", UserRole.agent, support)


@pytest.fixture
async def manager(make_user, support: Department) -> User:
    return await make_user("Morgan Manager", UserRole.manager, support)


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("Ada Admin", UserRole.admin)


@pytest.fixture
async def customer(make_user) -> User:
    return await make_user("Casey Customer", UserRole.customer)


# ---------------------------------------------------------------------------
# SLA policies and tickets
# ---------------------------------------------------------------------------


@pytest.fixture
async def tenant_policies(db: AsyncSession, tenant: Tenant) -> dict[TicketPriority, SlaPolicy]:
    """Tenant-wide policies: (first response, resolution) hours per priority."""
    targets = {
        TicketPriority.critical: (1, 4),
        TicketPriority.urgent: (2, 8),
        TicketPriority.high: (4, 12),
        TicketPriority.normal: (4, 24),
        TicketPriority.low: (24, 72),
    }
    policies = {}
    for priority, (first_response, resolution) in targets.items():
        policy = SlaPolicy(
            tenant_id=tenant.id,
            name=f"Default {priority.value}",
            priority=priority,
            first_response_time_hours=first_response,
            resolution_time_hours=resolution,
        )
        db.add(policy)
        policies[priority] = policy
    await db.commit()
    return policies


@pytest.fixture
def make_ticket(db: AsyncSession, tenant: Tenant) -> Callable:
    """Factory creating tickets through the service layer."""

    async def _make(
        title: str = "Printer on fire",
        priority: TicketPriority = TicketPriority.normal,
        department: Department | None = None,
        creator: User | None = None,
    ) -> Ticket:
        data = TicketCreate(
            tenant_id=tenant.id,
            title=title,
            description="It is very much on fire.",
            priority=priority,
            department_id=department.id if department else None,
        )
        ticket = await ticket_service.create_ticket(db, data, creator.id if creator else None)
        await db.commit()
        return ticket

    return _make


def actor_header(user: User) -> dict:
    """Helper to create the X-Actor-Id header."""
    return {"X-Actor-Id": str(user.id)}
