"""Seed script for demo data. Run with: python seed.py [--if-empty]"""
import argparse
import asyncio
import json
from pathlib import Path

from sqlalchemy import select

from smartdesk.database import async_session, engine
from smartdesk.models import Base, Department, SlaPolicy, Tenant, User
from smartdesk.models.base import TicketPriority, UserRole

DEMO_TENANT = "Demo Company"

SEED_PATHS = [
    Path("/config/seed.json"),
    Path(__file__).resolve().parent / "seed.json",
]

DEFAULT_DEPARTMENTS = [
    {"name": "Technical Support", "description": "Product and platform issues"},
    {"name": "Billing", "description": "Invoices, refunds and payment questions"},
]

DEFAULT_USERS = [
    {"full_name": "Ada Admin", "email": "admin@demo.example", "role": "admin"},
    {"full_name": "Morgan Manager", "email": "manager@demo.example", "role": "manager",
     "department": "Technical Support"},
    {"full_name": "Alex Agent", "email": "alex@demo.example", "role": "agent",
     "department": "Technical Support"},
    {"full_name": "Sam Agent", "email": "sam@demo.example", "role": "agent",
     "department": "Technical Support"},
    {"full_name": "Robin Agent", "email": "robin@demo.example", "role": "agent",
     "department": "Billing"},
    {"full_name": "Casey Customer", "email": "casey@customer.example", "role": "customer"},
]

# (first response hours, resolution hours) per priority
TENANT_POLICIES = {
    TicketPriority.critical: (1, 4),
    TicketPriority.urgent: (2, 8),
    TicketPriority.high: (4, 24),
    TicketPriority.normal: (8, 48),
    TicketPriority.low: (24, 120),
}

# Faster queue for technical support
DEPARTMENT_POLICIES = {
    "Technical Support": {
        TicketPriority.critical: (1, 2),
        TicketPriority.urgent: (1, 4),
    },
}


def load_seed_data() -> tuple[list[dict], list[dict]]:
    """Load departments and users from seed.json, falling back to built-in demo data."""
    seed_file = next((p for p in SEED_PATHS if p.exists()), None)
    if seed_file is None:
        return DEFAULT_DEPARTMENTS, DEFAULT_USERS

    with open(seed_file) as f:
        data = json.load(f)

    departments = data.get("departments", [])
    users = data.get("users", [])
    print(f"Loaded {len(departments)} departments and {len(users)} users from {seed_file}")
    return departments, users


async def seed(if_empty: bool = False):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as db:
        # Check if already seeded
        existing = await db.execute(select(Tenant).where(Tenant.name == DEMO_TENANT))
        if existing.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return
        if if_empty and (await db.execute(select(Tenant).limit(1))).first():
            print("Database is not empty. Skipping.")
            return

        tenant = Tenant(name=DEMO_TENANT)
        db.add(tenant)
        await db.flush()

        seed_departments, seed_users = load_seed_data()

        department_map = {}
        for d in seed_departments:
            department = Department(tenant_id=tenant.id, **d)
            db.add(department)
            department_map[d["name"]] = department
        await db.flush()

        for u in seed_users:
            department_name = u.get("department")
            user_data = {k: v for k, v in u.items() if k != "department"}
            user_data["role"] = UserRole(user_data["role"])
            department = department_map.get(department_name) if department_name else None
            db.add(
                User(
                    tenant_id=tenant.id,
                    department_id=department.id if department else None,
                    **user_data,
                )
            )

        for priority, (first_response, resolution) in TENANT_POLICIES.items():
            db.add(
                SlaPolicy(
                    tenant_id=tenant.id,
                    name=f"Default {priority.value}",
                    priority=priority,
                    first_response_time_hours=first_response,
                    resolution_time_hours=resolution,
                )
            )
        for department_name, policies in DEPARTMENT_POLICIES.items():
            department = department_map.get(department_name)
            if department is None:
                continue
            for priority, (first_response, resolution) in policies.items():
                db.add(
                    SlaPolicy(
                        tenant_id=tenant.id,
                        department_id=department.id,
                        name=f"{department_name} {priority.value}",
                        priority=priority,
                        first_response_time_hours=first_response,
                        resolution_time_hours=resolution,
                    )
                )

        await db.commit()

        print("=" * 60)
        print("Seed data created successfully!")
        print(f"Tenant: {DEMO_TENANT} ({tenant.id})")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--if-empty", action="store_true", help="Only seed if database is empty")
    args = parser.parse_args()
    asyncio.run(seed(if_empty=args.if_empty))
