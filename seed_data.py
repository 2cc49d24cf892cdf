#!/usr/bin/env python3
"""
Seed Data Script for Case Ledger

Creates the firm's staff roster plus a small pipeline to click through:
- 6 staff logins (admin, manager, two intake lawyers, two consultants)
- Lead A: fresh INTAKE lead (follow-up due after 24h)
- Lead B: proposal sent, WAITING_APPROVAL
- Lead C: confirmed as client with fees (auto-drafted invoice)
- One customer case under Lead A

Every record goes through the services, so history rows, audit entries and
versions look exactly like production data.

Run with: python seed_data.py
"""

import asyncio
import os

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from case_ledger.core.config import get_settings
from case_ledger.models import Base, LeadStatus, Role
from case_ledger.services import (
    AccountService,
    AccountUpdate,
    Actor,
    CaseService,
    CreateCaseInput,
    CreateLeadInput,
    LifecycleMachine,
    ScopeResolver,
    StaffService,
)
from case_ledger.services.mailer import LogMailChannel, Mailer

settings = get_settings()

STAFF = [
    ("admirim", Role.ADMIN),
    ("lenci", Role.MANAGER),
    ("kejdi1", Role.INTAKE),
    ("kejdi2", Role.INTAKE),
    ("kejdi", Role.CONSULTANT),
    ("albert", Role.CONSULTANT),
]

# Tables in delete order
TABLES = [
    "audit_log",
    "notifications",
    "portal_tokens",
    "chat_messages",
    "archived_chats",
    "archived_records",
    "invoices",
    "tasks",
    "notes",
    "case_history",
    "cases",
    "account_history",
    "confirmed_clients",
    "leads",
    "staff_users",
]


async def seed_database():
    """Main seeding function."""
    password = os.environ.get("SEED_PASSWORD", "change-me-now")

    engine = create_async_engine(settings.database_url_async, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    mailer = Mailer(LogMailChannel())

    async with async_session() as session:
        print("Starting database seed...")

        count = (await session.execute(text("SELECT COUNT(*) FROM staff_users"))).scalar()
        if count and count > 0:
            print("Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # STAFF
        # =================================================================
        print("\nCreating staff logins...")
        staff = StaffService(session)
        for username, role in STAFF:
            await staff.create_user(username, password, role)
            print(f"   + {username} ({role.value})")
        await session.commit()

        admin = Actor.for_username("admirim", Role.ADMIN)
        intake = Actor.for_username("kejdi1", Role.INTAKE)
        accounts = AccountService(session)
        lifecycle = LifecycleMachine(session, mailer)

        # =================================================================
        # LEADS
        # =================================================================
        print("\nRegistering leads...")
        lead_a = await accounts.create_lead(
            CreateLeadInput(
                name="Ana Hoxha",
                email="ana.hoxha@example.com",
                services=["residency_permit"],
            ),
            intake,
            ScopeResolver(intake),
        )

        lead_b = await accounts.create_lead(
            CreateLeadInput(
                name="Marco Bianchi",
                email="marco.bianchi@example.com",
                services=["company_formation", "tax_consulting"],
                proposal_fields={"serviceFeeALL": 120000, "translationFeeALL": 8000},
            ),
            intake,
            ScopeResolver(intake),
        )
        lead_b = await lifecycle.update_lead(
            lead_b.customer_id,
            AccountUpdate(expected_version=lead_b.version, status=LeadStatus.SEND_PROPOSAL),
            intake,
            ScopeResolver(intake),
        )
        lead_b = await lifecycle.update_lead(
            lead_b.customer_id,
            AccountUpdate(expected_version=lead_b.version, status=LeadStatus.WAITING_APPROVAL),
            intake,
            ScopeResolver(intake),
        )

        lead_c = await accounts.create_lead(
            CreateLeadInput(
                name="Elena Petrova",
                email="elena.petrova@example.com",
                services=["visa_d"],
                proposal_fields={"serviceFeeALL": 60000, "poaFeeALL": 5000},
                assigned_to="Kejdi",
            ),
            admin,
            ScopeResolver(admin),
        )
        for status in (
            LeadStatus.SEND_PROPOSAL,
            LeadStatus.WAITING_APPROVAL,
            LeadStatus.SEND_CONTRACT,
            LeadStatus.WAITING_ACCEPTANCE,
            LeadStatus.CLIENT,
        ):
            lead_c = await lifecycle.update_lead(
                lead_c.customer_id,
                AccountUpdate(expected_version=lead_c.version, status=status),
                admin,
                ScopeResolver(admin),
            )
        await session.commit()

        # =================================================================
        # CASES
        # =================================================================
        print("\nOpening cases...")
        case = await CaseService(session, mailer).create_case(
            CreateCaseInput(
                customer_id=lead_a.customer_id,
                title="Residency permit application",
                category="immigration",
                priority="high",
            ),
            intake,
            ScopeResolver(intake),
        )
        await session.commit()

    await mailer.drain()
    await engine.dispose()

    print("\n" + "=" * 60)
    print("DATABASE SEEDED SUCCESSFULLY")
    print("=" * 60)
    print(f"""
Summary:
   - {len(STAFF)} staff logins (password from SEED_PASSWORD)
   - {lead_a.customer_id}: Ana Hoxha [INTAKE]
   - {lead_b.customer_id}: Marco Bianchi [{lead_b.status.value}]
   - {lead_c.customer_id}: Elena Petrova [CLIENT, invoice drafted]
   - {case.case_id}: case under Ana Hoxha
""")


async def clear_database(session: AsyncSession):
    """Clear all data from the database."""
    for table in TABLES:
        await session.execute(text(f"DELETE FROM {table}"))
    await session.commit()
    print("   Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
