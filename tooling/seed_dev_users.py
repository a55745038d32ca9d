"""Seed development users and loyalty setting defaults into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backoffice_api.core.settings import settings
from backoffice_api.db.session import enable_sqlite_savepoints
from backoffice_api.models.user import User
from backoffice_api.services.settings import LOYALTY_SETTING_DEFAULTS, SettingsStore


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str
    status: str


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_SHORTCUT_CUSTOMER_EMAIL", "customer@backoffice.dev").lower(),
        "display_name": "Customer QA",
        "role": "customer",
        "status": "active",
    },
    {
        "email": os.getenv("DEV_SHORTCUT_ADMIN_EMAIL", "admin@backoffice.dev").lower(),
        "display_name": "Admin QA",
        "role": "admin",
        "status": "active",
    },
]


async def seed_users(session: AsyncSession) -> None:
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.display_name = user["display_name"]
            record.role = user["role"].lower()
            record.status = user["status"].lower()
        else:
            session.add(
                User(
                    email=user["email"],
                    display_name=user["display_name"],
                    role=user["role"].lower(),
                    status=user["status"].lower(),
                )
            )
    await session.commit()


async def seed_loyalty_settings(session: AsyncSession, *, enable: bool) -> None:
    """Write default loyalty settings for keys that have never been stored."""

    store = SettingsStore(session)
    existing = await store.get_many(LOYALTY_SETTING_DEFAULTS)
    for key, default in LOYALTY_SETTING_DEFAULTS.items():
        if key in existing:
            continue
        value = True if key == "loyalty_enabled" and enable else default.value
        await store.set_setting(
            key,
            value,
            type=default.type,
            description=default.description,
        )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_users(session)
            await seed_loyalty_settings(session, enable=os.getenv("DEV_LOYALTY_ENABLED", "true").lower() == "true")
        print("Development users and loyalty settings ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
