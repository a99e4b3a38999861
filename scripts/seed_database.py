#!/usr/bin/env python3
"""
Database seeding script for the investment platform backend.

This script populates the database with initial data including:
- The default investment plans
- Admin user
- A funded sample user for development
"""

import asyncio
import sys
import os

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession
from invest_backend.core.database import AsyncSessionLocal, init_db, engine
from invest_backend.core.config import settings
from invest_backend.core.errors import DuplicateError
from invest_backend.services.catalog_service import CatalogService
from invest_backend.services.user_service import UserService


DEFAULT_ADMIN_PASSWORD = "admin123"


async def create_admin_user(db: AsyncSession):
    """Create default admin user."""
    print("Creating admin user...")

    password = settings.admin_password or DEFAULT_ADMIN_PASSWORD
    admin = await UserService(db).ensure_admin_user(
        phone_number=settings.admin_phone_number,
        username=settings.admin_username,
        password=password
    )

    print(f"Admin user ready: {admin.phone_number} (referral code {admin.referral_code})")
    if not settings.admin_password:
        print(f"   Using the default password '{DEFAULT_ADMIN_PASSWORD}'; set ADMIN_PASSWORD in production")


async def create_products(db: AsyncSession):
    """Insert the default investment plans."""
    print("Creating default products...")

    inserted = await CatalogService(db).seed_default_products()
    if inserted:
        print(f"Added {inserted} products")
    else:
        print("Products already exist")


async def create_sample_test_user(db: AsyncSession):
    """Create a sample test user with recharge balance for development."""
    print("Creating test user...")

    user_service = UserService(db)
    try:
        user = await user_service.create_user(
            name="Test User",
            username="testuser",
            phone_number="9000000001",
            password="test123"
        )
    except DuplicateError:
        print("Test user already exists")
        return

    await user_service.update_user_fields(user.id, {"recharge_balance": 5000})

    print("Test user created: 9000000001 (Password: test123)")
    print("Test user recharge balance: ₹5,000.00")


async def main():
    """Main seeding function."""
    print("Starting database seeding...")
    print(f"Environment: {settings.environment}")
    print(f"Database URL: {settings.database_url}")

    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await create_admin_user(db)
            await create_products(db)

            # Only create test user in development
            if settings.environment == "development":
                await create_sample_test_user(db)

            print("\n✅ Database seeding completed successfully!")
            print("\n🚀 You can now start the application with: uvicorn invest_backend.main:app --reload")

        except Exception as e:
            print(f"❌ Error during seeding: {e}")
            await db.rollback()
            raise

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
