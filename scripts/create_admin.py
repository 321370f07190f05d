#!/usr/bin/env python3
"""
Bootstrap an administrator.

Creates the user (or promotes an existing one with the same phone number)
and prints a fresh bearer token for the admin endpoints.

Usage:
    python scripts/create_admin.py +15550000001 "Ops Admin"
"""

import argparse
import asyncio
import logging
import uuid

from sqlalchemy import select

from servicehub.database import async_session
from servicehub.models.user import ApprovalStatus, User, UserType
from servicehub.services.users import create_session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("servicehub.create_admin")


async def create_admin(phone: str, name: str) -> str:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.phone == phone))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(
                user_id=uuid.uuid4(),
                phone=phone,
                name=name,
                user_type=UserType.CUSTOMER,
                approval_status=ApprovalStatus.APPROVED,
            )
            db.add(user)
            logger.info("Creating admin %s", phone)
        else:
            logger.info("Promoting existing user %s", user.user_id)
        user.is_admin = True
        await db.commit()

        token, expires_at = await create_session(db, user)
        logger.info("Session valid until %s", expires_at.isoformat())
        return token


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or promote a ServiceHub admin")
    parser.add_argument("phone")
    parser.add_argument("name", nargs="?", default="Administrator")
    args = parser.parse_args()

    token = asyncio.run(create_admin(args.phone, args.name))
    print(token)


if __name__ == "__main__":
    main()
