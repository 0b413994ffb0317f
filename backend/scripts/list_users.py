#!/usr/bin/env python3
"""Print every user with identity provider / Google links and active refresh token count.
Usage: DATABASE_URL=postgresql+asyncpg://... python scripts/list_users.py [--google-only]"""
import argparse
import asyncio

from sqlalchemy import select

from app.db import async_session_maker, engine
from app.models.user import User
from app.services.refresh_tokens import count_active_tokens


async def main(google_only: bool) -> None:
    async with async_session_maker() as session:
        query = select(User).order_by(User.created_at)
        if google_only:
            query = query.where(User.google_id.isnot(None))
        r = await session.execute(query)
        users = list(r.scalars().all())
        print(f"Users: {len(users)}\n")
        for i, user in enumerate(users, 1):
            active = await count_active_tokens(session, user.id)
            print(f"{i}. {user.email}")
            print(f"   ID: {user.id}")
            print(f"   Nickname: {user.nickname or '-'}")
            print(f"   Identity provider UID: {user.identity_provider_uid or '-'}")
            print(f"   Google ID: {user.google_id or '-'}")
            print(f"   Password credential: {'yes' if user.has_password_credential else 'no'}")
            print(f"   Active: {'yes' if user.is_active else 'no'}")
            print(f"   Active refresh tokens: {active}")
            print(f"   Created: {user.created_at}")
            print()
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--google-only", action="store_true", help="only users linked to a Google account")
    args = parser.parse_args()
    asyncio.run(main(args.google_only))
