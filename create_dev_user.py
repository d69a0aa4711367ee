import argparse
import asyncio
from uuid import uuid4

from src.common.constants import ServiceCategory, UserRole
from src.config import settings
from src.core.users import User, UserRepository
from src.infra.database import get_db
from src.services.realtime_ws.gateway import issue_token


async def main(role: str, name: str, services: list[str]):
    db = get_db()
    await db.connect(
        dsn=settings.database.dsn,
        min_size=1,
        max_size=1,
    )
    print("Connected to DB")

    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}.{uuid4().hex[:6]}@dev.local",
        phone="1234567890",
        role=UserRole(role),
        services=[ServiceCategory.parse(s) for s in services],
        is_available=role == UserRole.PROVIDER.value,
    )
    try:
        await UserRepository(db).create(user)
    finally:
        await db.disconnect()

    print(f"User {user.id} ({user.role.value}) created")
    print(f"Token: {issue_token(user.id)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a dev user and print a JWT")
    parser.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.CLIENT.value)
    parser.add_argument("--name", default="Dev User")
    parser.add_argument("--service", action="append", default=[], help="Service category (providers)")
    args = parser.parse_args()
    asyncio.run(main(args.role, args.name, args.service))
