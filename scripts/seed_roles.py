"""
Seed script to bootstrap the first privileged user.

Run this script after database initialization to:
- Create (or reuse) a user with the given email
- Grant that user a global role (masteradmin by default)
- Print a short-lived seed token to exchange at POST /auth/login

Usage:
    uv run python -m scripts.seed_roles admin@example.com
    uv run python -m scripts.seed_roles support@example.com --role support
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.roles import catalog
from app.features.roles.service import create_for, has_roles_for
from app.features.sessions.service import issue_session_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

GLOBAL_ROLE_NAMES = [definition.name for definition in catalog.GLOBAL_ROLES]


async def get_or_create_user(db: AsyncSession, email: str, name: str | None) -> User:
    """Return the user with ``email``, creating it if needed."""
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    
    if user:
        log.debug(f"User '{email}' already exists, reusing")
        return user
    
    user = User(email=email, name=name)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    log.info(f"Created user: {email}")
    return user


async def seed_global_role(db: AsyncSession, user: User, role_name: str):
    """Grant ``role_name`` globally unless the user already holds it."""
    if await has_roles_for(db, user, None, [role_name]):
        log.debug(f"User '{user.email}' already holds '{role_name}', skipping")
        return
    
    await create_for(db, user, role_name)
    log.info(f"Granted global role '{role_name}' to {user.email}")


async def main(email: str, role_name: str, name: str | None = None):
    """Main function to seed the bootstrap user."""
    log.info("Starting role seeding...")
    
    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()
    
    # Get database session
    async for db in get_db():
        try:
            user = await get_or_create_user(db, email, name)
            await seed_global_role(db, user, role_name)
            
            token = await issue_session_token(db, user, is_seed_token=True)
            log.info("Role seeding completed successfully!")
            print(token)
            
        except Exception as e:
            log.error(f"Error seeding roles: {e}", exc_info=True)
            await db.rollback()
            raise
        
        break  # Only use first session


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create a privileged user and print a seed token")
    parser.add_argument("email")
    parser.add_argument("--role", default="masteradmin", choices=GLOBAL_ROLE_NAMES)
    parser.add_argument("--name", default=None)
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args.email, args.role, args.name))
