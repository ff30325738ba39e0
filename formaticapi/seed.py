import asyncio
import logging

from formaticapi.config import config
from formaticapi.database import database
from formaticapi.models.user import Role, UserStatus
from formaticapi.routers.user import insert_user
from formaticapi.security import get_user

logger = logging.getLogger(__name__)


async def seed_super_admin():
    """Create the configured super admin unless it already exists."""
    email, password = config.SUPER_ADMIN_EMAIL, config.SUPER_ADMIN_PASSWORD
    if not email or not password:
        logger.debug("No super admin configured, skipping seed")
        return None
    if await get_user(email) is not None:
        logger.info("Super admin already exists")
        return None
    user = await insert_user(email, password, "Super Admin", Role.SUPER_ADMIN, UserStatus.ACTIVE)
    logger.info("Super admin created")
    return user


async def main():
    await database.connect()
    try:
        await seed_super_admin()
    finally:
        await database.disconnect()


if __name__ == "__main__":
    from formaticapi.logging_conf import configure_logging

    configure_logging()
    asyncio.run(main())
