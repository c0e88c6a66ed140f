"""User service — registration and credential checks.

Learn: The service layer owns the rules (unique usernames, inactive
accounts can't log in); the auth package only hashes and signs.
"""

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketrelay.auth.password import hash_password, verify_password
from ticketrelay.db.models import User, UserRole, UserStatus
from ticketrelay.errors import AuthError, ConflictError, NotFoundError, StoreError

logger = structlog.get_logger()


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        username: str,
        name: str,
        password: str,
        address: Optional[str] = None,
        role: UserRole = UserRole.CUSTOMER,
    ) -> User:
        """Create an active user. Duplicate usernames raise ConflictError."""
        if await self.get_by_username(username):
            raise ConflictError("Username already taken")

        user = User(
            username=username,
            name=name,
            password_hash=hash_password(password),
            address=(address or "").strip() or None,
            role=role.value,
            status=UserStatus.ACTIVE.value,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same name
            await self.db.rollback()
            raise ConflictError("Username already taken")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("users.register_failed", username=username, error=str(e))
            raise StoreError("Failed to register user")

        logger.info("users.registered", user_id=user.id, username=username)
        return user

    async def authenticate(self, username: str, password: str) -> User:
        """Return the user if the credentials are valid and the account active."""
        user = await self.get_by_username(username)
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        if user.status != UserStatus.ACTIVE.value:
            raise AuthError("Account is inactive")
        return user

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalars().first()

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user
