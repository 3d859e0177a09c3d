"""User administration service: accounts, credentials and the admin flag."""

import hashlib
from typing import Sequence

import bcrypt
import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.config import get_settings
from listkeeper.db.session import run_transaction
from listkeeper.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User
from listkeeper.services import access_control as ac
from listkeeper.services.change_token import touch_change

logger = structlog.get_logger()


def _prehash(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes; the hex digest is 64 ASCII bytes
    return hashlib.sha256(password.encode("utf-8")).hexdigest().encode("ascii")


def hash_password(password: str) -> str:
    """Return a bcrypt hash of the SHA-256 pre-hashed password."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_prehash(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


class UserService:
    """Service for user accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def get_by_username(self, username: str) -> User | None:
        result = await self.db.execute(select(User).where(User.username == username.strip()))
        return result.scalar_one_or_none()

    async def list_users(self) -> Sequence[User]:
        """All users ordered by username."""
        result = await self.db.execute(select(User).order_by(User.username, User.id))
        return result.scalars().all()

    # =========================================================================
    # Account Management
    # =========================================================================

    async def create_user(
        self,
        acting_user_id: int,
        username: str,
        password: str,
        is_admin: bool = False,
    ) -> User:
        """Create an account (admin only) together with its personal list."""

        async def work() -> User:
            ac.require_admin(await self.get_user(acting_user_id))
            return await self._create_user(username, password, is_admin)

        user = await run_transaction(self.db, "create_user", work)

        logger.info(
            "user_created",
            target_user_id=user.id,
            is_admin=user.is_admin,
            user_id=acting_user_id,
        )
        return user

    async def ensure_default_admin(self, password: str, username: str | None = None) -> User | None:
        """Seed an administrator into an empty store. Returns None if users exist."""
        username = username or get_settings().default_admin_username

        async def work() -> User | None:
            count = (await self.db.execute(select(func.count(User.id)))).scalar_one()
            if count:
                return None
            return await self._create_user(username, password, is_admin=True)

        user = await run_transaction(self.db, "ensure_default_admin", work)

        if user is not None:
            logger.info("default_admin_created", target_user_id=user.id, username=user.username)
        return user

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        """Change the user's own password after verifying the current one."""
        new_password = _clean_password(new_password)
        if new_password != confirm_password:
            raise InvalidInputError("New passwords do not match", field="confirm_password")

        async def work() -> None:
            user = await self.get_user(user_id)
            if not verify_password(current_password or "", user.password_hash):
                raise InvalidInputError("Current password is incorrect", field="current_password")
            user.password_hash = hash_password(new_password)

        await run_transaction(self.db, "change_password", work)

        logger.info("password_changed", user_id=user_id)

    async def set_password(self, acting_user_id: int, target_user_id: int, new_password: str) -> None:
        """Administrative password reset."""
        new_password = _clean_password(new_password)

        async def work() -> None:
            ac.require_admin(await self.get_user(acting_user_id))
            target = await self.get_user(target_user_id)
            target.password_hash = hash_password(new_password)

        await run_transaction(self.db, "set_password", work)

        logger.info("password_reset", target_user_id=target_user_id, user_id=acting_user_id)

    async def toggle_admin(self, acting_user_id: int, target_user_id: int) -> User:
        """Flip another user's admin flag."""

        async def work() -> User:
            ac.require_admin(await self.get_user(acting_user_id))
            if target_user_id == acting_user_id:
                raise ForbiddenError("You cannot change your own admin status", reason="self")
            target = await self.get_user(target_user_id)
            target.is_admin = not target.is_admin
            await touch_change(self.db)
            return target

        target = await run_transaction(self.db, "toggle_admin", work)

        logger.info(
            "user_admin_toggled",
            target_user_id=target_user_id,
            is_admin=target.is_admin,
            user_id=acting_user_id,
        )
        return target

    async def delete_user(self, acting_user_id: int, target_user_id: int) -> None:
        """
        Delete another user.

        Lists and tasks they created survive with no creator; their grants go
        with them.
        """

        async def work() -> None:
            ac.require_admin(await self.get_user(acting_user_id))
            if target_user_id == acting_user_id:
                raise ForbiddenError("You cannot delete your own account", reason="self")
            await self.get_user(target_user_id)

            await self.db.execute(
                update(Task).where(Task.created_by_id == target_user_id).values(created_by_id=None)
            )
            await self.db.execute(
                update(TodoList)
                .where(TodoList.created_by_id == target_user_id)
                .values(created_by_id=None)
            )
            await self.db.execute(delete(ListAccess).where(ListAccess.user_id == target_user_id))
            await self.db.execute(delete(User).where(User.id == target_user_id))
            await touch_change(self.db)

        await run_transaction(self.db, "delete_user", work)

        logger.info("user_deleted", target_user_id=target_user_id, user_id=acting_user_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _create_user(self, username: str, password: str, is_admin: bool) -> User:
        username = _clean_username(username)
        password = _clean_password(password)
        if await self.get_by_username(username) is not None:
            raise InvalidInputError("Username already exists", field="username")

        user = User(
            username=username,
            password_hash=hash_password(password),
            is_admin=bool(is_admin),
        )
        self.db.add(user)
        await self.db.flush()
        await ac.ensure_personal_list(self.db, user.id)
        await touch_change(self.db)
        return user


def _clean_username(username: str | None) -> str:
    username = (username or "").strip()
    if not username:
        raise InvalidInputError("Username is required", field="username")
    max_length = get_settings().max_name_length
    if len(username) > max_length:
        raise InvalidInputError(f"Username is too long (max {max_length} characters)", field="username")
    return username


def _clean_password(password: str | None) -> str:
    if not password:
        raise InvalidInputError("Password is required", field="password")
    max_length = get_settings().max_name_length
    if len(password) > max_length:
        raise InvalidInputError(f"Password is too long (max {max_length} characters)", field="password")
    return password
