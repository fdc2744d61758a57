import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import bcrypt
from sqlalchemy.exc import IntegrityError

from . import config
from .errors import ErrorKind, Failure
from .helpers import ct_equal, now_ts
from .infra.logging import get_logger
from .model import ADMIN_ROLES, AdminUser, Store

log = get_logger("accounts")

MIN_PASSWORD_LENGTH = 8
_RANK = {role: i for i, role in enumerate(ADMIN_ROLES)}


def has_role(role: Optional[str], required: str) -> bool:
    """scanner < admin < superadmin."""
    if role not in _RANK:
        return False
    return _RANK[role] >= _RANK[required]


def hash_password(password: str, rounds: int = config.BCRYPT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"),
                              hashed.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


@dataclass(frozen=True)
class Principal:
    username: str
    role: str


class AdminAccounts:
    """Door and back-office logins.

    Accounts live in ``admin_users`` with bcrypt hashes. The
    ``ADMIN_USERNAME``/``ADMIN_PASSWORD`` pair from the environment is a
    bootstrap superadmin, used only while no stored account has that name.
    """

    def __init__(self, store: Store,
                 bootstrap_username: str = config.ADMIN_USERNAME,
                 bootstrap_password: str = config.ADMIN_PASSWORD) -> None:
        self.store = store
        self.bootstrap_username = bootstrap_username
        self.bootstrap_password = bootstrap_password

    async def authenticate(self, username: str,
                           password: str) -> Optional[Principal]:
        account = await self.store.admin_by_username(username)
        if account is not None:
            if not account.is_active:
                return None
            # off the event loop
            matched = await asyncio.to_thread(verify_password, password,
                                              account.password_hash)
            if not matched:
                return None
            await self.store.update_where(
                AdminUser, (AdminUser.id == account.id,),
                {"last_login_at": now_ts()},
            )
            return Principal(account.username, account.role)

        if (self.bootstrap_username
                and ct_equal(username, self.bootstrap_username)
                and ct_equal(password, self.bootstrap_password)):
            return Principal(username, "superadmin")
        return None

    async def create(self, username: str, password: str,
                     role: str = "scanner",
                     full_name: Optional[str] = None
                     ) -> Union[AdminUser, Failure]:
        username = (username or "").strip()
        if len(username) < 3:
            return Failure(ErrorKind.INVALID_INPUT,
                           "Username must be at least 3 characters")
        problem = self._check(role=role, password=password)
        if problem is not None:
            return problem

        now = now_ts()
        account = AdminUser(
            username=username,
            password_hash=await asyncio.to_thread(hash_password, password),
            full_name=full_name,
            role=role,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.store.add(account)
        except IntegrityError:
            return Failure(ErrorKind.INVALID_INPUT,
                           f"Username {username} is taken")
        log.info("admin.created", username=username, role=role)
        return account

    async def update(self, admin_id: int, role: Optional[str] = None,
                     is_active: Optional[bool] = None,
                     password: Optional[str] = None
                     ) -> Union[AdminUser, Failure]:
        problem = self._check(role=role, password=password)
        if problem is not None:
            return problem
        fields: Dict[str, Any] = {"updated_at": now_ts()}
        if role is not None:
            fields["role"] = role
        if is_active is not None:
            fields["is_active"] = bool(is_active)
        if password is not None:
            fields["password_hash"] = await asyncio.to_thread(
                hash_password, password
            )
        changed = await self.store.update_where(
            AdminUser, (AdminUser.id == admin_id,), fields
        )
        if not changed:
            return Failure(ErrorKind.NOT_FOUND, "Admin user not found")
        log.info("admin.updated", admin_id=admin_id, role=role,
                 is_active=is_active, password_changed=password is not None)
        return await self.store.get(AdminUser, admin_id)

    @staticmethod
    def _check(role: Optional[str] = None,
               password: Optional[str] = None) -> Optional[Failure]:
        if role is not None and role not in ADMIN_ROLES:
            return Failure(ErrorKind.INVALID_INPUT,
                           f"role must be one of {', '.join(ADMIN_ROLES)}")
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            return Failure(
                ErrorKind.INVALID_INPUT,
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
        return None
