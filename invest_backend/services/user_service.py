import logging
import secrets
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_, func

from ..database_model.user import User
from ..core.config import settings
from ..core.security import verify_password, get_password_hash, create_access_token
from ..core.errors import (
    AuthenticationError,
    NotFoundError,
    ValidationError,
    DuplicateError
)
from ..utils.lock_manager import get_lock_manager, LockPatterns


logger = logging.getLogger(__name__)

# Fields an administrator may overwrite directly
ADMIN_UPDATABLE_FIELDS = {
    "name",
    "username",
    "phone_number",
    "balance",
    "recharge_balance",
    "total_invested",
    "total_withdrawn",
    "referral_code",
    "referred_by",
    "is_active",
    "is_admin",
    "password",
}

NUMERIC_FIELDS = {"balance", "recharge_balance", "total_invested", "total_withdrawn"}
BOOLEAN_FIELDS = {"is_active", "is_admin"}
UNIQUE_FIELDS = {
    "phone_number": "Phone number already registered",
    "username": "Username already taken",
    "referral_code": "Referral code already in use",
}


class UserService:
    """Service for managing user identity, registration and referrals."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_phone(self, phone_number: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.phone_number == phone_number))
        return result.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.referral_code == referral_code))
        return result.scalar_one_or_none()

    async def get_user_by_phone_or_username(
        self,
        phone_number: str,
        username: str
    ) -> Optional[User]:
        """Single lookup covering both unique registration fields."""
        result = await self.db.execute(
            select(User)
            .where(or_(User.phone_number == phone_number, User.username == username))
            .order_by(User.id)
        )
        users = result.scalars().all()
        # Prefer the phone collision so it is reported first
        for user in users:
            if user.phone_number == phone_number:
                return user
        return users[0] if users else None

    async def get_user_by_identifier(self, identifier: Any) -> Optional[User]:
        """Resolve a user by id, then phone number, then username."""
        identifier = str(identifier).strip()
        if not identifier:
            return None

        if identifier.isdigit():
            user = await self.get_user_by_id(int(identifier))
            if user:
                return user

        user = await self.get_user_by_phone(identifier)
        if user:
            return user

        return await self.get_user_by_username(identifier)

    async def get_user_for_update(self, user_id: int) -> Optional[User]:
        """Re-read a user row with a row lock, refreshing any cached state."""
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_users(self) -> List[User]:
        result = await self.db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return list(result.scalars().all())

    async def count_users(self) -> int:
        result = await self.db.execute(select(func.count(User.id)))
        return result.scalar_one()

    async def create_user(
        self,
        name: str,
        username: str,
        phone_number: str,
        password: str,
        referral_code: Optional[str] = None,
        is_admin: bool = False,
        own_referral_code: Optional[str] = None
    ) -> User:
        """Create a new user account.

        A referral code that does not resolve is ignored rather than rejected.
        """
        existing_user = await self.get_user_by_phone_or_username(phone_number, username)
        if existing_user:
            if existing_user.phone_number == phone_number:
                raise DuplicateError("Phone number already registered")
            raise DuplicateError("Username already taken")

        referred_by = None
        if referral_code:
            referrer = await self.get_user_by_referral_code(referral_code)
            if referrer:
                referred_by = referrer.id
            else:
                logger.info(f"Ignoring unknown referral code at registration: {referral_code}")

        if own_referral_code is None:
            own_referral_code = await self._generate_unique_referral_code(username)

        user = User(
            name=name,
            username=username,
            phone_number=phone_number,
            hashed_password=get_password_hash(password),
            referral_code=own_referral_code,
            referred_by=referred_by,
            balance=0.0,
            recharge_balance=0.0,
            total_invested=0.0,
            total_withdrawn=0.0,
            is_active=True,
            is_admin=is_admin
        )

        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info(f"Registered user {user.id} ({user.username})")
        return user

    async def register_user(self, data: Dict[str, Any]) -> User:
        """Validate a registration form and create the account."""
        required = ("name", "username", "phone_number", "password", "confirm_password")
        if any(not data.get(field) for field in required):
            raise ValidationError("All fields are required")

        if data["password"] != data["confirm_password"]:
            raise ValidationError("Passwords do not match")

        if len(data["password"]) < 6:
            raise ValidationError("Password must be at least 6 characters long")

        return await self.create_user(
            name=data["name"],
            username=data["username"],
            phone_number=data["phone_number"],
            password=data["password"],
            referral_code=data.get("referral_code") or None
        )

    async def authenticate_user(self, phone_number: str, password: str) -> Dict[str, Any]:
        """Authenticate by phone number and return a token with the user."""
        if not phone_number or not password:
            raise ValidationError("Phone number and password are required")

        user = await self.get_user_by_phone(phone_number)
        if not user:
            raise AuthenticationError("Invalid phone number or password")

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        if not verify_password(password, user.hashed_password):
            raise AuthenticationError("Invalid phone number or password")

        token = create_access_token(
            data={
                "sub": str(user.id),
                "phone_number": user.phone_number,
                "is_admin": user.is_admin
            }
        )

        logger.info(f"User {user.id} logged in")
        return {"token": token, "user": user}

    async def update_user_fields(self, user_id: int, fields: Dict[str, Any]) -> User:
        """Apply a whitelisted partial update on behalf of an administrator."""
        updates = {key: value for key, value in fields.items() if key in ADMIN_UPDATABLE_FIELDS}
        if not updates:
            raise ValidationError("No updatable fields provided")

        updates = self._coerce_updates(updates)

        async with get_lock_manager().lock(LockPatterns.user_balance(user_id)):
            try:
                user = await self.get_user_for_update(user_id)
                if not user:
                    raise NotFoundError("User not found")

                for field, message in UNIQUE_FIELDS.items():
                    if field in updates and updates[field] != getattr(user, field):
                        result = await self.db.execute(
                            select(User.id).where(
                                getattr(User, field) == updates[field],
                                User.id != user.id
                            )
                        )
                        if result.first():
                            raise DuplicateError(message)

                if "referred_by" in updates and updates["referred_by"] is not None:
                    if updates["referred_by"] == user.id:
                        raise ValidationError("Cannot use your own referral code")
                    if not await self.get_user_by_id(updates["referred_by"]):
                        raise ValidationError("Referrer not found")

                password = updates.pop("password", None)
                if password is not None:
                    user.hashed_password = get_password_hash(password)

                for field, value in updates.items():
                    setattr(user, field, value)
                user.updated_at = datetime.utcnow()

                await self.db.commit()
                await self.db.refresh(user)
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Admin updated user {user_id}: {sorted(fields.keys())}")
        return user

    async def apply_referral_code(self, user_id: int, referral_code: Optional[str]) -> User:
        """Link a user to the owner of a referral code, once.

        Returns:
            User: The referrer
        """
        if not referral_code:
            raise ValidationError("Referral code is required")

        referrer = await self.get_user_by_referral_code(referral_code)
        if not referrer:
            raise ValidationError("Invalid referral code")

        if referrer.id == user_id:
            raise ValidationError("Cannot use your own referral code")

        async with get_lock_manager().lock(LockPatterns.user_balance(user_id)):
            try:
                user = await self.get_user_for_update(user_id)
                if not user:
                    raise NotFoundError("User not found")

                if user.referred_by is not None:
                    raise ValidationError("You have already used a referral code")

                user.referred_by = referrer.id
                user.updated_at = datetime.utcnow()
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"User {user_id} referred by {referrer.id}")
        return referrer

    async def list_referrals(self) -> List[Dict[str, Any]]:
        """All referral links, referrer and referred user side by side."""
        users = await self.list_users()
        by_id = {user.id: user for user in users}

        referrals = []
        for user in users:
            if user.referred_by is None:
                continue
            referrer = by_id.get(user.referred_by)
            referrals.append({
                "referred_user_id": user.id,
                "referred_username": user.username,
                "referred_phone": user.phone_number,
                "referrer_id": user.referred_by,
                "referrer_username": referrer.username if referrer else None,
                "referrer_code": referrer.referral_code if referrer else None,
                "created_at": user.created_at.isoformat() if user.created_at else None,
            })
        return referrals

    async def ensure_admin_user(
        self,
        phone_number: str,
        username: str,
        password: str,
        referral_code: str = "ADMIN001"
    ) -> User:
        """Create the bootstrap administrator unless it already exists."""
        existing = await self.get_user_by_phone(phone_number)
        if existing:
            return existing

        if await self.get_user_by_referral_code(referral_code):
            referral_code = await self._generate_unique_referral_code(username)

        user = await self.create_user(
            name="Admin User",
            username=username,
            phone_number=phone_number,
            password=password,
            is_admin=True,
            own_referral_code=referral_code
        )
        logger.info(f"Created bootstrap admin {user.username}")
        return user

    def _coerce_updates(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        coerced = {}
        for field, value in updates.items():
            if field in NUMERIC_FIELDS:
                try:
                    value = float(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"{field} must be a number")
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative")
            elif field in BOOLEAN_FIELDS:
                if isinstance(value, str):
                    value = value.strip().lower() in ("true", "1", "yes")
                else:
                    value = bool(value)
            elif field == "referred_by":
                if value in (None, ""):
                    value = None
                else:
                    try:
                        value = int(value)
                    except (TypeError, ValueError):
                        raise ValidationError("referred_by must be a user id")
            elif field == "password":
                if not value or len(str(value)) < 6:
                    raise ValidationError("Password must be at least 6 characters long")
                value = str(value)
            else:
                if value is None or not str(value).strip():
                    raise ValidationError(f"{field} cannot be empty")
                value = str(value).strip()
            coerced[field] = value
        return coerced

    async def _generate_unique_referral_code(self, username: str) -> str:
        """Username prefix plus random digits, retried until unused."""
        prefix = (username or "USER")[:4].upper()

        for _ in range(settings.referral_code_max_attempts):
            code = f"{prefix}{secrets.randbelow(9000) + 1000}"
            if not await self.get_user_by_referral_code(code):
                return code

        # Four digits exhausted for this prefix, widen the suffix
        while True:
            code = f"{prefix}{secrets.randbelow(900000) + 100000}"
            if not await self.get_user_by_referral_code(code):
                return code
