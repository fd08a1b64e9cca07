"""Panel credentials kept in ``auth.json``."""
from __future__ import annotations

import logging
import secrets

from passlib.context import CryptContext

from ..atomic import PRIVATE_FILE_MODE, write_json
from ..errors import CorruptError, NotFoundError, OwehostError, StorageError
from ..events.emitter import SYSTEM_ACTOR, Emitter, record_safely
from ..locking import TenantLocks
from ..models import Auth, Identity, timestamp
from ..paths import AUTH_FILE, Layout
from .store import TenantStore, load_descriptor

LOGGER = logging.getLogger(__name__)

DEFAULT_ROUNDS = 12


class AuthenticationError(OwehostError):
    """Raised when credentials are rejected."""

    kind = "auth"


class AuthStore:
    """Hash, store and verify tenant passwords with bcrypt."""

    def __init__(
        self,
        layout: Layout,
        locks: TenantLocks | None = None,
        *,
        rounds: int = DEFAULT_ROUNDS,
        emitter: Emitter | None = None,
    ) -> None:
        """Bind the store to *layout*; *rounds* is the bcrypt cost factor."""
        self.layout = layout
        self.locks = locks or TenantLocks()
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)
        self.emitter = emitter

    def read_auth(self, tenant_id: int) -> Auth:
        """Return ``auth.json``; raise :class:`NotFoundError` when no password is set."""
        path = self.layout.descriptor_path(tenant_id, AUTH_FILE)
        with self.locks.read(tenant_id):
            try:
                return load_descriptor(path, Auth.from_dict)
            except NotFoundError as exc:
                raise NotFoundError(f"No credentials stored for tenant {tenant_id}") from exc

    def write_auth(self, tenant_id: int, auth: Auth) -> None:
        """Atomically write ``auth.json`` with mode 0600."""
        with self.locks.write(tenant_id):
            write_json(
                self.layout.descriptor_path(tenant_id, AUTH_FILE),
                auth.to_dict(),
                mode=PRIVATE_FILE_MODE,
            )

    def set_password(self, tenant_id: int, password: str, actor: str = SYSTEM_ACTOR) -> Auth:
        """Replace the password with a fresh salt; login statistics restart."""
        salt = secrets.token_hex(16)
        now = timestamp()
        auth = Auth(
            password_hash=self.context.hash(password + salt),
            salt=salt,
            created_at=now,
            updated_at=now,
        )
        self.write_auth(tenant_id, auth)
        actor_type = SYSTEM_ACTOR if actor == SYSTEM_ACTOR else "user"
        record_safely(self.emitter, "password_changed", tenant_id, actor, actor_type)
        return auth

    def verify_password(self, tenant_id: int, password: str) -> bool:
        """Return whether *password* matches, recording the login on success."""
        auth = self.read_auth(tenant_id)
        if not self.context.verify(password + auth.salt, auth.password_hash):
            return False
        self._record_login(tenant_id)
        return True

    def _record_login(self, tenant_id: int) -> None:
        with self.locks.write(tenant_id):
            try:
                auth = self.read_auth(tenant_id)
            except (NotFoundError, CorruptError) as exc:
                LOGGER.warning("Could not update login stats for tenant %s: %s", tenant_id, exc)
                return
            now = timestamp()
            auth.last_login = now
            auth.login_count += 1
            auth.updated_at = now
            try:
                self.write_auth(tenant_id, auth)
            except StorageError as exc:
                LOGGER.warning("Could not update login stats for tenant %s: %s", tenant_id, exc)

    def authenticate(
        self,
        tenants: TenantStore,
        username: str,
        password: str,
        actor_ip: str = "",
    ) -> Identity:
        """Return the identity named *username* when *password* is valid.

        Suspended and terminated tenants are refused even with a valid
        password. Every outcome is recorded as a login event.
        """
        try:
            identity = self._authenticate(tenants, username, password)
        except (AuthenticationError, NotFoundError) as exc:
            record_safely(self.emitter, "login_failed", username, str(exc), actor_ip)
            raise
        record_safely(self.emitter, "login_success", identity.id, username, actor_ip)
        return identity

    def _authenticate(self, tenants: TenantStore, username: str, password: str) -> Identity:
        for tenant_id in tenants.list_tenants():
            try:
                identity = tenants.read_identity(tenant_id)
            except (NotFoundError, CorruptError):
                continue
            if identity.name != username:
                continue
            if not self.verify_password(tenant_id, password):
                raise AuthenticationError("Invalid password")
            status = tenants.read_status(tenant_id)
            if identity.state in {"suspended", "terminated"}:
                raise AuthenticationError(f"Account {username} is {identity.state}")
            if status is not None and status.suspended:
                raise AuthenticationError(f"Account {username} is suspended")
            return identity
        raise NotFoundError(f"Account {username} not found")


__all__ = ["AuthStore", "AuthenticationError"]
