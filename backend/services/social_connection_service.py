"""
Social Connection Service - tenant scoped platform credentials

Stores encrypted platform tokens per (school, platform), reports connection
status without ever exposing token material, and keeps tokens fresh. Refreshes
are committed with a compare-and-set on token_version so that two concurrent
refreshes can never persist a stale token; the loser re-reads and uses the
winner's token.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.core.config import get_settings
from backend.core.encryption import EncryptionError, get_encryption
from backend.core.exceptions import NotFoundError, PlatformError, PlatformErrorCode, ValidationError
from backend.core.observability import TOKEN_REFRESH
from backend.db.models import Platform, SocialConnection
from backend.integrations.connection_health import as_utc, compute_connection_health
from backend.integrations.facebook_client import FacebookClient
from backend.integrations.instagram_client import InstagramClient
from backend.integrations.linkedin_client import LinkedInClient
from backend.integrations.platform_base import PlatformAPIError, TokenGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Read-only view of a usable connection handed to fan-out tasks"""
    school_id: int
    platform: Platform
    access_token: str
    target_id: Optional[str]
    expires_at: Optional[datetime]


def default_platform_clients() -> Dict[Platform, Any]:
    return {
        Platform.FACEBOOK: FacebookClient(),
        Platform.INSTAGRAM: InstagramClient(),
        Platform.LINKEDIN: LinkedInClient(),
    }


async def close_platform_clients(clients: Dict[Platform, Any]) -> None:
    """Close the HTTP pools behind a set of platform clients"""
    closed = set()
    for client in clients.values():
        http = getattr(client, "http", None)
        if http is None or id(http) in closed:
            continue
        closed.add(id(http))
        await http.close()


def parse_platform(value) -> Platform:
    try:
        return Platform(value.value if isinstance(value, Platform) else str(value).lower())
    except ValueError:
        raise ValidationError(f"Unsupported platform: {value}")


class SocialConnectionService:
    """
    Registry of social connections.

    Tokens are decrypted only inside this service; callers receive either a
    ConnectionSnapshot or health/status dictionaries.
    """

    def __init__(self, db: Session, clients: Optional[Dict[Platform, Any]] = None):
        self.db = db
        self.settings = get_settings()
        self.encryption = get_encryption()
        self._clients = clients
        self._owns_clients = clients is None

    @property
    def clients(self) -> Dict[Platform, Any]:
        if self._clients is None:
            self._clients = default_platform_clients()
        return self._clients

    async def aclose(self) -> None:
        """Close platform clients this service created itself"""
        if self._owns_clients and self._clients is not None:
            await close_platform_clients(self._clients)
            self._clients = None

    # Registry operations

    def get_connection(self, school_id: int, platform: Platform) -> Optional[SocialConnection]:
        return (
            self.db.query(SocialConnection)
            .filter(SocialConnection.school_id == school_id, SocialConnection.platform == platform.value)
            .populate_existing()
            .first()
        )

    def connect(
        self,
        school_id: int,
        platform,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SocialConnection:
        """Store (or replace) the encrypted tokens for a school's platform"""
        platform = parse_platform(platform)
        if not access_token:
            raise ValidationError("access_token is required")

        try:
            connection = self.get_connection(school_id, platform)
            if connection is None:
                connection = SocialConnection(school_id=school_id, platform=platform.value, token_version=0)
                self.db.add(connection)

            connection.access_token = self.encryption.encrypt(access_token)
            connection.refresh_token = self.encryption.encrypt(refresh_token)
            connection.enc_version = self.encryption.current_version
            connection.enc_kid = self.encryption.default_kid
            connection.expires_at = as_utc(expires_at)
            connection.connected = True
            connection.refresh_failures = 0
            connection.token_version = (connection.token_version or 0) + 1
            connection.last_refreshed_at = datetime.now(timezone.utc)
            if target_id is not None:
                connection.target_id = target_id
            if metadata is not None:
                connection.platform_metadata = metadata

            self.db.commit()
            self.db.refresh(connection)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Connected {platform.value} for school {school_id}", extra={"school_id": school_id, "platform": platform.value})
        return connection

    def select_target(self, school_id: int, platform, target_id: str, target_name: Optional[str] = None) -> SocialConnection:
        """Pick the page / organization posts are published as"""
        platform = parse_platform(platform)
        if not target_id:
            raise ValidationError("target_id is required")
        connection = self.get_connection(school_id, platform)
        if connection is None or not connection.connected:
            raise NotFoundError(f"No active {platform.value} connection for school {school_id}")

        try:
            connection.target_id = target_id
            metadata = dict(connection.platform_metadata or {})
            if target_name:
                metadata["target_name"] = target_name
            connection.platform_metadata = metadata
            self.db.commit()
            self.db.refresh(connection)
        except Exception:
            self.db.rollback()
            raise
        return connection

    def disconnect(self, school_id: int, platform) -> SocialConnection:
        platform = parse_platform(platform)
        connection = self.get_connection(school_id, platform)
        if connection is None:
            raise NotFoundError(f"No {platform.value} connection for school {school_id}")

        try:
            connection.connected = False
            connection.access_token = None
            connection.refresh_token = None
            connection.token_version = (connection.token_version or 0) + 1
            self.db.commit()
            self.db.refresh(connection)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Disconnected {platform.value} for school {school_id}", extra={"school_id": school_id, "platform": platform.value})
        return connection

    def status(self, school_id: int) -> Dict[str, Dict[str, Any]]:
        """Per-platform connection status for a school; no token material"""
        rows = {
            c.platform: c
            for c in self.db.query(SocialConnection).filter(SocialConnection.school_id == school_id).all()
        }
        result: Dict[str, Dict[str, Any]] = {}
        for platform in Platform:
            connection = rows.get(platform.value)
            if connection is None:
                result[platform.value] = {"platform": platform.value, "connected": False, "target_id": None, "target_name": None, "health": None}
                continue
            result[platform.value] = {
                "platform": platform.value,
                "connected": bool(connection.connected),
                "target_id": connection.target_id,
                "target_name": (connection.platform_metadata or {}).get("target_name"),
                "health": compute_connection_health(connection),
            }
        return result

    async def list_linkedin_organizations(self, school_id: int) -> List[Dict[str, str]]:
        snapshot = await self.get_credentials(school_id, Platform.LINKEDIN)
        try:
            return await self.clients[Platform.LINKEDIN].list_organizations(snapshot.access_token)
        except PlatformAPIError as e:
            raise ValidationError(f"Could not list LinkedIn organizations: {e}")

    # Token lifecycle

    def _needs_refresh(self, connection: SocialConnection, now: datetime) -> bool:
        expires_at = as_utc(connection.expires_at)
        if expires_at is None:
            return False
        return expires_at <= now + timedelta(hours=self.settings.token_refresh_window_hours)

    def _snapshot(self, connection: SocialConnection) -> ConnectionSnapshot:
        try:
            access_token = self.encryption.decrypt(connection.access_token)
        except EncryptionError as e:
            logger.error(f"Cannot decrypt token for connection {connection.id}: {e}")
            raise PlatformError(PlatformErrorCode.AUTH_EXPIRED, "Stored token is unreadable; reconnect required")
        if not access_token:
            raise PlatformError(PlatformErrorCode.NOT_CONNECTED, "No token stored")
        return ConnectionSnapshot(
            school_id=connection.school_id,
            platform=Platform(connection.platform),
            access_token=access_token,
            target_id=connection.target_id,
            expires_at=as_utc(connection.expires_at),
        )

    async def get_credentials(self, school_id: int, platform: Platform) -> ConnectionSnapshot:
        """
        Resolve a usable token for a platform, refreshing it when needed.

        Raises:
            PlatformError(NOT_CONNECTED): no active connection
            PlatformError(AUTH_EXPIRED): token expired and could not be refreshed
        """
        connection = self.get_connection(school_id, platform)
        if connection is None or not connection.connected:
            raise PlatformError(PlatformErrorCode.NOT_CONNECTED, f"{platform.value} is not connected")
        return await self.ensure_fresh(connection)

    async def ensure_fresh(self, connection: SocialConnection) -> ConnectionSnapshot:
        now = datetime.now(timezone.utc)
        if not self._needs_refresh(connection, now):
            return self._snapshot(connection)

        refreshed = await self._refresh(connection, now)
        if not refreshed.connected:
            raise PlatformError(PlatformErrorCode.AUTH_EXPIRED, f"{refreshed.platform} token expired and refresh failed")
        return self._snapshot(refreshed)

    async def refresh_connection(self, connection: SocialConnection) -> SocialConnection:
        """Force a refresh regardless of expiry (used by the sweep)"""
        return await self._refresh(connection, datetime.now(timezone.utc))

    async def _refresh(self, connection: SocialConnection, now: datetime) -> SocialConnection:
        platform = Platform(connection.platform)
        seen_version = connection.token_version
        expires_at = as_utc(connection.expires_at)
        log_extra = {"school_id": connection.school_id, "platform": platform.value}

        try:
            access_token = self.encryption.decrypt(connection.access_token)
            refresh_token = self.encryption.decrypt(connection.refresh_token)
        except EncryptionError as e:
            logger.error(f"Cannot decrypt tokens for connection {connection.id}: {e}", extra=log_extra)
            return self._record_failure(connection, seen_version, hard=True)

        try:
            grant: TokenGrant = await self.clients[platform].refresh(access_token, refresh_token)
        except PlatformAPIError as e:
            expired = expires_at is not None and expires_at <= now
            logger.warning(f"Token refresh failed for {platform.value} (school {connection.school_id}): {e}", extra=log_extra)
            return self._record_failure(connection, seen_version, hard=e.is_auth or expired)

        values = {
            "access_token": self.encryption.encrypt(grant.access_token),
            "refresh_token": self.encryption.encrypt(grant.refresh_token),
            "enc_version": self.encryption.current_version,
            "enc_kid": self.encryption.default_kid,
            "expires_at": grant.expires_at,
            "connected": True,
            "refresh_failures": 0,
            "last_refreshed_at": now,
        }
        if self._cas_update(connection, seen_version, values):
            TOKEN_REFRESH.labels(platform=platform.value, outcome="refreshed").inc()
            logger.info(f"Refreshed {platform.value} token for school {connection.school_id}", extra=log_extra)
        else:
            logger.info(f"Concurrent refresh won for {platform.value} (school {connection.school_id}); using stored token", extra=log_extra)
        return self._reload(connection)

    def _record_failure(self, connection: SocialConnection, seen_version: int, hard: bool) -> SocialConnection:
        failures = (connection.refresh_failures or 0) + 1
        disconnect = hard or failures >= self.settings.max_token_refresh_failures
        TOKEN_REFRESH.labels(platform=connection.platform, outcome="disconnected" if disconnect else "failed").inc()
        values = {"refresh_failures": failures}
        if disconnect:
            values["connected"] = False
        if self._cas_update(connection, seen_version, values) and disconnect:
            logger.warning(
                f"Marked {connection.platform} connection of school {connection.school_id} as disconnected",
                extra={"school_id": connection.school_id, "platform": connection.platform},
            )
        return self._reload(connection)

    def _cas_update(self, connection: SocialConnection, seen_version: int, values: Dict[str, Any]) -> bool:
        try:
            result = self.db.execute(
                update(SocialConnection)
                .where(SocialConnection.id == connection.id, SocialConnection.token_version == seen_version)
                .values(token_version=seen_version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount == 1

    def _reload(self, connection: SocialConnection) -> SocialConnection:
        self.db.expire(connection)
        self.db.refresh(connection)
        return connection

    async def refresh_expiring(self, window_hours: Optional[int] = None) -> Dict[str, Any]:
        """Refresh every connected token that expires within the window"""
        window = self.settings.token_refresh_window_hours if window_hours is None else window_hours
        now = datetime.now(timezone.utc)
        cutoff = now + timedelta(hours=window)

        candidates = (
            self.db.query(SocialConnection)
            .filter(
                SocialConnection.connected.is_(True),
                SocialConnection.expires_at.isnot(None),
                SocialConnection.expires_at <= cutoff,
            )
            .all()
        )

        summary = {"checked": len(candidates), "refreshed": 0, "failed": 0, "disconnected": 0}
        for connection in candidates:
            seen_version = connection.token_version
            label = f"{connection.platform} connection {connection.id} of school {connection.school_id}"
            log_extra = {"school_id": connection.school_id, "platform": connection.platform}
            try:
                connection = await self.refresh_connection(connection)
            except Exception as e:
                self.db.rollback()
                summary["failed"] += 1
                TOKEN_REFRESH.labels(platform=log_extra["platform"], outcome="error").inc()
                logger.error(f"Refresh sweep skipped {label}: {e}", extra=log_extra)
                continue
            if not connection.connected:
                summary["disconnected"] += 1
            elif connection.refresh_failures:
                summary["failed"] += 1
            elif connection.token_version != seen_version:
                summary["refreshed"] += 1

        logger.info(f"Token refresh sweep: {summary}")
        return summary
