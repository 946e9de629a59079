"""
Pull-dominant synchronization with the remote admissions server.

``SyncService`` owns everything a reconciliation session needs: the
transport and credential, the in-progress lock, the last successful
sync timestamp, the auto-sync scheduler and a short in-memory log for
the status panel. A run fetches one full snapshot, normalizes every
entity collection and hands the results to the ``Reconciler``.

Transport and credential failures abort the run and are returned as a
failed ``SyncResult``; per-record problems only add messages to the
result's error list. A run requested while another is in progress is
refused immediately.
"""

from __future__ import annotations

import collections
import datetime
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from admission_desk.config import (
    DEFAULT_ADMIN_PASSWORD,
    DEFAULT_ADMIN_SECRET,
    DEFAULT_ADMIN_USER,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_SERVER_URL,
    KEY_ADMIN_SECRET,
    KEY_AUTO_SYNC,
    KEY_ENABLED,
    KEY_INTERVAL,
    KEY_LAST_SYNC,
    KEY_SERVER_URL,
    LOG_BUFFER_SIZE,
    LOG_STATUS_TAIL,
    REQUEST_TIMEOUT_SECONDS,
    SyncConfig,
)
from admission_desk.database import DatabaseManager
from admission_desk.errors import ConfigurationError, MalformedSnapshot, SyncError
from admission_desk.normalizer import EntityKind, normalize_collection
from admission_desk.reconciler import Reconciler
from admission_desk.session import SessionManager
from admission_desk.transport import TransportClient

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Sync already in progress"

# Order in which snapshot collections are applied; submissions first so
# that evaluations, appeals and phase status find their parent rows.
SYNC_ORDER = (
    EntityKind.SUBMISSIONS,
    EntityKind.EVALUATIONS,
    EntityKind.APPEALS,
    EntityKind.EVENTS,
    EntityKind.CALENDAR,
    EntityKind.FAQ,
    EntityKind.PUBLIC_FILES,
    EntityKind.EVALUATORS,
    EntityKind.PHASE_STATUS,
)


class RingBufferHandler(logging.Handler):
    """Keep the most recent log entries for the status panel."""

    def __init__(self, capacity: int = LOG_BUFFER_SIZE) -> None:
        super().__init__(level=logging.INFO)
        self.entries: Deque[Dict[str, str]] = collections.deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        kind = getattr(record, "log_type", None)
        if kind is None:
            kind = "err" if record.levelno >= logging.WARNING else "info"
        self.entries.append({
            "type": kind,
            "msg": record.getMessage(),
            "ts": datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc).isoformat(),
        })


@dataclass
class SyncResult:
    success: bool
    counts: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    error: Optional[str] = None
    already_running: bool = False
    timestamp: Optional[str] = None

    @property
    def total(self) -> int:
        return sum(v for k, v in self.counts.items() if k != "settings")

    def as_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "results": {**self.counts, "errors": list(self.errors)}}
        if self.error:
            result["error"] = self.error
        return result


class SyncService:
    """Reconciliation session between the local store and the remote server."""

    def __init__(
        self,
        db: DatabaseManager,
        username: str = DEFAULT_ADMIN_USER,
        password: str = DEFAULT_ADMIN_PASSWORD,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        http_session: Any = None,
    ) -> None:
        self.db = db
        self.reconciler = Reconciler(db)
        self.timeout_seconds = timeout_seconds
        self._http_session = http_session
        self._lock = threading.Lock()
        self.last_sync: Optional[str] = None
        self._scheduler: Optional[BackgroundScheduler] = None

        # Instance logger feeding only this service's status buffer;
        # console output goes through the module logger.
        self.log = logging.getLogger(f"{__name__}.session{id(self):x}")
        self.log.propagate = False
        self.log.setLevel(logging.INFO)
        self._buffer = RingBufferHandler()
        self.log.addHandler(self._buffer)

        config = self.get_config()
        self.session = SessionManager(db, config.admin_secret, username, password)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def get_config(self) -> SyncConfig:
        return SyncConfig.from_settings(self.db.get_settings())

    def auto_setup(self) -> None:
        """Write the default server configuration into settings."""
        self.db.update_settings({
            KEY_SERVER_URL: DEFAULT_SERVER_URL,
            KEY_ADMIN_SECRET: DEFAULT_ADMIN_SECRET,
            KEY_AUTO_SYNC: "1",
            KEY_INTERVAL: str(DEFAULT_INTERVAL_MINUTES),
            KEY_ENABLED: "1",
        })
        self._log("info", "Sync configured for %s", DEFAULT_SERVER_URL)

    def _log(self, kind: str, msg: str, *args: Any) -> None:
        level = logging.WARNING if kind == "err" else logging.INFO
        self.log.log(level, msg, *args, extra={"log_type": kind})
        logger.log(level, msg, *args)

    def _transport(self) -> TransportClient:
        config = self.get_config()
        if not config.server_url:
            raise ConfigurationError("Server URL is not configured")
        transport = TransportClient(
            config.server_url,
            token_provider=lambda: self.session.token,
            timeout_seconds=self.timeout_seconds,
            session=self._http_session,
        )
        self.session.admin_secret = config.admin_secret
        self.session.transport = transport
        return transport

    # ------------------------------------------------------------------
    # Authentication and probes
    # ------------------------------------------------------------------
    def authenticate(self, username: str, password: str) -> Dict[str, Any]:
        self._transport()
        token = self.session.login(username, password)
        self._log("ok", "Authenticated successfully")
        return {"success": True, "token": token}

    def test_connection(self) -> Dict[str, Any]:
        """Probe the public registration-window route."""
        try:
            data = self._transport().get("/api/registration-window")
        except SyncError as exc:
            self._log("err", "Connection failed: %s", exc)
            return {"success": False, "error": str(exc)}
        self._log("ok", "Connection OK, server responded")
        return {"success": True, "data": data}

    def test_auth(self) -> Dict[str, Any]:
        """Check the stored credential against the server."""
        config = self.get_config()
        if not config.auth_token:
            return {"success": False, "error": "Not authenticated"}
        try:
            data = self._transport().get(f"/secret/{config.admin_secret}/auth-status")
        except SyncError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": isinstance(data, dict) and data.get("authenticated") is True, "data": data}

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------
    @property
    def syncing(self) -> bool:
        return self._lock.locked()

    def pull_all(self) -> SyncResult:
        """
        Run one full reconciliation.

        Returns
        -------
        SyncResult
            ``success`` reflects the snapshot fetch only; record-level
            problems are listed in ``errors``. When another run is in
            progress the result has ``already_running`` set.
        """
        if not self._lock.acquire(blocking=False):
            self._log("info", ALREADY_RUNNING)
            return SyncResult(success=False, error=ALREADY_RUNNING, already_running=True)
        try:
            return self._pull()
        finally:
            self._lock.release()

    def _fetch_snapshot(self) -> Dict[str, Any]:
        transport = self._transport()
        config = self.get_config()
        if not config.admin_secret:
            raise ConfigurationError("Admin secret is not configured")
        path = f"/secret/{config.admin_secret}/api/sync/full"
        snapshot = self.session.call(lambda: transport.get(path))
        if not isinstance(snapshot, dict) or not snapshot.get("timestamp"):
            raise MalformedSnapshot("Invalid server response: snapshot has no timestamp")
        return snapshot

    def _pull(self) -> SyncResult:
        self._log("info", "Starting full synchronization")
        try:
            snapshot = self._fetch_snapshot()
        except SyncError as exc:
            self._log("err", "Sync failed: %s", exc)
            return SyncResult(success=False, error=str(exc), errors=[str(exc)])
        return self.apply_snapshot(snapshot)

    def apply_snapshot(self, snapshot: Dict[str, Any]) -> SyncResult:
        """Normalize and reconcile an already fetched snapshot."""
        if not isinstance(snapshot, dict) or not snapshot.get("timestamp"):
            raise MalformedSnapshot("Invalid server response: snapshot has no timestamp")
        result = SyncResult(success=False, counts={"settings": 0, **{k.value: 0 for k in SYNC_ORDER}})
        result.timestamp = str(snapshot["timestamp"])
        self._log("ok", "Snapshot received (%s)", result.timestamp)
        result.counts["settings"] = self.reconciler.apply_settings(snapshot)

        for kind in SYNC_ORDER:
            payload = snapshot.get(kind.value)
            if payload is None:
                continue
            outcomes = normalize_collection(kind, payload, year=snapshot.get("activeEditalYear"))
            applied = self.reconciler.apply(kind, outcomes)
            result.counts[kind.value] = applied.count
            result.errors.extend(applied.errors)
            if applied.errors:
                self._log("err", "%s: %d synced, %d skipped", kind.value, applied.count, len(applied.errors))
            else:
                self._log("ok", "%s: %d synced", kind.value, applied.count)

        self.last_sync = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.db.update_settings({KEY_LAST_SYNC: self.last_sync})
        result.success = True
        self._log("ok", "Sync finished, %d records updated", result.total)
        return result

    def auto_login_and_pull(self) -> SyncResult:
        """Pull with the stored credential, logging in first when there is none."""
        if not self.get_config().auth_token:
            try:
                self._transport()
                self.session.login()
            except SyncError as exc:
                self._log("err", "Auto-sync failed: %s", exc)
                return SyncResult(success=False, error=str(exc), errors=[str(exc)])
        return self.pull_all()

    # ------------------------------------------------------------------
    # Push (opaque pass-through)
    # ------------------------------------------------------------------
    def push_submission(self, submission: Dict[str, Any]) -> Any:
        transport = self._transport()
        result = self.session.call(lambda: transport.post("/api/submissions", submission))
        self._log("ok", "Submission sent to the server")
        return result

    def push_appeal(self, appeal: Dict[str, Any]) -> Any:
        transport = self._transport()
        result = self.session.call(lambda: transport.post("/api/appeals", appeal))
        self._log("ok", "Appeal sent to the server")
        return result

    # ------------------------------------------------------------------
    # Auto-sync
    # ------------------------------------------------------------------
    def _scheduled_pull(self) -> None:
        if self.syncing:
            logger.warning("Sync already running, skipping this trigger")
            return
        result = self.pull_all()
        if not result.success and not result.already_running:
            logger.warning("Scheduled sync failed: %s", result.error)

    def start_auto_sync(self, interval_minutes: Optional[int] = None) -> None:
        """Run one sync now and then one every ``interval_minutes``."""
        self.stop_auto_sync()
        minutes = max(1, int(interval_minutes or self.get_config().interval_minutes))
        scheduler = BackgroundScheduler(daemon=True)
        scheduler.add_job(
            self._scheduled_pull,
            trigger=IntervalTrigger(minutes=minutes),
            id="admission_desk_sync",
            name="Remote sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.datetime.now(),
        )
        scheduler.start()
        self._scheduler = scheduler
        self._log("info", "Auto-sync enabled, every %d min", minutes)

    def stop_auto_sync(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._log("info", "Auto-sync disabled")

    def close(self) -> None:
        """Stop auto-sync and detach the status buffer."""
        self.stop_auto_sync()
        self.log.removeHandler(self._buffer)

    @property
    def auto_sync_active(self) -> bool:
        return self._scheduler is not None

    def get_status(self) -> Dict[str, Any]:
        config = self.get_config()
        return {
            "syncing": self.syncing,
            "lastSync": self.last_sync or config.last_sync,
            "autoSyncActive": self.auto_sync_active,
            "config": config.as_dict(),
            "log": list(self._buffer.entries)[-LOG_STATUS_TAIL:],
        }
