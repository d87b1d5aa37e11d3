"""One-JSON-file-per-tenant session store."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from chatledger.clock import Clock, to_epoch_ms, utc_now
from chatledger.events.bus import LedgerEvent
from chatledger.models.config import StoreConfig
from chatledger.models.session import SessionData
from chatledger.store.errors import CorruptSessionError, InvalidTenantKeyError, StorageIOError
from chatledger.store.locks import file_lock
from chatledger.store.schema import UpgradeDefaults, migrate

if TYPE_CHECKING:
    from chatledger.events.bus import EventBus


def validate_tenant_key(tenant: str) -> str:
    """
    Return *tenant* unchanged if it is usable as a file name.

    Raises:
        InvalidTenantKeyError: For empty keys, ``.``/``..``, keys containing a
            path separator or NUL, or keys starting with a dot.
    """
    if (
        not isinstance(tenant, str)
        or not tenant
        or tenant.startswith(".")
        or "/" in tenant
        or "\\" in tenant
        or "\x00" in tenant
    ):
        raise InvalidTenantKeyError(str(tenant))
    return tenant


class SessionStore:
    """
    Durable store mapping each tenant key to ``<data_dir>/<tenant>.json``.

    Reads and writes take an advisory lock on ``<tenant>.json.lock`` so that
    cooperating processes never interleave a read and a write of the same
    tenant. Blocking file work runs in a worker thread; the event loop keeps
    serving other tenants meanwhile.

    Writes are atomic: the document is written to a temporary file in the
    data directory, fsynced, then renamed over the target. A reader therefore
    sees either the old or the new document, never a torn one.

    Usage::

        store = SessionStore(StoreConfig(data_dir="./data"), default_daily_credits=5)
        session = await store.load("user-123")   # None if the tenant is new
        ...
        await store.save("user-123", session)
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        default_daily_credits: int,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
    ) -> None:
        """
        Raises:
            StorageIOError: If the data directory cannot be created or is not writable.
        """
        self._config = config
        self._data_dir = Path(config.data_dir)
        self._default_daily_credits = default_daily_credits
        self._clock = clock
        self._event_bus = event_bus
        self._writes: dict[str, asyncio.Future[None]] = {}
        self._logger = structlog.get_logger("chatledger.store")

        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(f"Cannot create data directory {self._data_dir}: {exc}") from exc
        if not os.access(self._data_dir, os.W_OK | os.X_OK):
            raise StorageIOError(f"Data directory {self._data_dir} is not writable")

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, tenant: str) -> Path:
        """Return the JSON file path for *tenant*."""
        return self._data_dir / f"{validate_tenant_key(tenant)}.json"

    def _lock_path(self, path: Path) -> Path:
        return path.with_name(path.name + ".lock")

    # ── Load ───────────────────────────────────────────────────────────────────

    async def load(self, tenant: str) -> SessionData | None:
        """
        Load and migrate the session for *tenant*.

        Returns:
            The session, or ``None`` when no file exists. Under
            ``on_corrupt="reset"`` an unparseable file is quarantined and
            ``None`` is returned as well.

        Raises:
            CorruptSessionError: Unparseable file under ``on_corrupt="raise"``.
            LockTimeoutError: If the file lock could not be taken.
            StorageIOError: If the file exists but cannot be read.
        """
        path = self.path_for(tenant)
        await self.wait_for_write(tenant)
        now_ms = to_epoch_ms(self._clock())
        loaded = await asyncio.to_thread(self._load_sync, tenant, path, now_ms)
        if loaded is None:
            return None

        session, original_version = loaded
        if original_version != session.schema_version:
            self._logger.info(
                "session_migrated",
                tenant=tenant,
                from_version=original_version,
                to_version=session.schema_version,
            )
            self._publish(
                LedgerEvent.SESSION_MIGRATED,
                {"tenant": tenant, "from_version": original_version, "to_version": session.schema_version},
            )
        self._logger.debug("session_loaded", tenant=tenant, contexts=len(session.contexts))
        return session

    def _load_sync(self, tenant: str, path: Path, now_ms: int) -> tuple[SessionData, int] | None:
        with file_lock(
            self._lock_path(path),
            retries=self._config.lock_retries,
            interval=self._config.lock_retry_interval,
        ):
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise StorageIOError(f"Cannot read {path}: {exc}", tenant=tenant) from exc

            try:
                doc = json.loads(raw.decode("utf-8"))
                upgraded, original_version = migrate(
                    doc,
                    UpgradeDefaults(daily_credits=self._default_daily_credits, now_ms=now_ms),
                )
                # pydantic.ValidationError subclasses ValueError
                session = SessionData.model_validate(upgraded)
            except ValueError as exc:
                return self._handle_corrupt(tenant, path, str(exc))
        return session, original_version

    def _handle_corrupt(self, tenant: str, path: Path, reason: str) -> None:
        """Apply the configured corrupt-file policy. Called with the file lock held."""
        if self._config.on_corrupt == "raise":
            self._logger.error("session_corrupt", tenant=tenant, reason=reason, policy="raise")
            raise CorruptSessionError(tenant, reason)

        quarantine = path.with_name(f"{path.name}.corrupt-{to_epoch_ms(self._clock())}")
        try:
            os.replace(path, quarantine)
        except OSError as exc:
            raise StorageIOError(f"Cannot quarantine corrupt file {path}: {exc}", tenant=tenant) from exc
        self._logger.error(
            "session_corrupt",
            tenant=tenant,
            reason=reason,
            policy="reset",
            quarantined_to=str(quarantine),
        )
        return None

    # ── Save ───────────────────────────────────────────────────────────────────

    async def save(self, tenant: str, session: SessionData) -> None:
        """
        Atomically replace the file for *tenant* with *session*.

        Once started, the write is shielded from cancellation of the calling
        task: it runs to completion or failure, and a failure nobody is left
        to observe is still logged. Such a detached write is awaited by the
        next load or save of the same tenant before it touches the file.

        Raises:
            LockTimeoutError: If the file lock could not be taken.
            StorageIOError: If the document could not be written.
        """
        path = self.path_for(tenant)
        payload = json.dumps(
            session.model_dump(by_alias=True, mode="json"),
            indent=self._config.indent,
            ensure_ascii=False,
        )
        await self.wait_for_write(tenant)
        write = asyncio.ensure_future(asyncio.to_thread(self._save_sync, tenant, path, payload))
        self._writes[tenant] = write
        write.add_done_callback(lambda done: self._forget_write(tenant, done))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            write.add_done_callback(self._log_detached_save(tenant))
            raise

    def _save_sync(self, tenant: str, path: Path, payload: str) -> None:
        with file_lock(
            self._lock_path(path),
            retries=self._config.lock_retries,
            interval=self._config.lock_retry_interval,
        ):
            tmp_name: str | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=self._data_dir,
                    prefix=f".{path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, path)
            except OSError as exc:
                if tmp_name is not None:
                    Path(tmp_name).unlink(missing_ok=True)
                raise StorageIOError(f"Cannot write {path}: {exc}", tenant=tenant) from exc
        self._logger.debug("session_saved", tenant=tenant, bytes=len(payload))

    async def wait_for_write(self, tenant: str) -> None:
        """
        Wait for a write to *tenant*'s file that outlived its cancelled caller.

        Loads and saves call this first, so a detached write can never land
        after a newer one. The write's own failure is not raised here; it was
        already logged when the write finished.
        """
        pending = self._writes.get(tenant)
        if pending is not None and not pending.done():
            await asyncio.wait({pending})

    def _forget_write(self, tenant: str, write: asyncio.Future[None]) -> None:
        if self._writes.get(tenant) is write:
            del self._writes[tenant]

    def _log_detached_save(self, tenant: str) -> Callable[[asyncio.Future[None]], None]:
        def _done(task: asyncio.Future[None]) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                self._logger.error("session_save_failed", tenant=tenant, error=str(exc), detached=True)
            else:
                self._logger.info("session_save_completed", tenant=tenant, detached=True)

        return _done

    def _publish(self, event: LedgerEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)
