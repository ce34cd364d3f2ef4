"""Cursor-based incremental sync against the transactions provider.

A user's stored cursor only moves after a full fetch loop succeeds. Pages
are accumulated in memory first, so a provider failure halfway through
leaves the stored cursor where it was and the next call resumes from the
last confirmed position. Pages may therefore be delivered more than once;
the store absorbs that because every write is keyed on the transaction id.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import config
from database import DocumentStore
from errors import AuthenticationMissing, PersistenceWarning, SyncInProgress, ValidationError
from models import Account, Alert, SyncState, Transaction
from monitor import scan_for_alerts

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    added: List[Transaction] = field(default_factory=list)
    modified: List[Transaction] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    cursor: Optional[str] = None
    pages: int = 0
    alerts: List[Alert] = field(default_factory=list)
    warnings: List[PersistenceWarning] = field(default_factory=list)


@dataclass
class RangeResult:
    transactions: List[Transaction] = field(default_factory=list)
    accounts: List[Account] = field(default_factory=list)
    total_count: int = 0
    alerts: List[Alert] = field(default_factory=list)
    warnings: List[PersistenceWarning] = field(default_factory=list)


class KeyedLocks:
    """One lock per key, created on first use and dropped once no caller
    holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: float):
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                raise SyncInProgress(f"A sync is already running for user {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


def _require_user(user_id: str) -> str:
    if not user_id or not str(user_id).strip():
        raise ValidationError("User ID is required")
    return str(user_id).strip()


class SyncCoordinator:
    """Keeps a user's stored transactions current with the provider.

    At most one ``sync``/``link`` runs per user at a time; an overlapping
    call waits up to ``lock_timeout`` seconds and then raises
    ``SyncInProgress``.
    """

    def __init__(self, store: DocumentStore, provider, lock_timeout: float = None):
        self.store = store
        self.provider = provider
        self.lock_timeout = config.SYNC_LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        self._locks = KeyedLocks()

    def _access_token(self, user_id: str) -> SyncState:
        state = self.store.get_sync_state(user_id)
        if not state.access_token:
            raise AuthenticationMissing(f"No linked account for user {user_id}; re-link to continue")
        return state

    def _persist(self, action: str, fn, *args) -> Optional[PersistenceWarning]:
        try:
            fn(*args)
        except Exception as e:
            logger.warning("Failed to %s: %s", action, e)
            return PersistenceWarning(f"Failed to {action}: {e}")
        return None

    def link(self, user_id: str, public_token: str) -> str:
        """Exchange a Link public token and store the access token. Returns the item id."""
        user_id = _require_user(user_id)
        if not public_token:
            raise ValidationError("Public token is required")

        access_token, item_id = self.provider.exchange_public_token(public_token)
        with self._locks.hold(user_id, self.lock_timeout):
            # A new item starts its change stream from scratch
            self.store.set_sync_state(user_id, SyncState(user_id=user_id, access_token=access_token, cursor=None))
        logger.info("Linked item %s for user %s", item_id, user_id)
        return item_id

    def sync(self, user_id: str) -> SyncResult:
        user_id = _require_user(user_id)
        with self._locks.hold(user_id, self.lock_timeout):
            state = self._access_token(user_id)
            result = SyncResult(cursor=state.cursor)

            cursor = state.cursor
            has_more = True
            while has_more:
                page = self.provider.fetch_delta(state.access_token, cursor)
                result.added.extend(page.added)
                result.modified.extend(page.modified)
                result.removed.extend(page.removed)
                result.pages += 1
                cursor = page.next_cursor or cursor
                has_more = page.has_more

            result.cursor = cursor
            logger.info(
                "Synced %d page(s) for user %s: %d added, %d modified, %d removed",
                result.pages, user_id, len(result.added), len(result.modified), len(result.removed),
            )

            for action, fn, items in (
                ("store transactions", self.store.upsert_transactions, result.added + result.modified),
                ("remove transactions", self.store.remove_transactions, result.removed),
            ):
                warning = self._persist(action, fn, user_id, items)
                if warning:
                    result.warnings.append(warning)

            # The cursor must not run ahead of what was actually stored
            if result.warnings:
                logger.warning("Keeping previous cursor for user %s after failed writes", user_id)
            else:
                warning = self._persist(
                    "save sync cursor", self.store.set_sync_state, user_id,
                    state.model_copy(update={"cursor": cursor}),
                )
                if warning:
                    result.warnings.append(warning)

        result.alerts = scan_for_alerts(result.added)
        return result

    def fetch_range(self, user_id: str, start_date: date, end_date: date) -> RangeResult:
        """Pull a full date range in one shot. Never touches the stored cursor."""
        user_id = _require_user(user_id)
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")
        state = self._access_token(user_id)

        result = RangeResult()
        accounts: Dict[str, Account] = {}
        while True:
            page = self.provider.fetch_range(
                state.access_token, start_date, end_date, offset=len(result.transactions)
            )
            result.transactions.extend(page.transactions)
            for a in page.accounts:
                accounts[a.id] = a
            result.total_count = page.total_count
            if not page.transactions or len(result.transactions) >= page.total_count:
                break
        result.accounts = list(accounts.values())
        logger.info(
            "Fetched %d of %d transaction(s) and %d account(s) for user %s",
            len(result.transactions), result.total_count, len(result.accounts), user_id,
        )

        for action, fn, items in (
            ("store transactions", self.store.upsert_transactions, result.transactions),
            ("store accounts", self.store.upsert_accounts, result.accounts),
        ):
            warning = self._persist(action, fn, user_id, items)
            if warning:
                result.warnings.append(warning)

        result.alerts = scan_for_alerts(result.transactions, result.accounts)
        return result
