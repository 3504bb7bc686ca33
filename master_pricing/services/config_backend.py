"""Config store backends.

A backend persists one ``ConfigDocument`` per (service, company) pair:

    {
        "serviceId": "paver_patio_sqft",
        "displayName": "Paver Patio (SQFT)",
        "category": "hardscaping",
        "unit": "sqft",
        "version": "2.0.0",
        "lastModified": "2026-01-01T00:00:00+00:00",
        "modifiedBy": "user-123",
        "baseSettings": {"laborSettings.hourlyLaborRate": 25.0, ...},
        "variables": {"excavation": {"label": ..., "variables": {...}}}
    }

Backends only move documents; conversion and validation live in the
config store. ``watch`` reports writes made by any process sharing the
store, which is how one instance's cache learns about another's saves.
"""

import copy
import inspect
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import structlog
from firebase_admin import firestore
from google.api_core.exceptions import DeadlineExceeded, ServiceUnavailable
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from master_pricing.config.errors import ConfigLoadFailure, ConfigSaveFailure
from master_pricing.config.settings import settings

logger = structlog.get_logger(__name__)

ConfigDocument = Dict[str, Any]
ChangeListener = Callable[[], None]
StopWatching = Callable[[], None]

TRANSIENT_ERRORS = (ServiceUnavailable, DeadlineExceeded)


@runtime_checkable
class ConfigBackend(Protocol):
    """Storage boundary of the config store."""

    async def read(self, service_id: str, company_id: str) -> Optional[ConfigDocument]:
        ...

    async def write(self, service_id: str, company_id: str, document: ConfigDocument) -> None:
        ...

    def watch(self, service_id: str, company_id: str, on_change: ChangeListener) -> StopWatching:
        ...


async def _maybe_await(result: Any) -> Any:
    """Await result if it is awaitable (supports AsyncMock in unit tests)."""
    if inspect.isawaitable(result):
        return await result
    return result


@retry(
    stop=stop_after_attempt(settings.config_read_max_attempts),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    reraise=True,
)
async def _get_document(doc_ref):
    """Fetch a document snapshot, retrying transient Firestore errors."""
    return await _maybe_await(doc_ref.get())


class FirestoreConfigBackend:
    """Firestore-backed config documents.

    Documents live at ``companies/{companyId}/servicePricingConfigs/{serviceId}``.

    Note: Firebase Admin SDK for Python is synchronous. Methods are async
    for interface compatibility.
    """

    COLLECTION_COMPANIES = "companies"

    def __init__(self, db=None, collection: Optional[str] = None):
        """Initialize FirestoreConfigBackend.

        Args:
            db: Optional Firestore client. If not provided, uses default.
            collection: Per-company subcollection name.
        """
        self._db = db
        self.collection = collection or settings.pricing_config_collection

    @property
    def db(self):
        """Get Firestore client (lazy initialization)."""
        if self._db is None:
            self._db = firestore.client()
        return self._db

    def _doc_ref(self, service_id: str, company_id: str):
        return (
            self.db.collection(self.COLLECTION_COMPANIES)
            .document(company_id)
            .collection(self.collection)
            .document(service_id)
        )

    async def read(self, service_id: str, company_id: str) -> Optional[ConfigDocument]:
        """Fetch the stored document, or None if the company has none.

        Raises:
            ConfigLoadFailure: If Firestore operation fails.
        """
        try:
            doc = await _get_document(self._doc_ref(service_id, company_id))
        except Exception as e:
            logger.error(
                "firestore_config_read_failed",
                service_id=service_id,
                company_id=company_id,
                error=str(e)
            )
            raise ConfigLoadFailure(
                message=f"Failed to read config: {str(e)}",
                service_id=service_id,
                company_id=company_id
            ) from e

        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        data.pop("updatedAt", None)
        return data

    async def write(self, service_id: str, company_id: str, document: ConfigDocument) -> None:
        """Replace the stored document in one ``set`` call.

        Raises:
            ConfigSaveFailure: If Firestore operation fails.
        """
        try:
            data = {**document, "updatedAt": firestore.SERVER_TIMESTAMP}
            await _maybe_await(self._doc_ref(service_id, company_id).set(data))
            logger.info("firestore_config_written", service_id=service_id, company_id=company_id)
        except Exception as e:
            logger.error(
                "firestore_config_write_failed",
                service_id=service_id,
                company_id=company_id,
                error=str(e)
            )
            raise ConfigSaveFailure(
                message=f"Failed to write config: {str(e)}",
                service_id=service_id,
                company_id=company_id
            ) from e

    def watch(self, service_id: str, company_id: str, on_change: ChangeListener) -> StopWatching:
        """Call ``on_change`` whenever the stored document changes.

        Uses a Firestore snapshot listener. The listener's first callback
        reports the current state and is skipped. Callbacks arrive on the
        SDK's listener thread.

        Returns:
            A function that stops the listener.
        """
        initial = True

        def on_snapshot(doc_snapshots, changes, read_time):
            nonlocal initial
            if initial:
                initial = False
                return
            logger.info("firestore_config_changed", service_id=service_id, company_id=company_id)
            on_change()

        listener = self._doc_ref(service_id, company_id).on_snapshot(on_snapshot)
        logger.debug("firestore_config_watch_started", service_id=service_id, company_id=company_id)
        return listener.unsubscribe


class InMemoryConfigBackend:
    """Dict-backed documents for tests and local runs.

    Documents are deep-copied on the way in and out, so callers never share
    state with the store.
    """

    def __init__(self, documents: Optional[Dict[Tuple[str, str], ConfigDocument]] = None):
        self._documents: Dict[Tuple[str, str], ConfigDocument] = {
            key: copy.deepcopy(doc) for key, doc in (documents or {}).items()
        }
        self._watchers: Dict[Tuple[str, str], List[ChangeListener]] = {}
        self.reads = 0
        self.writes = 0

    async def read(self, service_id: str, company_id: str) -> Optional[ConfigDocument]:
        self.reads += 1
        doc = self._documents.get((service_id, company_id))
        return copy.deepcopy(doc) if doc is not None else None

    async def write(self, service_id: str, company_id: str, document: ConfigDocument) -> None:
        self.writes += 1
        self._documents[(service_id, company_id)] = copy.deepcopy(document)
        self._notify(service_id, company_id)

    def delete(self, service_id: str, company_id: str) -> None:
        if self._documents.pop((service_id, company_id), None) is not None:
            self._notify(service_id, company_id)

    def watch(self, service_id: str, company_id: str, on_change: ChangeListener) -> StopWatching:
        """Call ``on_change`` synchronously after every write to the key."""
        key = (service_id, company_id)
        self._watchers.setdefault(key, []).append(on_change)

        def stop() -> None:
            listeners = self._watchers.get(key, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return stop

    def watcher_count(self, service_id: str, company_id: str) -> int:
        return len(self._watchers.get((service_id, company_id), ()))

    def _notify(self, service_id: str, company_id: str) -> None:
        for on_change in list(self._watchers.get((service_id, company_id), ())):
            on_change()
