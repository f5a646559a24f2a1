"""
Result Store - Persisted Session State

This module owns the key/value contract that makes a session survive a
reload: transcript, reference, model choice, generation outcomes, metrics
and the two in-flight flags.

Architecture:
    KeyValueBackend (Protocol)
    ├── InMemoryBackend   → Process-local dict (tests, embedding hosts)
    └── JsonFileBackend   → One JSON object on disk, replaced atomically

    ResultStore           → Typed accessors + schema version on top of a backend

Storage Contract:
    1. Values are strings; booleans are "true"/"false"; lists are JSON text
    2. An absent key means "unset", never an error
    3. A write is one change set applied all-or-nothing; None deletes a key
    4. Every write reports a StorageWriteResult instead of raising

Pipeline Position:
    Orchestrator → [ResultStore] → Backend
                    ^^^^^^^^^^^
                    You are here

Usage:
    from soap_evaluator.repository import JsonFileBackend, ResultStore

    store = ResultStore(JsonFileBackend(".soap_evaluator/session.json"))
    store.ensure_schema()
    snapshot = store.snapshot()
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from loguru import logger

from soap_evaluator.core.constants import STORE_SCHEMA_VERSION, StoreKeys
from soap_evaluator.core.exceptions import StorageError
from soap_evaluator.core.models import GenerationOutcome, MetricResult, SessionSnapshot


ChangeSet = Mapping[str, Optional[str]]

_TRUE = "true"
_FALSE = "false"


def _flag(value: bool) -> str:
    return _TRUE if value else _FALSE


# =============================================================================
# STAGE 1: WRITE RESULT
# =============================================================================


@dataclass(frozen=True)
class StorageWriteResult:
    """
    Outcome of one change-set write.

    Truthy on success, so callers can write `if not store.write(...)`.

    Attributes:
        ok: Whether the whole change set was applied
        keys: Keys the change set touched
        error: Failure description when `ok` is False
    """

    ok: bool
    keys: Tuple[str, ...] = ()
    error: Optional[str] = None

    @classmethod
    def success(cls, keys: Sequence[str]) -> "StorageWriteResult":
        return cls(ok=True, keys=tuple(keys))

    @classmethod
    def failure(cls, keys: Sequence[str], error: str) -> "StorageWriteResult":
        return cls(ok=False, keys=tuple(keys), error=error)

    def __bool__(self) -> bool:
        return self.ok


# =============================================================================
# STAGE 2: BACKEND PROTOCOL (INTERFACE)
# =============================================================================


@runtime_checkable
class KeyValueBackend(Protocol):
    """
    Contract for a string key/value backend.

    Required Methods:
        get(key)       → Stored string or None
        write(changes) → Apply every change or none; None values delete
    """

    def get(self, key: str) -> Optional[str]:
        ...

    def write(self, changes: ChangeSet) -> None:
        ...


class InMemoryBackend:
    """Dict-backed backend. Lives as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, changes: ChangeSet) -> None:
        with self._lock:
            updated = dict(self._data)
            _apply(updated, changes)
            self._data = updated

    def as_dict(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFileBackend:
    """
    Backend persisted as a single JSON object.

    The file is read once, on first access. Writes go to a temporary file
    in the same directory which then replaces the original, so a crash
    mid-write leaves the previous state intact.

    Raises:
        StorageError: File unreadable, not a JSON object, or not writable
    """

    def __init__(self, path: str):
        self._path = Path(path)
        self._data: Optional[Dict[str, str]] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def write(self, changes: ChangeSet) -> None:
        with self._lock:
            updated = dict(self._load())
            _apply(updated, changes)
            self._flush(updated)
            self._data = updated

    # -------------------------------------------------------------------------
    # 2.1 File I/O
    # -------------------------------------------------------------------------

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data

        if not self._path.exists():
            self._data = {}
            return self._data

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Store file is not valid JSON: {e}", context={"path": str(self._path)})
        except OSError as e:
            raise StorageError(f"Store file unreadable: {e}", context={"path": str(self._path)})

        if not isinstance(raw, dict):
            raise StorageError("Store file must hold a JSON object", context={"path": str(self._path)})

        # non-string values (true, 1, lists) keep their JSON spelling
        self._data = {
            str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items() if v is not None
        }
        logger.debug(f"Loaded {len(self._data)} key(s) from {self._path}")
        return self._data

    def _flush(self, data: Dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self._path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Store file not writable: {e}", context={"path": str(self._path)})


def _apply(data: Dict[str, str], changes: ChangeSet) -> None:
    for key, value in changes.items():
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value


# =============================================================================
# STAGE 3: RESULT STORE
# =============================================================================


class ResultStore:
    """
    Typed access to the persisted session.

    What it does:
        Maps the session fields onto the logical keys, serializes outcome
        and metric lists, and turns backend exceptions into
        StorageWriteResult values.

    Example:
        >>> store = ResultStore(InMemoryBackend())
        >>> store.ensure_schema()
        >>> store.begin_session("Doctor: ...", "gpt-4o-mini").ok
        True
        >>> store.snapshot().generation_in_progress
        True
    """

    def __init__(self, backend: Optional[KeyValueBackend] = None):
        self._backend = backend if backend is not None else InMemoryBackend()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    # =========================================================================
    # STAGE 4: RAW ACCESS
    # =========================================================================

    def get(self, key: str) -> Optional[str]:
        return self._backend.get(key)

    def write(self, changes: ChangeSet) -> StorageWriteResult:
        """Apply a change set; failures are logged and reported, not raised."""
        keys = list(changes.keys())
        try:
            self._backend.write(changes)
        except (StorageError, OSError, TypeError, ValueError) as e:
            logger.error(f"Result store write failed | Keys: {keys} | Error: {e}")
            return StorageWriteResult.failure(keys, str(e))
        return StorageWriteResult.success(keys)

    # =========================================================================
    # STAGE 5: SCHEMA VERSION
    # =========================================================================

    def ensure_schema(self) -> int:
        """
        Check the stored schema version, stamping unversioned stores.

        Returns:
            The schema version in effect

        Raises:
            StorageError: Version is newer than supported, unparsable,
                or could not be stamped
        """
        raw = self._backend.get(StoreKeys.SCHEMA_VERSION)

        if raw is None:
            result = self.write({StoreKeys.SCHEMA_VERSION: str(STORE_SCHEMA_VERSION)})
            if not result:
                raise StorageError(
                    f"Could not stamp schema version: {result.error}",
                    context={"key": StoreKeys.SCHEMA_VERSION},
                )
            logger.debug(f"Stamped result store with schema version {STORE_SCHEMA_VERSION}")
            return STORE_SCHEMA_VERSION

        try:
            version = int(raw)
        except ValueError:
            raise StorageError(f"Unreadable schema version: {raw!r}", context={"key": StoreKeys.SCHEMA_VERSION})

        if version > STORE_SCHEMA_VERSION:
            raise StorageError(
                f"Result store schema version {version} is newer than supported {STORE_SCHEMA_VERSION}",
                context={"stored": version, "supported": STORE_SCHEMA_VERSION},
            )
        return version

    # =========================================================================
    # STAGE 6: TYPED READS
    # =========================================================================

    def snapshot(self) -> SessionSnapshot:
        """
        Read every session key; corrupt lists come back empty.

        Any stored results value, parseable or not, counts as a recorded
        outcome so a resume never regenerates over it.
        """
        results_raw = self._backend.get(StoreKeys.RESULTS)
        outcomes = self._read_list(StoreKeys.RESULTS, results_raw, GenerationOutcome.from_dict)
        metrics = self._read_list(
            StoreKeys.METRICS, self._backend.get(StoreKeys.METRICS), MetricResult.from_dict
        )

        return SessionSnapshot(
            transcript=self._backend.get(StoreKeys.TRANSCRIPT) or "",
            reference=self._backend.get(StoreKeys.REFERENCE) or "",
            has_reference=self._backend.get(StoreKeys.HAS_REFERENCE) == _TRUE,
            model=self._backend.get(StoreKeys.MODEL) or "",
            outcomes=outcomes or [],
            metrics=metrics or [],
            generation_in_progress=self._backend.get(StoreKeys.GENERATION_IN_PROGRESS) == _TRUE,
            evaluation_in_progress=self._backend.get(StoreKeys.EVALUATION_IN_PROGRESS) == _TRUE,
            results_stored=results_raw is not None and results_raw != "",
        )

    @staticmethod
    def _read_list(key: str, raw: Optional[str], parse) -> Optional[List]:
        """Parse a JSON list; None when absent or corrupt."""
        if not raw:
            return None
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError(f"expected a JSON list, got {type(items).__name__}")
            return [parse(item) for item in items]
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Ignoring corrupt stored value | Key: {key} | Error: {e}")
            return None

    # =========================================================================
    # STAGE 7: TYPED WRITES
    # =========================================================================

    def begin_session(
        self, transcript: str, model: str, reference: Optional[str] = None
    ) -> StorageWriteResult:
        """Persist a fresh upload, dropping the previous session's results."""
        return self.write(
            {
                StoreKeys.TRANSCRIPT: transcript,
                StoreKeys.MODEL: model,
                StoreKeys.REFERENCE: reference or None,
                StoreKeys.HAS_REFERENCE: _flag(bool(reference)),
                StoreKeys.RESULTS: None,
                StoreKeys.METRICS: None,
                StoreKeys.GENERATION_IN_PROGRESS: _TRUE,
                StoreKeys.EVALUATION_IN_PROGRESS: _FALSE,
            }
        )

    def save_reference(self, reference: str) -> StorageWriteResult:
        return self.write({StoreKeys.REFERENCE: reference, StoreKeys.HAS_REFERENCE: _TRUE})

    def save_outcomes(self, outcomes: Sequence[GenerationOutcome]) -> StorageWriteResult:
        """Persist outcomes and clear the generation flag in one write."""
        return self.write(
            {
                StoreKeys.RESULTS: json.dumps([outcome.to_dict() for outcome in outcomes]),
                StoreKeys.GENERATION_IN_PROGRESS: _FALSE,
            }
        )

    def save_metrics(self, metrics: Sequence[MetricResult]) -> StorageWriteResult:
        """Persist metrics and clear the evaluation flag in one write."""
        return self.write(
            {
                StoreKeys.METRICS: json.dumps([metric.to_dict() for metric in metrics]),
                StoreKeys.EVALUATION_IN_PROGRESS: _FALSE,
            }
        )

    def set_flag(self, key: str, value: bool) -> StorageWriteResult:
        return self.write({key: _flag(value)})
