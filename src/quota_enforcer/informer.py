"""List+watch cache for a single Kubernetes object kind."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .config import (
    CACHE_RESYNC_SECONDS,
    WATCH_BACKOFF_INITIAL_SECONDS,
    WATCH_BACKOFF_MAX_SECONDS,
    WATCH_TIMEOUT_SECONDS,
)
from .utils import list_items, list_resource_version, object_key, object_meta

logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

HTTP_GONE = 410

ChangeHandler = Callable[[str, Any], None]


class ReadWriteLock:
    """Many concurrent readers or a single writer. Waiting writers go first."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_lock(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class WatchCache:
    """
    Eventually-consistent in-memory mirror of one object kind.

    The cache lists the kind once, then follows a watch from the listed
    resourceVersion. Whenever the watch ends it lists again, diffs the
    result against the index and emits the differences to handlers.
    Reads report nothing until the first list has been applied.
    """

    def __init__(
        self,
        kind: str,
        list_func: Callable[..., Any],
        list_kwargs: Optional[Dict[str, Any]] = None,
        resync_period: float = CACHE_RESYNC_SECONDS,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        watch_factory: Callable[[], Any] = watch.Watch,
        backoff_initial: float = WATCH_BACKOFF_INITIAL_SECONDS,
        backoff_max: float = WATCH_BACKOFF_MAX_SECONDS,
    ):
        """
        Initialize the cache.

        Args:
            kind: Name used in log messages ("pods", "policies", ...)
            list_func: API list function, also used for the watch stream
            list_kwargs: Extra arguments for list_func (e.g. CRD coordinates)
            resync_period: Seconds between synthetic MODIFIED events (0 disables)
            watch_timeout: Server-side watch timeout in seconds
            watch_factory: Builds a watch object with stream() and stop()
        """
        self.kind = kind
        self._list_func = list_func
        self._list_kwargs = dict(list_kwargs or {})
        self.resync_period = resync_period
        self._watch_timeout = watch_timeout
        self._watch_factory = watch_factory
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max

        self._lock = ReadWriteLock()
        self._items: Dict[Tuple[str, str], Any] = {}
        self._by_namespace: Dict[str, Dict[str, Any]] = {}

        self._handlers: List[ChangeHandler] = []
        self._handlers_lock = threading.Lock()
        self._synced = threading.Event()

    # Handlers

    def on_change(self, callback: ChangeHandler) -> None:
        """Register callback(event_type, obj) for ADDED/MODIFIED/DELETED."""
        with self._handlers_lock:
            self._handlers.append(callback)

    def _dispatch(self, event_type: str, obj: Any) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event_type, obj)
            except Exception:
                namespace, name = object_key(obj)
                logger.exception(
                    f"[{self.kind}] Handler failed for {event_type} {namespace}/{name}"
                )

    # Readiness

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(
        self,
        stop_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Block until the first list has been applied.

        Returns:
            True if synced, False on stop or timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._synced.wait(0.1):
            if stop_event is not None and stop_event.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
        return True

    # Reads

    def get(self, namespace: str) -> Tuple[Optional[Any], bool]:
        """
        Get the first object (by name) in a namespace.

        Returns:
            Tuple of (object, found); found is False until synced
        """
        if not self.has_synced():
            return None, False
        with self._lock.read_lock():
            objects = self._by_namespace.get(namespace)
            if not objects:
                return None, False
            return objects[min(objects)], True

    def list(self, namespace: Optional[str] = None) -> List[Any]:
        """List cached objects, optionally within one namespace, ordered by name."""
        if not self.has_synced():
            return []
        with self._lock.read_lock():
            if namespace is None:
                return [self._items[key] for key in sorted(self._items)]
            objects = self._by_namespace.get(namespace) or {}
            return [objects[name] for name in sorted(objects)]

    # Index mutation (callers hold the write lock)

    def _store(self, key: Tuple[str, str], obj: Any) -> None:
        namespace, name = key
        self._items[key] = obj
        self._by_namespace.setdefault(namespace, {})[name] = obj

    def _remove(self, key: Tuple[str, str]) -> None:
        namespace, name = key
        self._items.pop(key, None)
        objects = self._by_namespace.get(namespace)
        if objects is not None:
            objects.pop(name, None)
            if not objects:
                del self._by_namespace[namespace]

    def _apply(self, event_type: str, obj: Any) -> None:
        key = object_key(obj)
        with self._lock.write_lock():
            if event_type == DELETED:
                self._remove(key)
            else:
                self._store(key, obj)
        logger.debug(f"[{self.kind}] {event_type} {key[0]}/{key[1]}")
        self._dispatch(event_type, obj)

    def relist(self) -> str:
        """
        List the kind and replace the index with the result.

        Returns:
            The collection resourceVersion to start watching from
        """
        response = self._list_func(**self._list_kwargs)
        listed = {object_key(obj): obj for obj in list_items(response)}

        events = []
        with self._lock.write_lock():
            previous = self._items
            for key, obj in listed.items():
                old = previous.get(key)
                if old is None:
                    events.append((ADDED, obj))
                elif object_meta(old)[2] != object_meta(obj)[2]:
                    events.append((MODIFIED, obj))
            for key, obj in previous.items():
                if key not in listed:
                    events.append((DELETED, obj))

            self._items = {}
            self._by_namespace = {}
            for key, obj in listed.items():
                self._store(key, obj)

        for event_type, obj in events:
            self._dispatch(event_type, obj)

        if not self._synced.is_set():
            self._synced.set()
            logger.info(f"[{self.kind}] Cache synced with {len(listed)} object(s)")

        return list_resource_version(response)

    # Loops

    def _watch(self, resource_version: str, stop_event: threading.Event) -> None:
        """Apply watch events until the stream ends or must be re-listed."""
        kwargs = dict(self._list_kwargs)
        kwargs["timeout_seconds"] = self._watch_timeout
        if resource_version:
            kwargs["resource_version"] = resource_version

        w = self._watch_factory()
        try:
            for event in w.stream(self._list_func, **kwargs):
                if stop_event.is_set():
                    break

                event_type = event.get("type")
                obj = event.get("object")

                if event_type == "ERROR":
                    code = obj.get("code") if isinstance(obj, dict) else getattr(obj, "code", None)
                    if code == HTTP_GONE:
                        logger.info(f"[{self.kind}] Resource version expired, re-listing")
                    else:
                        logger.warning(f"[{self.kind}] Watch error event: {obj}")
                    return

                if event_type in (ADDED, MODIFIED, DELETED):
                    self._apply(event_type, obj)
        except ApiException as e:
            if e.status != HTTP_GONE:
                raise
            logger.info(f"[{self.kind}] Resource version expired, re-listing")
        finally:
            w.stop()

    def _resync_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.resync_period):
            self.resync()

    def resync(self) -> None:
        """Re-emit a MODIFIED event for every cached object."""
        if not self.has_synced():
            return
        with self._lock.read_lock():
            snapshot = list(self._items.values())
        logger.debug(f"[{self.kind}] Resyncing {len(snapshot)} object(s)")
        for obj in snapshot:
            self._dispatch(MODIFIED, obj)

    def run(self, stop_event: threading.Event) -> None:
        """List and watch until stop_event is set. Errors retry with backoff."""
        logger.info(f"[{self.kind}] Starting watch cache")

        if self.resync_period > 0:
            threading.Thread(
                target=self._resync_loop,
                args=(stop_event,),
                name=f"{self.kind}-resync",
                daemon=True,
            ).start()

        backoff = self._backoff_initial
        while not stop_event.is_set():
            try:
                resource_version = self.relist()
                started = time.monotonic()
                self._watch(resource_version, stop_event)
                if time.monotonic() - started >= self._watch_timeout / 2:
                    backoff = self._backoff_initial
                    continue
                # Watch closed early: wait before listing again
                logger.debug(f"[{self.kind}] Watch ended early, re-listing in {backoff}s")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, self._backoff_max)
            except ApiException as e:
                logger.error(f"[{self.kind}] List/watch error: {e.status} {e.reason}")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, self._backoff_max)
            except Exception as e:
                logger.error(f"[{self.kind}] Unexpected list/watch error: {e}")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, self._backoff_max)

        logger.info(f"[{self.kind}] Watch cache stopped")

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the cache in a daemon thread."""
        thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name=f"{self.kind}-watcher",
            daemon=True,
        )
        thread.start()
        return thread
