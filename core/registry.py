"""Active request tracking and cancellation."""
import threading

from utils.config import logger
from utils.errors import ConflictError


class CancelHandle:
    """Cooperative cancellation flag for one request.

    Callbacks registered with add_callback run once, on the thread that
    cancels. A callback added after cancellation runs immediately.
    """

    def __init__(self, request_id):
        self.request_id = request_id
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = []

    @property
    def cancelled(self):
        return self._event.is_set()

    def add_callback(self, fn):
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return
        fn()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for fn in callbacks:
            try:
                fn()
            except Exception as e:
                logger.error(f"[Registry] Cancel callback failed for {self.request_id}: {e}", exc_info=True)
        return True

    def wait(self, timeout=None):
        return self._event.wait(timeout)


class RequestRegistry:
    """Single source of truth for which requests are still running."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handles = {}

    def register(self, request_id):
        with self._lock:
            if request_id in self._handles:
                raise ConflictError(f"request {request_id} is already active")
            handle = CancelHandle(request_id)
            self._handles[request_id] = handle
        logger.debug(f"[Registry] Registered request {request_id}")
        return handle

    def cancel(self, request_id):
        with self._lock:
            handle = self._handles.pop(request_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"[Registry] Cancelled request {request_id}")
        return True

    def unregister(self, request_id, handle=None):
        with self._lock:
            current = self._handles.get(request_id)
            # A finished stream must not evict a newer request reusing its id.
            if current is not None and (handle is None or current is handle):
                del self._handles[request_id]

    def is_active(self, request_id):
        with self._lock:
            return request_id in self._handles

    def active_ids(self):
        with self._lock:
            return list(self._handles)
