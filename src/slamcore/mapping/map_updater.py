"""Single worker thread that owns all multi-node graph mutations.

Per-node locks keep each individual graph operation atomic, but
operations spanning several nodes (connecting a new keyframe, erasing
one and reattaching its children) are not. Funnelling them through one
worker serialises them, so two such operations never interleave.
Readers may keep querying graph nodes from any thread.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING

from ..data import add_loop_edge_pair
from ..exceptions import ContractViolationError
from .messages import (
    KeyframeEraseMessage,
    KeyframeInsertMessage,
    LoopEdgeMessage,
    MapUpdateMessage,
    ShutdownMessage,
)

if TYPE_CHECKING:
    from ..data import MapDatabase

logger = logging.getLogger(__name__)


class MapUpdater:
    """Applies map update messages on a dedicated thread.

    Usage::

        with MapUpdater(map_db) as updater:
            updater.send(KeyframeInsertMessage(keyframe))
            updater.wait_until_idle()
    """

    def __init__(self, map_db: MapDatabase, max_queue_size: int = 0) -> None:
        """Initialize the worker (not started).

        Args:
            map_db: Map whose graph the worker mutates
            max_queue_size: Queue bound, 0 for unbounded
        """
        self._map_db = map_db
        self._queue: queue.Queue[MapUpdateMessage] = queue.Queue(maxsize=max_queue_size)
        self._thread: threading.Thread | None = None
        self._is_running = False
        self._errors: list[ContractViolationError] = []
        self._errors_lock = threading.Lock()
        self.num_processed = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """Start the worker thread.

        Raises:
            RuntimeError: If a previous worker outlived its ``stop`` timeout
                and is still consuming the queue
        """
        if self._is_running:
            return
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Previous map updater thread is still running")

        self._thread = threading.Thread(
            target=self._run, name="map-updater", daemon=True
        )
        self._thread.start()
        self._is_running = True
        logger.info("Map updater started")

    def stop(self, timeout: float = 2.0) -> None:
        """Drain pending messages, then stop the worker thread."""
        if not self._is_running:
            return

        self._queue.put(ShutdownMessage())
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Map updater did not stop within %.1fs", timeout)
            else:
                self._thread = None

        self._is_running = False

    def send(self, msg: MapUpdateMessage, timeout: float | None = None) -> None:
        """Queue a message for the worker.

        Raises:
            RuntimeError: If the worker is not running
        """
        if not self._is_running:
            raise RuntimeError("Map updater is not running")
        self._queue.put(msg, timeout=timeout)

    def wait_until_idle(self) -> None:
        """Block until every queued message has been processed.

        Raises:
            ContractViolationError: The first contract violation hit while
                processing, if any
        """
        self._queue.join()
        with self._errors_lock:
            errors, self._errors = self._errors, []
        if errors:
            raise errors[0]

    def _run(self) -> None:
        while True:
            msg = self._queue.get()
            try:
                if isinstance(msg, ShutdownMessage):
                    logger.info("Map updater stopped")
                    return
                self._handle(msg)
                self.num_processed += 1
            except ContractViolationError as e:
                logger.error("Contract violation while handling %s: %s", msg, e)
                with self._errors_lock:
                    self._errors.append(e)
            except Exception:
                logger.exception("Failed to handle %s", msg)
            finally:
                self._queue.task_done()

    def _handle(self, msg: MapUpdateMessage) -> None:
        if isinstance(msg, KeyframeInsertMessage):
            keyfrm = msg.keyframe
            self._map_db.add_keyframe(keyfrm)
            keyfrm.graph_node.update_connections()
            logger.debug("Inserted keyframe %d", keyfrm.id)

        elif isinstance(msg, KeyframeEraseMessage):
            keyfrm = self._map_db.get_keyframe(msg.keyframe_id)
            if keyfrm is None:
                logger.warning("Cannot erase unknown keyframe %d", msg.keyframe_id)
                return
            keyfrm.prepare_for_erasing(self._map_db)

        elif isinstance(msg, LoopEdgeMessage):
            keyfrm_1 = self._map_db.get_keyframe(msg.keyframe_id_1)
            keyfrm_2 = self._map_db.get_keyframe(msg.keyframe_id_2)
            if keyfrm_1 is None or keyfrm_2 is None:
                logger.warning(
                    "Cannot add loop edge %d-%d: unknown keyframe",
                    msg.keyframe_id_1,
                    msg.keyframe_id_2,
                )
                return
            add_loop_edge_pair(keyfrm_1, keyfrm_2)

        else:
            raise TypeError(f"Unknown message type: {type(msg).__name__}")

    def __enter__(self) -> MapUpdater:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
