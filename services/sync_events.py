#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Change propagation service
In-process event bus plus a TTL read cache invalidated by bus events.
Every write lands in SQLite first, then the change is published here.
"""
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from config.settings import SyncConfig
from utils.dates import now_str

logger = logging.getLogger('app')

# Collections published by the services
SYNC_KEYS = ('staff', 'evaluations', 'themes', 'staff-trainings')

FORCE_SYNC_EVENTS = (
    'force-sync',
    'data-updated',
    'staff-updated',
    'evaluations-updated',
    'themes-updated',
)


class SyncEventBus:
    """Per-event listeners plus global callbacks invoked on every event"""

    def __init__(self, log_size: int = SyncConfig.EVENT_LOG_SIZE):
        self._listeners: Dict[str, List[Callable]] = {}
        self._global_callbacks: List[Callable] = []
        self._lock = threading.RLock()
        self._event_log = deque(maxlen=log_size)

    # ========== Subscription ==========

    def add_listener(self, event: str, callback: Callable) -> None:
        with self._lock:
            callbacks = self._listeners.setdefault(event, [])
            if callback not in callbacks:
                callbacks.append(callback)

    def remove_listener(self, event: str, callback: Callable) -> None:
        with self._lock:
            callbacks = self._listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._listeners.pop(event, None)

    def add_global_callback(self, callback: Callable) -> None:
        with self._lock:
            if callback not in self._global_callbacks:
                self._global_callbacks.append(callback)

    def remove_global_callback(self, callback: Callable) -> None:
        with self._lock:
            if callback in self._global_callbacks:
                self._global_callbacks.remove(callback)

    def listener_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is None:
                return sum(len(cbs) for cbs in self._listeners.values())
            return len(self._listeners.get(event, []))

    # ========== Publication ==========

    def emit(self, event: str, payload: Any = None) -> int:
        """
        Notify the listeners of event, then every global callback

        A failing callback is logged and the remaining ones still run.

        Returns:
            int: number of callbacks that completed without error
        """
        with self._lock:
            listeners = list(self._listeners.get(event, []))
            global_callbacks = list(self._global_callbacks)
            self._event_log.append({'event': event, 'timestamp': now_str()})

        delivered = 0
        for callback in listeners:
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}", exc_info=True)

        for callback in global_callbacks:
            try:
                callback(event, payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Global sync callback failed on '{event}': {e}", exc_info=True)

        return delivered

    def notify_change(self, key: str, payload: Any = None) -> None:
        """Publish '<key>-updated' followed by 'data-updated'"""
        self.emit(f'{key}-updated', payload)
        self.emit('data-updated', {'source': key})

    def force_sync_all(self) -> List[str]:
        logger.info("Forcing a full synchronization")
        for event in FORCE_SYNC_EVENTS:
            self.emit(event)
        return list(FORCE_SYNC_EVENTS)

    def recent_events(self, limit: int = 50) -> List[dict]:
        with self._lock:
            events = list(self._event_log)
        return list(reversed(events))[:limit]

    def clear(self) -> None:
        """Drop every listener, callback and logged event"""
        with self._lock:
            self._listeners.clear()
            self._global_callbacks.clear()
            self._event_log.clear()


class ReadCache:
    """
    TTL cache for hot collection reads, invalidated through the bus

    Readers take generation(key) before querying and hand it to set(); a
    value read before an invalidate or clear is then dropped instead of stored.
    """

    def __init__(self, bus: SyncEventBus, ttl: int = SyncConfig.CACHE_TTL):
        self.ttl = ttl
        self._bus = bus
        self._entries: Dict[str, tuple] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self.attach()

    def attach(self) -> None:
        """(Re)subscribe to the bus after a clear()"""
        self._bus.add_global_callback(self._on_event)

    def _on_event(self, event: str, payload: Any = None) -> None:
        if event in ('data-cleared', 'force-sync'):
            self.clear()
        elif event.endswith('-updated') and event != 'data-updated':
            self.invalidate(event[:-len('-updated')])

    def generation(self, key: str) -> tuple:
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if time.time() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, generation: Optional[tuple] = None) -> bool:
        """Store value; returns False when generation is stale"""
        with self._lock:
            current = (self._epoch, self._generations.get(key, 0))
            if generation is not None and generation != current:
                return False
            self._entries[key] = (value, time.time())
            return True

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._epoch += 1

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)


event_bus = SyncEventBus()
read_cache = ReadCache(event_bus)


def reset_sync_state() -> None:
    """Clear bus subscriptions and cache, keeping the cache subscribed"""
    event_bus.clear()
    read_cache.clear()
    read_cache.attach()


def on_user_action(action: str) -> dict:
    """
    Run the consistency check after a user action

    Emits 'data-inconsistency' with the report when issues are found.
    """
    from services.maintenance_service import DataMaintenanceService

    report = DataMaintenanceService.verify_data_consistency()
    if not report['is_consistent']:
        logger.warning(f"Inconsistencies detected after '{action}': {len(report['issues'])} issue(s)")
        event_bus.emit('data-inconsistency', {'action': action, 'report': report})
    return report
