#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Priority operation queue
Database operations are dispatched one at a time by a background thread,
highest priority first, FIFO within a priority level.
"""
import itertools
import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, List, Optional

from config.settings import QueueConfig
from utils.dates import epoch_ms
from utils.errors import OperationCancelledError, OperationTimeoutError

logger = logging.getLogger('app')


def priority_for(op_type: str) -> int:
    """GET 3, CREATE/UPDATE 2, DELETE 1; others default to 2"""
    prefix = (op_type or '').split('_', 1)[0].upper()
    return QueueConfig.PRIORITIES.get(prefix, QueueConfig.DEFAULT_PRIORITY)


class QueuedOperation:
    """A pending unit of work with its caller-facing future"""

    __slots__ = ('id', 'type', 'priority', 'fn', 'args', 'kwargs', 'future', 'enqueued_at')

    def __init__(self, op_id, op_type, priority, fn, args, kwargs):
        self.id = op_id
        self.type = op_type
        self.priority = priority
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.future = Future()
        self.enqueued_at = time.time()

    def to_dict(self):
        return {'id': self.id, 'type': self.type, 'priority': self.priority}


class OperationQueue:
    """
    Single-dispatcher priority queue

    Args:
        app: Flask app whose context wraps every operation (optional)
        timeout: seconds an operation may run before its future fails
        yield_interval: pause between two operations
    """

    def __init__(self, app=None, timeout: float = QueueConfig.OPERATION_TIMEOUT,
                 yield_interval: float = QueueConfig.YIELD_INTERVAL, autostart: bool = True):
        self.app = app
        self.timeout = timeout
        self.yield_interval = yield_interval
        self.autostart = autostart

        self._pending: List[QueuedOperation] = []
        self._condition = threading.Condition()
        self._counter = itertools.count(1)
        self._is_processing = False
        self._stopped = False
        self._dispatcher: Optional[threading.Thread] = None

    # ========== Public API ==========

    def enqueue(self, op_type: str, fn: Callable, *args, priority: Optional[int] = None, **kwargs) -> Future:
        """
        Queue fn(*args, **kwargs) and return a Future for its result

        The operation is inserted before the first queued operation with a
        strictly lower priority.
        """
        if self._stopped:
            raise RuntimeError("Operation queue is shut down")

        if priority is None:
            priority = priority_for(op_type)

        op_id = f"{op_type}_{next(self._counter)}_{epoch_ms()}"
        operation = QueuedOperation(op_id, op_type, priority, fn, args, kwargs)

        with self._condition:
            index = len(self._pending)
            for i, queued in enumerate(self._pending):
                if queued.priority < priority:
                    index = i
                    break
            self._pending.insert(index, operation)
            self._condition.notify()

        logger.debug(f"Queued {op_id} (priority {priority}, position {index})")

        if self.autostart:
            self.start()
        return operation.future

    def run(self, op_type: str, fn: Callable, *args, priority: Optional[int] = None, **kwargs):
        """Enqueue and block until the operation finishes"""
        future = self.enqueue(op_type, fn, *args, priority=priority, **kwargs)
        return future.result()

    def clear_queue(self) -> int:
        """Cancel every pending operation; returns how many were dropped"""
        with self._condition:
            dropped = self._pending
            self._pending = []

        for operation in dropped:
            if not operation.future.done():
                operation.future.set_exception(OperationCancelledError())

        if dropped:
            logger.info(f"Operation queue cleared: {len(dropped)} operation(s) cancelled")
        return len(dropped)

    def get_status(self) -> dict:
        with self._condition:
            return {
                'queue_length': len(self._pending),
                'is_processing': self._is_processing,
                'operations': [op.to_dict() for op in self._pending],
            }

    def pending_ids(self) -> List[str]:
        with self._condition:
            return [op.id for op in self._pending]

    def start(self) -> None:
        with self._condition:
            if self._dispatcher is not None and self._dispatcher.is_alive():
                return
            self._stopped = False
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name='operation-queue', daemon=True
            )
            self._dispatcher.start()

    def shutdown(self, wait: bool = True) -> None:
        self._stopped = True
        self.clear_queue()
        with self._condition:
            self._condition.notify_all()
        if wait and self._dispatcher is not None:
            self._dispatcher.join(timeout=self.timeout)

    # ========== Dispatcher ==========

    def _next_operation(self) -> Optional[QueuedOperation]:
        with self._condition:
            while not self._pending and not self._stopped:
                self._is_processing = False
                self._condition.wait(timeout=0.5)
            if self._stopped:
                self._is_processing = False
                return None
            self._is_processing = True
            return self._pending.pop(0)

    def _dispatch_loop(self) -> None:
        while True:
            operation = self._next_operation()
            if operation is None:
                return
            self._execute(operation)
            time.sleep(self.yield_interval)

    def _call(self, operation: QueuedOperation, outcome: Future) -> None:
        try:
            if self.app is None:
                result = operation.fn(*operation.args, **operation.kwargs)
            else:
                with self.app.app_context():
                    result = operation.fn(*operation.args, **operation.kwargs)
        except Exception as e:
            outcome.set_exception(e)
        else:
            outcome.set_result(result)

    def _execute(self, operation: QueuedOperation) -> None:
        if not operation.future.set_running_or_notify_cancel():
            return

        # A timed-out body keeps running on its own daemon thread
        outcome = Future()
        worker = threading.Thread(
            target=self._call, args=(operation, outcome),
            name=f'queue-op-{operation.id}', daemon=True
        )
        started = time.time()
        worker.start()
        try:
            result = outcome.result(timeout=self.timeout)
        except FutureTimeout:
            logger.error(f"Operation {operation.id} timed out after {self.timeout}s")
            operation.future.set_exception(
                OperationTimeoutError(f"Timeout: opération {operation.type} trop longue")
            )
            return
        except Exception as e:
            logger.error(f"Operation {operation.id} failed: {e}")
            operation.future.set_exception(e)
            return

        operation.future.set_result(result)
        logger.debug(f"Operation {operation.id} done in {(time.time() - started) * 1000:.1f}ms")
