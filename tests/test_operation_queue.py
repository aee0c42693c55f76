#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Priority operation queue
"""
import threading
import time

import pytest

from services.operation_queue import OperationQueue, priority_for
from utils.errors import OperationCancelledError, OperationTimeoutError


@pytest.fixture
def queue():
    q = OperationQueue(timeout=2.0, yield_interval=0, autostart=False)
    yield q
    q.shutdown()


def test_priority_for():
    assert priority_for('GET_staff') == 3
    assert priority_for('create_evaluation') == 2
    assert priority_for('UPDATE') == 2
    assert priority_for('DELETE_draft') == 1
    assert priority_for('import') == 2


def test_higher_priority_runs_first_fifo_within_level(queue):
    order = []
    queue.enqueue('DELETE_a', order.append, 'delete')
    queue.enqueue('CREATE_a', order.append, 'create-1')
    queue.enqueue('GET_a', order.append, 'get')
    last = queue.enqueue('UPDATE_a', order.append, 'update-1')

    pending = [op_id.split('_')[0] for op_id in queue.pending_ids()]
    assert pending == ['GET', 'CREATE', 'UPDATE', 'DELETE']

    queue.start()
    last.result(timeout=2)
    queue.run('GET_barrier', lambda: None)

    assert order == ['get', 'create-1', 'update-1', 'delete']


def test_run_returns_result_and_propagates_errors(queue):
    queue.start()
    assert queue.run('GET_sum', sum, [1, 2, 3]) == 6

    def boom():
        raise ValueError('boom')

    with pytest.raises(ValueError):
        queue.run('UPDATE_boom', boom)
    # the dispatcher keeps going after a failure
    assert queue.run('GET_after', lambda: 'ok') == 'ok'


def test_timeout_fails_the_operation():
    q = OperationQueue(timeout=0.1, yield_interval=0)
    release = threading.Event()
    try:
        with pytest.raises(OperationTimeoutError):
            q.run('UPDATE_slow', release.wait, 5)
        assert q.run('GET_next', lambda: 42) == 42
    finally:
        release.set()
        q.shutdown()


def test_hung_operations_do_not_starve_later_ones():
    q = OperationQueue(timeout=0.2, yield_interval=0)
    release = threading.Event()
    try:
        hung = [q.enqueue('UPDATE_hung', release.wait, 5) for _ in range(6)]
        quick = q.enqueue('UPDATE_quick', lambda: 'done')

        for future in hung:
            with pytest.raises(OperationTimeoutError):
                future.result(timeout=5)
        assert quick.result(timeout=5) == 'done'
    finally:
        release.set()
        q.shutdown()


def test_clear_queue_cancels_pending(queue):
    futures = [queue.enqueue('CREATE_x', time.sleep, 0) for _ in range(3)]
    status = queue.get_status()
    assert status['queue_length'] == 3
    assert status['is_processing'] is False

    assert queue.clear_queue() == 3
    for future in futures:
        with pytest.raises(OperationCancelledError):
            future.result(timeout=1)
    assert queue.get_status()['queue_length'] == 0


def test_enqueue_after_shutdown():
    q = OperationQueue(autostart=False)
    q.shutdown()
    with pytest.raises(RuntimeError):
        q.enqueue('GET_x', lambda: None)


def test_operations_run_inside_app_context(app):
    from flask import current_app

    queue = app.extensions['operation_queue']
    assert queue.run('GET_name', lambda: current_app.name) == app.name


def test_queue_endpoints(client):
    response = client.get('/api/queue/status')
    assert response.status_code == 200
    assert response.get_json()['status']['queue_length'] == 0

    response = client.post('/api/queue/clear')
    assert response.get_json()['cancelled'] == 0
