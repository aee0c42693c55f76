#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Event bus and read cache
"""
from services.sync_events import FORCE_SYNC_EVENTS, ReadCache, SyncEventBus, on_user_action


def test_listeners_then_global_callbacks():
    bus = SyncEventBus()
    calls = []
    bus.add_listener('staff-updated', lambda payload: calls.append(('listener', payload)))
    bus.add_global_callback(lambda event, payload: calls.append(('global', event)))

    delivered = bus.emit('staff-updated', {'id': 1})

    assert delivered == 2
    assert calls == [('listener', {'id': 1}), ('global', 'staff-updated')]


def test_duplicate_subscription_is_ignored():
    bus = SyncEventBus()

    def callback(payload):
        pass

    bus.add_listener('x', callback)
    bus.add_listener('x', callback)
    assert bus.listener_count('x') == 1

    bus.remove_listener('x', callback)
    assert bus.listener_count() == 0


def test_removed_global_callback_is_not_called():
    bus = SyncEventBus()
    events = []

    def callback(event, payload):
        events.append(event)

    bus.add_global_callback(callback)
    bus.emit('a')
    bus.remove_global_callback(callback)
    bus.emit('b')

    assert events == ['a']


def test_failing_listener_does_not_stop_others():
    bus = SyncEventBus()
    seen = []

    def broken(payload):
        raise RuntimeError('listener failure')

    bus.add_listener('evt', broken)
    bus.add_listener('evt', seen.append)

    assert bus.emit('evt', 'payload') == 1
    assert seen == ['payload']


def test_notify_change_publishes_key_then_data_updated():
    bus = SyncEventBus()
    events = []
    bus.add_global_callback(lambda event, payload: events.append((event, payload)))

    bus.notify_change('themes', {'action': 'create'})

    assert events == [('themes-updated', {'action': 'create'}), ('data-updated', {'source': 'themes'})]


def test_force_sync_and_event_log():
    bus = SyncEventBus(log_size=3)
    assert bus.force_sync_all() == list(FORCE_SYNC_EVENTS)

    recent = bus.recent_events()
    assert len(recent) == 3
    # newest first
    assert recent[0]['event'] == FORCE_SYNC_EVENTS[-1]


def test_cache_invalidated_by_matching_event():
    bus = SyncEventBus()
    cache = ReadCache(bus, ttl=60)
    cache.set('staff', [1])
    cache.set('themes', [2])

    bus.emit('staff-updated')
    assert cache.get('staff') is None
    assert cache.get('themes') == [2]

    # data-updated alone keeps entries
    bus.emit('data-updated')
    assert cache.get('themes') == [2]

    bus.emit('data-cleared')
    assert cache.keys() == []


def test_cache_drops_values_read_before_invalidation():
    bus = SyncEventBus()
    cache = ReadCache(bus, ttl=60)

    # a reader queried, then a write landed before it stored its rows
    generation = cache.generation('staff')
    bus.emit('staff-updated')
    assert cache.set('staff', ['old'], generation) is False
    assert cache.get('staff') is None

    generation = cache.generation('staff')
    bus.emit('data-cleared')
    assert cache.set('staff', ['old'], generation) is False
    assert cache.get('staff') is None

    assert cache.set('staff', ['new'], cache.generation('staff')) is True
    assert cache.get('staff') == ['new']


def test_cache_entries_expire():
    cache = ReadCache(SyncEventBus(), ttl=0)
    cache.set('staff', [1])
    assert cache.get('staff') is None


def test_user_action_reports_inconsistencies(ctx):
    from models.database import get_db
    from services.sync_events import event_bus

    received = []
    event_bus.add_listener('data-inconsistency', received.append)

    conn = get_db()
    conn.execute("INSERT INTO staff(first_name, last_name, email) VALUES('', 'Sans', 'sans@cfpt.mg')")
    conn.commit()

    report = on_user_action('test')

    assert report['is_consistent'] is False
    assert received and received[0]['action'] == 'test'


def test_sync_endpoints(client):
    response = client.post('/api/sync/force')
    assert response.get_json()['events'] == list(FORCE_SYNC_EVENTS)

    response = client.get('/api/sync/events', query_string={'limit': 2})
    events = response.get_json()['events']
    assert len(events) == 2
    assert events[0]['event'] == FORCE_SYNC_EVENTS[-1]
