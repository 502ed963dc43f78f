import asyncio

import pytest

from bingo_client.errors import ConnectionLostError
from bingo_client.models import ConnectionStatus
from bingo_client.transport import ReconnectPolicy, backoff_delay

IDENTITY = {'userId': 'player-A'}


def test_backoff_doubles_per_attempt():
    assert [backoff_delay(0.5, n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    policy = ReconnectPolicy(base_delay=1, max_attempts=5)
    assert [policy.next_delay() for _ in range(3)] == [2, 4, 8]
    policy.reset()
    assert policy.next_delay() == 2


def test_policy_runs_out():
    policy = ReconnectPolicy(base_delay=1, max_attempts=2)
    policy.next_delay()
    policy.next_delay()
    assert policy.exhausted
    assert policy.next_delay() is None


def test_connect_retries_with_backoff_then_resets(connection, server):
    server.failures_left = 3

    async def scenario():
        await connection.connect(IDENTITY)
        assert server.sleeps == [2, 4, 8]
        assert connection.is_connected()
        assert connection.policy.attempt == 0

        # Unexpected drop: the first retry waits base * 2**1 again
        await server.latest.drop('transport close')
        assert connection.status == ConnectionStatus.RECONNECTING
        await connection.connect()
        assert server.sleeps[-1] == 2

    asyncio.run(scenario())
    assert len(server.connect_calls) == 5
    assert server.connect_calls[0][1]['auth'] == IDENTITY


def test_concurrent_connects_share_one_attempt(connection, server):
    server.failures_left = 1

    async def scenario():
        await asyncio.gather(connection.connect(IDENTITY), connection.connect(IDENTITY))

    asyncio.run(scenario())
    # One failure plus one success, not two independent retry loops
    assert len(server.connect_calls) == 2
    assert connection.is_connected()


def test_handlers_survive_reconnect(connection, server):
    received = []
    connection.on('game:turn_started', received.append)

    async def scenario():
        await connection.connect(IDENTITY)
        await server.latest.drop('ping timeout')
        await connection.connect()
        await server.latest.fire('game:turn_started', {'playerId': 'B', 'remainingTime': 30})

    asyncio.run(scenario())
    assert len(server.clients) == 2
    assert received == [{'playerId': 'B', 'remainingTime': 30}]


def test_handler_errors_do_not_stop_dispatch(connection, server):
    received = []

    def broken(payload):
        raise RuntimeError('boom')

    connection.on('game:line_counts', broken)
    connection.on('game:line_counts', received.append)

    async def scenario():
        await connection.connect(IDENTITY)
        await server.latest.fire('game:line_counts', {'counts': {}})

    asyncio.run(scenario())
    assert received == [{'counts': {}}]


def test_server_close_does_not_reconnect(connection, server):
    async def scenario():
        await connection.connect(IDENTITY)
        await server.latest.drop('io server disconnect')

    asyncio.run(scenario())
    assert connection.status == ConnectionStatus.DISCONNECTED
    assert len(server.clients) == 1
    assert server.sleeps == []


def test_exhausted_budget_is_terminal(config, server):
    from bingo_client.transport import ConnectionManager

    statuses = []
    connection = ConnectionManager(config['SERVER_URL'], base_delay=1, max_attempts=2,
                                   client_factory=server.client_factory, sleep=server.sleep)
    connection.add_status_listener(lambda status, error: statuses.append((status, error)))
    server.failures_left = 100

    async def scenario():
        with pytest.raises(ConnectionLostError) as excinfo:
            await connection.connect(IDENTITY)
        return excinfo.value

    error = asyncio.run(scenario())
    assert error.attempts == 2
    assert server.sleeps == [2, 4]
    assert len(server.connect_calls) == 3
    assert connection.status == ConnectionStatus.FAILED
    assert statuses[-1] == (ConnectionStatus.FAILED, error)


def test_request_wraps_acks(connection, server):
    server.acks['pregame:set_ready'] = {'success': False, 'message': 'Board incomplete'}
    server.timeouts.add('pregame:request_status')

    async def scenario():
        offline = await connection.request('pregame:set_ready', {})
        await connection.connect(IDENTITY)
        rejected = await connection.request('pregame:set_ready', {'isReady': True})
        accepted = await connection.request('room:join_channel', 'room-1')
        timed_out = await connection.request('pregame:request_status', 'room-1')
        return offline, rejected, accepted, timed_out

    offline, rejected, accepted, timed_out = asyncio.run(scenario())
    assert (offline.success, offline.message) == (False, 'Socket not connected')
    assert (rejected.success, rejected.message) == (False, 'Board incomplete')
    assert accepted.success
    assert not timed_out.success


def test_disconnect_drops_handlers(connection, server):
    connection.on('error', print)

    async def scenario():
        await connection.connect(IDENTITY)
        await connection.disconnect()

    asyncio.run(scenario())
    assert connection.status == ConnectionStatus.DISCONNECTED
    assert not connection.is_connected()
    assert connection._handlers == {}
