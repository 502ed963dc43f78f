import os
import sys
import pytest

# Ensure the project root (containing the `bingo_client` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from socketio import exceptions as sio_exceptions

from bingo_client import load_config
from bingo_client.bus import EventBus
from bingo_client.engine import GameEngine
from bingo_client.services.timers import TimerRegistry
from bingo_client.transport import ConnectionManager
from config import Config


class TestConfig(Config):
    TESTING = True
    SERVER_URL = 'http://bingo.test'
    TRANSPORTS = ['websocket']
    RECONNECT_BASE_DELAY_SEC = 1
    MAX_RECONNECT_ATTEMPTS = 5
    PROGRESS_DEBOUNCE_MS = 2000
    TURN_DURATION_SEC = 30
    BOARD_CREATION_SEC = 180


class _Handle:
    def __init__(self, when, seq, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualClock:
    """Stands in for the event loop's clock and call_later; time only moves on advance()."""

    def __init__(self):
        self.now = 0.0
        self._seq = 0
        self._handles = []

    def time_ms(self):
        return self.now * 1000.0

    def call_later(self, delay, callback):
        self._seq += 1
        handle = _Handle(self.now + delay, self._seq, callback)
        self._handles.append(handle)
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target

    @property
    def pending(self):
        return [h for h in self._handles if not h.cancelled]


class FakeSocketClient:
    """The slice of socketio.AsyncClient the connection manager uses."""

    def __init__(self, server):
        self.server = server
        self.handlers = {}
        self.connected = False

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.server.connect_calls.append((url, kwargs))
        if self.server.failures_left > 0:
            self.server.failures_left -= 1
            raise sio_exceptions.ConnectionError('Connection refused by the server')
        self.connected = True
        await self.handlers['connect']()

    async def emit(self, event, data=None):
        self.server.emitted.append((event, data))

    async def call(self, event, data=None, timeout=60):
        self.server.emitted.append((event, data))
        if event in self.server.timeouts:
            raise sio_exceptions.TimeoutError()
        return self.server.acks.get(event, {'success': True})

    async def disconnect(self):
        if self.connected:
            self.connected = False
            await self.handlers['disconnect']('client disconnect')

    async def drop(self, reason='transport close'):
        self.connected = False
        await self.handlers['disconnect'](reason)

    async def fire(self, event, *args):
        await self.handlers['*'](event, *args)


class FakeServer:
    def __init__(self):
        self.clients = []
        self.connect_calls = []
        self.emitted = []
        self.acks = {}
        self.timeouts = set()
        self.failures_left = 0
        self.sleeps = []

    def client_factory(self):
        client = FakeSocketClient(self)
        self.clients.append(client)
        return client

    async def sleep(self, delay):
        self.sleeps.append(delay)

    @property
    def latest(self):
        return self.clients[-1]

    def emitted_events(self, name=None):
        return [(event, data) for event, data in self.emitted if name is None or event == name]


@pytest.fixture()
def config():
    return load_config(TestConfig)


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def bus():
    return EventBus()


@pytest.fixture()
def timers(clock):
    return TimerRegistry(clock.call_later)


@pytest.fixture()
def server():
    return FakeServer()


@pytest.fixture()
def connection(config, server):
    return ConnectionManager(
        config['SERVER_URL'],
        transports=config['TRANSPORTS'],
        base_delay=config['RECONNECT_BASE_DELAY_SEC'],
        max_attempts=config['MAX_RECONNECT_ATTEMPTS'],
        client_factory=server.client_factory,
        sleep=server.sleep,
    )


@pytest.fixture()
def engine(config, connection, clock):
    return GameEngine('player-A', config, connection=connection, call_later=clock.call_later, clock=clock.time_ms)
