import os

class Config:
    SERVER_URL = os.environ.get('BINGO_SERVER_URL') or 'http://localhost:3001'
    SOCKETIO_PATH = os.environ.get('SOCKETIO_PATH', 'socket.io')
    TRANSPORTS = os.environ.get('TRANSPORTS', 'polling,websocket').split(',')
    # Connection handling (seconds)
    CONNECT_TIMEOUT_SEC = float(os.environ.get('CONNECT_TIMEOUT_SEC', '10'))
    ACK_TIMEOUT_SEC = float(os.environ.get('ACK_TIMEOUT_SEC', '10'))
    # Reconnect delay is RECONNECT_BASE_DELAY_SEC * 2**attempt
    RECONNECT_BASE_DELAY_SEC = float(os.environ.get('RECONNECT_BASE_DELAY_SEC', '1'))
    MAX_RECONNECT_ATTEMPTS = int(os.environ.get('MAX_RECONNECT_ATTEMPTS', '5'))
    # At most one board progress report per window (ms)
    PROGRESS_DEBOUNCE_MS = int(os.environ.get('PROGRESS_DEBOUNCE_MS', '2000'))
    # Phase timers (seconds)
    TURN_DURATION_SEC = int(os.environ.get('TURN_DURATION_SEC', '30'))
    BOARD_CREATION_SEC = int(os.environ.get('BOARD_CREATION_SEC', '180'))
    # Lines needed to win; used for display only, the server decides the winner
    BINGO_WIN_COUNT = int(os.environ.get('BINGO_WIN_COUNT', '5'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Also listen for the pre-namespaced event names ('turn-changed', 'word-called', ...)
    ACCEPT_LEGACY_EVENTS = os.environ.get('ACCEPT_LEGACY_EVENTS', '1') not in ('0', 'false', 'False')
    TESTING = False
