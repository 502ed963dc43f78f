import logging
import os

from flask import Config as FlaskConfig

from config import Config

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def load_config(config_class=Config, **overrides):
    """Build the engine config: class defaults, then BINGO_* env vars, then overrides."""
    config = FlaskConfig(os.getcwd())
    config.from_object(config_class)
    config.from_prefixed_env('BINGO')
    config.update(overrides)
    return config


def configure_logging(level='INFO'):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
    # python-socketio/engineio are chatty at INFO
    logging.getLogger('socketio').setLevel(logging.WARNING)
    logging.getLogger('engineio').setLevel(logging.WARNING)


def create_engine(player_id, config_class=Config, connection=None, token=None, **overrides):
    from bingo_client.engine import GameEngine

    config = load_config(config_class, **overrides)
    engine = GameEngine(player_id, config, connection=connection, token=token)
    logger.debug(f"[engine-create] player={player_id} server={config['SERVER_URL']} testing={config.get('TESTING')}")
    return engine
