import asyncio

import click

from bingo_client import bus as topics
from bingo_client import configure_logging, create_engine, load_config


def _echo(topic):
    def handler(payload):
        click.echo(f"{topic}: {payload}")
    return handler


async def _run(engine, room_id):
    for topic in (topics.PHASE_CHANGED, topics.CONNECTION_STATUS, topics.SESSION_ERROR, topics.TURN_STARTED,
                  topics.BOARD_LINES, topics.PREGAME_UPDATED, topics.GAME_FINISHED):
        engine.bus.subscribe(topic, _echo(topic))
    ack = await engine.join_room(room_id)
    if not ack.success:
        raise click.ClickException(f"could not join room {room_id}: {ack.message}")
    finished = asyncio.Event()

    def on_error(payload):
        # Server 'error' events are informational; connection loss ends the run
        if payload.get('fatal', True):
            finished.set()

    engine.bus.subscribe(topics.GAME_FINISHED, lambda _payload: finished.set())
    engine.bus.subscribe(topics.SESSION_ERROR, on_error)
    try:
        await finished.wait()
    finally:
        await engine.disconnect()


@click.command()
@click.option('--server', default=None, help='Game server URL (defaults to SERVER_URL).')
@click.option('--room', 'room_id', required=True, help='Room to join.')
@click.option('--player', 'player_id', required=True, help='Local player id.')
@click.option('--token', default=None, help='Auth token sent with the handshake.')
@click.option('--log-level', default=None, help='Logging level (defaults to LOG_LEVEL).')
def main(server, room_id, player_id, token, log_level):
    """Join a room and follow the game until it finishes."""
    overrides = {'SERVER_URL': server} if server else {}
    config = load_config(**overrides)
    configure_logging(log_level or config['LOG_LEVEL'])
    engine = create_engine(player_id, token=token, **overrides)
    asyncio.run(_run(engine, room_id))


if __name__ == '__main__':
    main()
