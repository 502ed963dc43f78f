import pytest

from bingo_client import bus as topics
from bingo_client.errors import ConnectionLostError
from bingo_client.models import GamePhase, Session
from bingo_client.services.phases import GamePhaseMachine


@pytest.fixture()
def machine(bus):
    return GamePhaseMachine(Session(room_id='room-1', local_player_id='A'), bus)


def test_forward_path(machine, bus):
    changes = []
    bus.subscribe(topics.PHASE_CHANGED, lambda payload: changes.append(payload['phase']))
    assert machine.round_started()
    assert machine.letter_pair_selected()
    assert machine.turns_started()
    assert machine.game_finished()
    assert changes == [GamePhase.VOTING, GamePhase.PRE_ROUND_SETUP, GamePhase.ACTIVE_TURNS, GamePhase.FINISHED]


def test_skipping_a_phase_is_ignored(machine):
    assert not machine.turns_started()
    assert machine.phase == GamePhase.LOBBY
    machine.round_started()
    # Late echo of an earlier phase
    assert not machine.advance(GamePhase.LOBBY)
    assert machine.phase == GamePhase.VOTING


def test_finished_is_idempotent(machine, bus):
    changes = []
    bus.subscribe(topics.PHASE_CHANGED, changes.append)
    for step in (machine.round_started, machine.letter_pair_selected, machine.turns_started):
        step()
    assert machine.game_finished()
    assert not machine.game_finished()
    assert len(changes) == 4


def test_components_live_only_in_their_phase(machine):
    assert not machine.is_live('editing')
    machine.round_started()
    assert machine.is_live('voting')
    machine.letter_pair_selected()
    assert machine.is_live('editing') and machine.is_live('reconciler')
    assert not machine.is_live('marking')


def test_fail_and_reset(machine, bus):
    errors = []
    bus.subscribe(topics.SESSION_ERROR, errors.append)
    machine.round_started()
    machine.fail(ConnectionLostError(5))

    assert machine.terminal_error == 'connection lost after 5 reconnect attempts'
    assert errors[0]['phase'] == GamePhase.VOTING

    machine.reset()
    assert machine.phase == GamePhase.LOBBY
    assert machine.terminal_error is None
