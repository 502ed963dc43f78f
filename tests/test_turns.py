import pytest

from bingo_client import bus as topics
from bingo_client.services.turns import TurnScheduler


@pytest.fixture()
def scheduler(bus, timers):
    return TurnScheduler(bus, timers, default_time_limit=30)


def test_advance_wraps_around(scheduler):
    scheduler.initialize(['A', 'B', 'C'])
    scheduler.start_turn('B')
    assert scheduler.advance_to_next() == 'C'
    assert scheduler.advance_to_next() == 'A'
    assert scheduler.active_player_id == 'A'
    assert scheduler.history == ['B', 'C']


def test_only_active_player_may_skip(scheduler):
    scheduler.initialize(['A', 'B', 'C'])
    scheduler.start_turn('B')
    assert not scheduler.skip('A')
    assert scheduler.active_player_id == 'B'
    assert scheduler.skip('B')
    assert scheduler.active_player_id == 'C'


def test_unknown_player_cannot_start(scheduler):
    scheduler.initialize(['A', 'B'])
    assert not scheduler.start_turn('Z')
    assert scheduler.current_turn is None


def test_same_membership_keeps_order(scheduler):
    scheduler.initialize(['A', 'B', 'C'])
    scheduler.start_turn('B')
    assert not scheduler.initialize(['C', 'A', 'B'])
    assert scheduler.order == ['A', 'B', 'C']
    assert scheduler.active_player_id == 'B'


def test_newcomer_spliced_before_active_player(scheduler):
    scheduler.initialize(['A', 'B', 'C'])
    scheduler.start_turn('B')
    assert scheduler.initialize(['A', 'B', 'C', 'D'])
    assert scheduler.order == ['A', 'D', 'B', 'C']
    # The in-progress turn is untouched
    assert scheduler.active_player_id == 'B'
    assert scheduler.advance_to_next() == 'C'


def test_active_player_leaving_hands_turn_to_next_survivor(scheduler):
    scheduler.initialize(['A', 'B', 'C'])
    scheduler.start_turn('B')
    scheduler.initialize(['A', 'C'])
    assert scheduler.order == ['A', 'C']
    assert scheduler.advance_to_next() == 'C'


def test_countdown_times_out_and_advances(scheduler, bus, clock):
    ticks = []
    ended = []
    bus.subscribe(topics.TURN_TICK, lambda turn: ticks.append(turn.remaining_time))
    bus.subscribe(topics.TURN_ENDED, lambda turn: ended.append(turn.active_player_id))
    scheduler.initialize(['A', 'B'])
    scheduler.start_turn('A', 3)

    clock.advance(3)

    assert ticks == [2, 1, 0]
    assert ended == ['A']
    assert scheduler.active_player_id == 'B'
    assert scheduler.current_turn.remaining_time == 3
    assert scheduler.history == ['A']


def test_restarted_turn_discards_old_countdown(scheduler, clock):
    scheduler.initialize(['A', 'B'])
    scheduler.start_turn('A', 3)
    clock.advance(1)
    scheduler.start_turn('B', 5)
    clock.advance(2)
    assert scheduler.active_player_id == 'B'
    assert scheduler.current_turn.remaining_time == 3


def test_stop_cancels_countdown(scheduler, clock):
    scheduler.initialize(['A', 'B'])
    scheduler.start_turn('A', 2)
    scheduler.stop()
    clock.advance(5)
    assert scheduler.active_player_id is None
    assert not scheduler.current_turn.is_active
