"""Game domain services: phases, turns, boards, pre-round progress, scoring and timers.

This package contains pure(ish) synchronous state logic. Nothing here
touches the network; the engine feeds it transport events and forwards the
outbound requests it produces, keeping transport concerns separated from
core game mechanics.
"""
