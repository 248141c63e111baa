"""Game domain services: cards, win checking, phases, state and timers.

This package holds the bingo room core. HTTP routes and socket handlers
import from here, keeping transport concerns separated from the shared
state record and the rules that act on it.
"""
