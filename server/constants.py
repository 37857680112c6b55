"""
Card and timing constants for Bloker.

This module is the single source of truth for hand-value scoring and the
tiebreaker rank order. Phase durations come from config.py so deployments
can tune them through environment variables.

Hand scoring:
    - 2-10: Face value
    - Jack, Queen, King: 10 points
    - Ace: 11 points, or 1 when 11 would bust the hand

Tiebreaker order (Ace high):
    2 < 3 < ... < 10 < J < Q < K < A
"""

from config import config


# =============================================================================
# Card Values
# =============================================================================

CARD_VALUES: dict[str, int] = {
    '2': 2,
    '3': 3,
    '4': 4,
    '5': 5,
    '6': 6,
    '7': 7,
    '8': 8,
    '9': 9,
    '10': 10,
    'J': 10,
    'Q': 10,
    'K': 10,
    'A': 11,
}

# An ace drops from 11 to 1 when the hand would otherwise bust
ACE_REDUCTION: int = 10

BUST_LIMIT: int = 21

TIEBREAK_ORDER: dict[str, int] = {
    '2': 2,
    '3': 3,
    '4': 4,
    '5': 5,
    '6': 6,
    '7': 7,
    '8': 8,
    '9': 9,
    '10': 10,
    'J': 11,
    'Q': 12,
    'K': 13,
    'A': 14,
}


# =============================================================================
# Table Layout
# =============================================================================

CARDS_PER_DECK: int = 52

# Cards dealt into each hand at the start of a round (first up, second down)
HAND_SIZE: int = 2

MIN_DECKS: int = 1
MAX_DECKS: int = config.game_defaults.max_decks

DEFAULT_NUM_DECKS: int = config.game_defaults.num_decks
DEFAULT_ALLOW_PEEK: bool = config.game_defaults.allow_peek


# =============================================================================
# Phase Timing
# =============================================================================

SETTINGS_VOTE_SECONDS: int = config.timings.SETTINGS_VOTE_SECONDS
BETTING_SECONDS: int = config.timings.BETTING_SECONDS
SWEEP_INTERVAL_SECONDS: int = config.timings.SWEEP_INTERVAL_SECONDS
FINISHED_SESSION_TTL_SECONDS: int = config.timings.FINISHED_SESSION_TTL_SECONDS
