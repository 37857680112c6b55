"""
Game logic for Bloker.

This module implements the authoritative round state machine for Bloker, a
two-player hybrid of blackjack hand evaluation and poker-style betting in
which cards double as currency.

Bloker Rules Summary:
    - Both sides vote on settings (number of decks, peeking) before play
    - The shuffled shoe is split into two personal reserves, one per side
    - Each round both sides draw one face-up and one face-down card
    - Sides bet cards from their reserve (fold, check, raise) into the pot
    - After betting, sides hit or stay; the best hand not over 21 wins
    - Equal hands go to a single-card tiebreaker (Ace high)
    - The round winner takes both hands plus the pot into their reserve
    - The match ends when a side runs out of reserve cards

Round Flow:
    NEGOTIATING_SETTINGS -> BETTING -> (REVEALING) -> HIT_OR_STAY
        -> (TIEBREAK) -> BETTING (next round) ... -> FINISHED

REVEALING and TIEBREAK are entered while a transition is computing and are
never observed in a persisted session.

All methods on GameSession validate before they mutate: a GameError leaves
the session untouched.
"""

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from constants import (
    ACE_REDUCTION,
    BETTING_SECONDS,
    BUST_LIMIT,
    CARD_VALUES,
    DEFAULT_ALLOW_PEEK,
    DEFAULT_NUM_DECKS,
    HAND_SIZE,
    MAX_DECKS,
    MIN_DECKS,
    SETTINGS_VOTE_SECONDS,
    TIEBREAK_ORDER,
)


# =============================================================================
# Errors
# =============================================================================

class GameError(Exception):
    """Base class for rejected actions. The session is left unchanged."""
    pass


class SessionNotFound(GameError):
    """No session exists with the requested id."""
    pass


class NotAParticipant(GameError):
    """The caller is neither side of the session."""
    pass


class InvalidPhase(GameError):
    """The action is not legal in the session's current phase."""
    pass


class InvalidAction(GameError):
    """The action is malformed or not allowed for this side right now."""
    pass


class InsufficientReserve(InvalidAction):
    """The side does not hold enough reserve cards to cover the bet."""
    pass


class AlreadyVoted(InvalidAction):
    """The side already submitted its settings vote."""
    pass


# =============================================================================
# Cards
# =============================================================================

class Suit(Enum):
    """Card suits for a standard deck."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"


class Rank(Enum):
    """Card ranks, lowest to highest in tiebreaker order."""

    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"


# Derived from constants.py as single source of truth
RANK_VALUES: dict[Rank, int] = {rank: CARD_VALUES[rank.value] for rank in Rank}
TIEBREAK_RANKS: dict[Rank, int] = {rank: TIEBREAK_ORDER[rank.value] for rank in Rank}


@dataclass
class Card:
    """
    A playing card with suit, rank, and face-up state.

    Attributes:
        suit: The card's suit.
        rank: The card's rank.
        face_up: Whether the card is visible to both sides.
        synthetic: True for cards created to pay out the pot rather than
            dealt from the shoe. Kept for auditing, never sent to clients.
    """

    suit: Suit
    rank: Rank
    face_up: bool = False
    synthetic: bool = False

    def to_dict(self) -> dict:
        """Full card data for persistence."""
        return {
            "suit": self.suit.value,
            "rank": self.rank.value,
            "face_up": self.face_up,
            "synthetic": self.synthetic,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        return cls(
            suit=Suit(data["suit"]),
            rank=Rank(data["rank"]),
            face_up=data.get("face_up", False),
            synthetic=data.get("synthetic", False),
        )

    def to_client_dict(self, reveal: bool = False) -> dict:
        """
        Card as shown to a viewer.

        Face-down cards are reduced to {face_up: False} unless `reveal` is set
        (the viewer owns the card, or the match is over).
        """
        if self.face_up or reveal:
            return {
                "suit": self.suit.value,
                "rank": self.rank.value,
                "face_up": self.face_up,
            }
        return {"face_up": False}

    def value(self) -> int:
        """Hand value with the ace counted high."""
        return RANK_VALUES[self.rank]


def random_card(rng: Optional[random.Random] = None, face_up: bool = False) -> Card:
    """Create a synthetic card of uniformly random suit and rank."""
    rng = rng or random
    return Card(
        suit=rng.choice(list(Suit)),
        rank=rng.choice(list(Rank)),
        face_up=face_up,
        synthetic=True,
    )


class Deck:
    """
    A shoe of one or more standard 52-card decks.

    The shuffle is driven by a stored seed so a session's deal can be
    reproduced from its seed.
    """

    def __init__(self, num_decks: int = 1, seed: Optional[int] = None) -> None:
        """
        Build and shuffle the shoe.

        Args:
            num_decks: Number of standard 52-card decks to combine.
            seed: Optional random seed for a deterministic shuffle.
        """
        self.cards: list[Card] = []
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)

        for _ in range(num_decks):
            for suit in Suit:
                for rank in Rank:
                    self.cards.append(Card(suit, rank))

        self.shuffle()

    def shuffle(self, seed: Optional[int] = None) -> None:
        """Apply a uniform random permutation (Fisher-Yates via random.shuffle)."""
        if seed is not None:
            self.seed = seed
        random.Random(self.seed).shuffle(self.cards)

    def draw(self) -> Optional[Card]:
        """Draw the top card, or None if the shoe is empty."""
        if self.cards:
            return self.cards.pop()
        return None

    def cards_remaining(self) -> int:
        return len(self.cards)

    def split(self) -> tuple[list[Card], list[Card]]:
        """
        Empty the shoe into two reserves.

        With an odd card count side A receives the extra card.
        """
        half = len(self.cards) // 2
        cut = len(self.cards) - half
        side_a, side_b = self.cards[:cut], self.cards[cut:]
        self.cards = []
        return side_a, side_b


# =============================================================================
# Hand Evaluation
# =============================================================================

def hand_value(cards: list[Card]) -> int:
    """
    Total a hand, counting each ace as 11 until that would bust.

    Examples:
        [A, K] -> 21, [A, A] -> 12, [A, A, 9] -> 21, [10, 9, 5] -> 24
    """
    total = sum(card.value() for card in cards)
    aces = sum(1 for card in cards if card.rank == Rank.ACE)
    while total > BUST_LIMIT and aces:
        total -= ACE_REDUCTION
        aces -= 1
    return total


def is_bust(cards: list[Card]) -> bool:
    return hand_value(cards) > BUST_LIMIT


def is_natural(cards: list[Card]) -> bool:
    """A two-card 21."""
    return len(cards) == 2 and hand_value(cards) == BUST_LIMIT


def visible_hand_value(cards: list[Card]) -> int:
    """Value of the face-up cards only, as an opponent would count it."""
    return hand_value([card for card in cards if card.face_up])


def tiebreak_rank(card: Card) -> int:
    return TIEBREAK_RANKS[card.rank]


def compare_tiebreak(first: Card, second: Card) -> int:
    """Return 1 if `first` outranks `second`, -1 if lower, 0 on equal rank."""
    diff = tiebreak_rank(first) - tiebreak_rank(second)
    return (diff > 0) - (diff < 0)


# =============================================================================
# Session Types
# =============================================================================

class Side(str, Enum):
    """The two participants. Neither side acts first."""

    A = "a"
    B = "b"

    @property
    def other(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class SessionPhase(str, Enum):
    """Phases of a Bloker session."""

    NEGOTIATING_SETTINGS = "negotiating_settings"
    BETTING = "betting"
    REVEALING = "revealing"
    HIT_OR_STAY = "hit_or_stay"
    TIEBREAK = "tiebreak"
    FINISHED = "finished"


class BetKind(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    RAISE = "raise"


class Outcome(str, Enum):
    """Most significant effect of an action, reported back to the caller."""

    ACCEPTED = "accepted"
    SETTINGS_RESOLVED = "settings_resolved"
    BETTING_CLOSED = "betting_closed"
    ROUND_RESOLVED = "round_resolved"
    SESSION_FINISHED = "session_finished"
    OUT_OF_CARDS_NO_STAKE = "out_of_cards_no_stake"
    FORFEITED = "forfeited"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SettingsVote:
    """One side's ballot for the table settings."""

    num_decks: int = DEFAULT_NUM_DECKS
    allow_peek: bool = DEFAULT_ALLOW_PEEK

    def to_dict(self) -> dict:
        return {"num_decks": self.num_decks, "allow_peek": self.allow_peek}

    @classmethod
    def from_dict(cls, data: dict) -> "SettingsVote":
        return cls(num_decks=data["num_decks"], allow_peek=data["allow_peek"])


@dataclass
class LedgerEntry:
    """
    A pending stats update produced by a transition.

    `won` is None for a mid-match credit (round pot); True/False records the
    match result together with `credit_delta`.
    """

    user_id: str
    credit_delta: int = 0
    won: Optional[bool] = None


@dataclass
class RoundSummary:
    """How a round ended, kept on the session for clients to display."""

    round_num: int
    winner_side: Optional[Side]
    reason: str
    hand_values: dict[Side, int] = field(default_factory=dict)
    busted: dict[Side, bool] = field(default_factory=dict)
    tiebreak_cards: dict[Side, Optional[Card]] = field(default_factory=dict)
    # Reserve sizes right after the tiebreaker draw, before cards change hands
    tiebreak_reserve_counts: dict[Side, int] = field(default_factory=dict)
    pot_awarded: int = 0

    def to_dict(self) -> dict:
        return {
            "round_num": self.round_num,
            "winner_side": self.winner_side.value if self.winner_side else None,
            "reason": self.reason,
            "hand_values": {s.value: v for s, v in self.hand_values.items()},
            "busted": {s.value: v for s, v in self.busted.items()},
            "tiebreak_cards": {
                s.value: (c.to_dict() if c else None)
                for s, c in self.tiebreak_cards.items()
            },
            "tiebreak_reserve_counts": {
                s.value: v for s, v in self.tiebreak_reserve_counts.items()
            },
            "pot_awarded": self.pot_awarded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoundSummary":
        winner = data.get("winner_side")
        return cls(
            round_num=data["round_num"],
            winner_side=Side(winner) if winner else None,
            reason=data["reason"],
            hand_values={Side(s): v for s, v in data.get("hand_values", {}).items()},
            busted={Side(s): v for s, v in data.get("busted", {}).items()},
            tiebreak_cards={
                Side(s): (Card.from_dict(c) if c else None)
                for s, c in data.get("tiebreak_cards", {}).items()
            },
            tiebreak_reserve_counts={
                Side(s): v for s, v in data.get("tiebreak_reserve_counts", {}).items()
            },
            pot_awarded=data.get("pot_awarded", 0),
        )


@dataclass
class ActionResult:
    """
    What a transition did.

    The session service persists the session first, then applies `ledger`
    and posts `messages`. `busted` and `drawn_card` are meant for the acting
    side only. `state` is filled in by the service with the acting side's view.
    """

    session_id: str
    side: Optional[Side] = None
    outcome: Outcome = Outcome.ACCEPTED
    drawn_card: Optional[Card] = None
    busted: bool = False
    rounds: list[RoundSummary] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    ledger: list[LedgerEntry] = field(default_factory=list)
    state: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "side": self.side.value if self.side else None,
            "outcome": self.outcome.value,
            "drawn_card": self.drawn_card.to_client_dict() if self.drawn_card else None,
            "busted": self.busted,
            "rounds": [summary.to_dict() for summary in self.rounds],
            "messages": list(self.messages),
            "state": self.state,
        }


@dataclass
class PlayerSide:
    """
    One participant's cards and per-round flags.

    Attributes:
        user_id: Account id of the participant.
        display_name: Name used in table announcements.
        reserve: Personal face-down pile. The top (next draw) is the end of
            the list; winnings go in at the front and are drawn last.
        hand: Cards in play this round.
        bet: Cards committed to the pot this round.
        folded: Gave up the current round.
        busted: Hand is over 21.
        ready: Chose to stay.
        vote: Settings ballot while negotiating.
    """

    user_id: str
    display_name: str = ""
    reserve: list[Card] = field(default_factory=list)
    hand: list[Card] = field(default_factory=list)
    bet: int = 0
    folded: bool = False
    busted: bool = False
    ready: bool = False
    vote: Optional[SettingsVote] = None

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.user_id

    def reset_round_flags(self) -> None:
        self.bet = 0
        self.folded = False
        self.busted = False
        self.ready = False

    def draw_from_reserve(self, face_up: bool) -> Optional[Card]:
        """Pop the top reserve card, or None if the reserve is empty."""
        if not self.reserve:
            return None
        card = self.reserve.pop()
        card.face_up = face_up
        return card

    def add_to_bottom(self, cards: list[Card]) -> None:
        """Put cards under the reserve, face-down, so they are drawn last."""
        for card in cards:
            card.face_up = False
        self.reserve[:0] = cards

    def hand_value(self) -> int:
        return hand_value(self.hand)

    def is_done(self) -> bool:
        """Finished acting for this round's hit/stay phase."""
        return self.ready or self.busted

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "reserve": [c.to_dict() for c in self.reserve],
            "hand": [c.to_dict() for c in self.hand],
            "bet": self.bet,
            "folded": self.folded,
            "busted": self.busted,
            "ready": self.ready,
            "vote": self.vote.to_dict() if self.vote else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerSide":
        vote = data.get("vote")
        return cls(
            user_id=data["user_id"],
            display_name=data.get("display_name", ""),
            reserve=[Card.from_dict(c) for c in data.get("reserve", [])],
            hand=[Card.from_dict(c) for c in data.get("hand", [])],
            bet=data.get("bet", 0),
            folded=data.get("folded", False),
            busted=data.get("busted", False),
            ready=data.get("ready", False),
            vote=SettingsVote.from_dict(vote) if vote else None,
        )


# =============================================================================
# Game Session
# =============================================================================

@dataclass
class GameSession:
    """
    Aggregate root for one Bloker match.

    Owns both sides, the pot, the phase and its deadline. Every public
    transition takes the acting side and the current time and returns an
    ActionResult; callers are responsible for serializing access and
    persisting the session afterwards.

    Attributes:
        side_a / side_b: The two participants.
        session_id: Unique identifier.
        phase: Current phase.
        pot: Cards wagered and not yet won, including any carried over
            from drawn rounds.
        num_decks / allow_peek: Settings agreed during negotiation.
        phase_deadline: When the current timed phase expires (UTC).
        current_round: 1-indexed round number, 0 before the first deal.
        winner_side: Match winner once finished.
        betting_seconds: Length of each betting phase.
        version: Bumped by the store on every save.
        last_round: Summary of the most recently resolved round.
    """

    side_a: PlayerSide
    side_b: PlayerSide
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: SessionPhase = SessionPhase.NEGOTIATING_SETTINGS
    pot: int = 0
    num_decks: int = DEFAULT_NUM_DECKS
    allow_peek: bool = DEFAULT_ALLOW_PEEK
    phase_deadline: Optional[datetime] = None
    current_round: int = 0
    winner_side: Optional[Side] = None
    betting_seconds: int = BETTING_SECONDS
    created_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    version: int = 0
    last_round: Optional[RoundSummary] = None
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        user_a: str,
        user_b: str,
        name_a: str = "",
        name_b: str = "",
        now: Optional[datetime] = None,
        vote_seconds: int = SETTINGS_VOTE_SECONDS,
        betting_seconds: int = BETTING_SECONDS,
    ) -> "GameSession":
        """Open a session in the settings negotiation phase."""
        now = now or _utcnow()
        return cls(
            side_a=PlayerSide(user_id=user_a, display_name=name_a),
            side_b=PlayerSide(user_id=user_b, display_name=name_b),
            phase_deadline=now + timedelta(seconds=vote_seconds),
            betting_seconds=betting_seconds,
            created_at=now,
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def side(self, side: Side) -> PlayerSide:
        return self.side_a if side is Side.A else self.side_b

    def opponent(self, side: Side) -> PlayerSide:
        return self.side(side.other)

    def side_for_user(self, user_id: str) -> Side:
        """
        Resolve a caller to their side.

        Raises:
            NotAParticipant: The caller is not in this session.
        """
        if user_id == self.side_a.user_id:
            return Side.A
        if user_id == self.side_b.user_id:
            return Side.B
        raise NotAParticipant(f"User {user_id} is not a player in session {self.session_id}")

    @property
    def is_finished(self) -> bool:
        return self.phase == SessionPhase.FINISHED

    def deadline_passed(self, now: datetime) -> bool:
        return self.phase_deadline is not None and now >= self.phase_deadline

    def total_cards(self) -> int:
        """Cards in both reserves, both hands and the pot."""
        return (
            len(self.side_a.reserve) + len(self.side_a.hand)
            + len(self.side_b.reserve) + len(self.side_b.hand)
            + self.pot
        )

    def _require_phase(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            expected = ", ".join(p.value for p in phases)
            raise InvalidPhase(f"Action requires phase {expected}, session is {self.phase.value}")

    def _result(self, side: Optional[Side] = None) -> ActionResult:
        return ActionResult(session_id=self.session_id, side=side)

    # -------------------------------------------------------------------------
    # Settings Negotiation
    # -------------------------------------------------------------------------

    def submit_vote(self, side: Side, vote: SettingsVote, now: Optional[datetime] = None) -> ActionResult:
        """
        Record a side's settings ballot.

        Resolution runs as soon as both ballots are in.

        Raises:
            InvalidPhase: Negotiation is over.
            AlreadyVoted: This side already voted.
            InvalidAction: Deck count out of range.
        """
        self._require_phase(SessionPhase.NEGOTIATING_SETTINGS)
        player = self.side(side)
        if player.vote is not None:
            raise AlreadyVoted(f"Side {side.value} already voted")
        if isinstance(vote.num_decks, bool) or not isinstance(vote.num_decks, int):
            raise InvalidAction("num_decks must be an integer")
        if not MIN_DECKS <= vote.num_decks <= MAX_DECKS:
            raise InvalidAction(f"num_decks must be between {MIN_DECKS} and {MAX_DECKS}")

        result = self._result(side)
        player.vote = SettingsVote(num_decks=vote.num_decks, allow_peek=bool(vote.allow_peek))

        if self.side_a.vote and self.side_b.vote:
            self._finalize_settings(now or _utcnow(), result)
        return result

    def expire_settings_vote(self, now: datetime) -> Optional[ActionResult]:
        """
        Force settings resolution once the vote deadline has passed.

        Missing ballots count as the default settings. Returns None (and
        changes nothing) if the session is not waiting on an expired vote.
        """
        if self.phase != SessionPhase.NEGOTIATING_SETTINGS or not self.deadline_passed(now):
            return None
        result = self._result()
        for player in (self.side_a, self.side_b):
            if player.vote is None:
                player.vote = SettingsVote()
        self._finalize_settings(now, result)
        return result

    def _pick(self, first, second):
        """Agreed value, or one side's value chosen uniformly at random."""
        if first == second:
            return first
        return first if self.rng.random() < 0.5 else second

    def _finalize_settings(self, now: datetime, result: ActionResult) -> None:
        vote_a, vote_b = self.side_a.vote, self.side_b.vote
        self.num_decks = self._pick(vote_a.num_decks, vote_b.num_decks)
        self.allow_peek = self._pick(vote_a.allow_peek, vote_b.allow_peek)
        self.side_a.vote = None
        self.side_b.vote = None

        peek = "on" if self.allow_peek else "off"
        result.messages.append(
            f"Settings agreed: {self.num_decks} deck(s), peeking {peek}."
        )
        result.outcome = Outcome.SETTINGS_RESOLVED

        deck = Deck(self.num_decks, seed=self.rng.randint(0, 2**31 - 1))
        self.side_a.reserve, self.side_b.reserve = deck.split()
        self.current_round = 1
        self._deal_round(now, result)

    # -------------------------------------------------------------------------
    # Dealing
    # -------------------------------------------------------------------------

    def _deal_round(self, now: datetime, result: ActionResult) -> None:
        """Deal each side one face-up and one face-down card from its reserve."""
        for player in (self.side_a, self.side_b):
            player.reset_round_flags()
            player.hand = []
            for i in range(HAND_SIZE):
                card = player.draw_from_reserve(face_up=(i == 0))
                if card is None:
                    break
                player.hand.append(card)

        self.phase = SessionPhase.BETTING
        self.phase_deadline = now + timedelta(seconds=self.betting_seconds)
        result.messages.append(f"Round {self.current_round} started. Place your bets.")

    # -------------------------------------------------------------------------
    # Betting
    # -------------------------------------------------------------------------

    def bet(
        self,
        side: Side,
        kind: BetKind,
        amount: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """
        Fold, check or raise during the betting phase.

        Raises:
            InvalidPhase: Not betting.
            InvalidAction: Folded side, bad amount, or nothing to check.
            InsufficientReserve: Not enough reserve cards to cover the bet.
        """
        self._require_phase(SessionPhase.BETTING)
        now = now or _utcnow()
        try:
            kind = BetKind(kind)
        except ValueError:
            raise InvalidAction(f"Unknown bet kind: {kind}")
        player = self.side(side)
        opponent = self.opponent(side)
        if player.folded:
            raise InvalidAction(f"Side {side.value} has folded")

        result = self._result(side)

        if kind == BetKind.FOLD:
            player.folded = True
            result.messages.append(f"{player.display_name} folds.")
            self._award_round(side.other, "fold", result)
            self._advance(now, result)

        elif kind == BetKind.CHECK:
            owed = opponent.bet - player.bet
            if owed < 0:
                raise InvalidAction("Bet is already above the opponent's; waiting for them to act")
            if owed > len(player.reserve):
                raise InsufficientReserve(
                    f"Matching requires {owed} card(s), reserve holds {len(player.reserve)}"
                )
            self._commit(player, owed)
            if player.bet == opponent.bet:
                self._close_betting(result)

        elif kind == BetKind.RAISE:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAction("Raise amount must be a positive integer")
            if amount > len(player.reserve):
                raise InsufficientReserve(
                    f"Raise of {amount} exceeds reserve of {len(player.reserve)}"
                )
            self._commit(player, amount)
            result.messages.append(f"{player.display_name} raises {amount}.")

        return result

    def _commit(self, player: PlayerSide, count: int) -> None:
        """Move `count` reserve cards into the bet and the pot."""
        for _ in range(count):
            player.reserve.pop()
        player.bet += count
        self.pot += count

    def expire_betting(self, now: datetime) -> Optional[ActionResult]:
        """
        Close betting when its deadline passes, without forcing a match.

        Returns None (and changes nothing) if the session is not in an
        expired betting phase.
        """
        if self.phase != SessionPhase.BETTING or not self.deadline_passed(now):
            return None
        result = self._result()
        result.messages.append("Betting time is up.")
        self._close_betting(result)
        return result

    def _close_betting(self, result: ActionResult) -> None:
        self.phase = SessionPhase.REVEALING
        if self.allow_peek:
            for player in (self.side_a, self.side_b):
                for card in player.hand:
                    card.face_up = True
        self.phase = SessionPhase.HIT_OR_STAY
        self.phase_deadline = None
        result.outcome = Outcome.BETTING_CLOSED
        result.messages.append(f"Betting closed with {self.pot} in the pot. Hit or stay.")

    # -------------------------------------------------------------------------
    # Hit / Stay
    # -------------------------------------------------------------------------

    def _require_active(self, side: Side) -> PlayerSide:
        self._require_phase(SessionPhase.HIT_OR_STAY)
        player = self.side(side)
        if player.folded:
            raise InvalidAction(f"Side {side.value} has folded")
        if player.busted:
            raise InvalidAction(f"Side {side.value} has busted")
        if player.ready:
            raise InvalidAction(f"Side {side.value} already stayed")
        return player

    def hit(self, side: Side, now: Optional[datetime] = None) -> ActionResult:
        """
        Draw one face-up card from the side's reserve.

        With an empty reserve and nothing staked the side loses the match on
        the spot; with a stake the card is drawn from the bet pile instead.
        """
        player = self._require_active(side)
        now = now or _utcnow()
        result = self._result(side)

        card = player.draw_from_reserve(face_up=True)
        if card is None:
            if player.bet == 0:
                result.messages.append(
                    f"{player.display_name} has no cards left to draw."
                )
                self._finish(side.other, now, result)
                result.outcome = Outcome.OUT_OF_CARDS_NO_STAKE
                return result
            card = random_card(self.rng, face_up=True)
            player.bet -= 1
            self.pot -= 1

        player.hand.append(card)
        result.drawn_card = card
        if is_bust(player.hand):
            player.busted = True
            result.busted = True

        if self.side_a.is_done() and self.side_b.is_done():
            self._resolve_round(now, result)
        return result

    def stay(self, side: Side, now: Optional[datetime] = None) -> ActionResult:
        """Stand on the current hand; resolves the round once both sides are done."""
        player = self._require_active(side)
        now = now or _utcnow()
        result = self._result(side)
        player.ready = True
        result.messages.append(f"{player.display_name} stays.")

        if self.side_a.is_done() and self.side_b.is_done():
            self._resolve_round(now, result)
        return result

    # -------------------------------------------------------------------------
    # Round Resolution
    # -------------------------------------------------------------------------

    def _resolve_round(self, now: datetime, result: ActionResult) -> None:
        a, b = self.side_a, self.side_b
        for player in (a, b):
            for card in player.hand:
                card.face_up = True

        value_a, value_b = a.hand_value(), b.hand_value()
        summary = RoundSummary(
            round_num=self.current_round,
            winner_side=None,
            reason="",
            hand_values={Side.A: value_a, Side.B: value_b},
            busted={Side.A: a.busted, Side.B: b.busted},
        )

        if a.busted and b.busted:
            self._draw_round("double_bust", result, summary)
        elif a.busted or b.busted:
            self._award_round(Side.B if a.busted else Side.A, "bust", result, summary)
        elif value_a != value_b:
            self._award_round(Side.A if value_a > value_b else Side.B, "higher_hand", result, summary)
        else:
            self._tiebreak(result, summary)

        self._advance(now, result)

    def _tiebreak(self, result: ActionResult, summary: RoundSummary) -> None:
        """Each side turns its top reserve card; the higher rank takes the round."""
        self.phase = SessionPhase.TIEBREAK
        card_a = self.side_a.draw_from_reserve(face_up=True)
        card_b = self.side_b.draw_from_reserve(face_up=True)
        summary.tiebreak_cards = {Side.A: card_a, Side.B: card_b}
        summary.tiebreak_reserve_counts = {
            Side.A: len(self.side_a.reserve),
            Side.B: len(self.side_b.reserve),
        }

        if card_a and card_b:
            order = compare_tiebreak(card_a, card_b)
        elif card_a or card_b:
            # A side with nothing left to turn loses the tiebreak
            order = 1 if card_a else -1
        else:
            order = 0

        if order == 0:
            for player, card in ((self.side_a, card_a), (self.side_b, card_b)):
                if card is not None:
                    card.face_up = False
                    player.reserve.append(card)
            self._draw_round("tie", result, summary)
            return

        if card_a:
            self.side_a.hand.append(card_a)
        if card_b:
            self.side_b.hand.append(card_b)
        self._award_round(Side.A if order > 0 else Side.B, "tiebreak", result, summary)

    def _award_round(
        self,
        winner: Side,
        reason: str,
        result: ActionResult,
        summary: Optional[RoundSummary] = None,
    ) -> None:
        """Give both hands plus the pot, paid as synthetic cards, to the winner."""
        summary = summary or RoundSummary(round_num=self.current_round, winner_side=None, reason="")
        player = self.side(winner)
        winnings = self.side_a.hand + self.side_b.hand
        winnings += [random_card(self.rng) for _ in range(self.pot)]
        player.add_to_bottom(winnings)
        self.side_a.hand = []
        self.side_b.hand = []

        summary.winner_side = winner
        summary.reason = reason
        summary.pot_awarded = self.pot
        if self.pot:
            result.ledger.append(LedgerEntry(user_id=player.user_id, credit_delta=self.pot))
        result.messages.append(
            f"{player.display_name} wins round {self.current_round} "
            f"({reason.replace('_', ' ')}) and takes {len(winnings)} card(s)."
        )
        self.pot = 0
        self.last_round = summary
        result.rounds.append(summary)
        result.outcome = Outcome.ROUND_RESOLVED

    def _draw_round(self, reason: str, result: ActionResult, summary: RoundSummary) -> None:
        """Return each hand to its owner; the pot carries over."""
        for player in (self.side_a, self.side_b):
            player.add_to_bottom(player.hand)
            player.hand = []
        summary.winner_side = None
        summary.reason = reason
        result.messages.append(
            f"Round {self.current_round} is a draw ({reason.replace('_', ' ')}). "
            f"{self.pot} carries over."
        )
        self.last_round = summary
        result.rounds.append(summary)
        result.outcome = Outcome.ROUND_RESOLVED

    def _advance(self, now: datetime, result: ActionResult) -> None:
        """Start the next round, or end the match if a reserve is exhausted."""
        a_empty = not self.side_a.reserve
        b_empty = not self.side_b.reserve
        if a_empty or b_empty:
            if a_empty and b_empty:
                winner = None
            else:
                winner = Side.B if a_empty else Side.A
            self._finish(winner, now, result)
            return

        self.current_round += 1
        self._deal_round(now, result)

    def _finish(self, winner: Optional[Side], now: datetime, result: ActionResult) -> None:
        """Close the match and queue win/loss records for both sides."""
        self.phase = SessionPhase.FINISHED
        self.phase_deadline = None
        self.finished_at = now
        self.winner_side = winner
        result.outcome = Outcome.SESSION_FINISHED

        if winner is None:
            result.messages.append("Both reserves are empty. The match ends without a winner.")
            return

        champion = self.side(winner)
        loser = self.opponent(winner)
        result.ledger.append(LedgerEntry(user_id=champion.user_id, won=True))
        result.ledger.append(LedgerEntry(user_id=loser.user_id, won=False))
        result.messages.append(f"{champion.display_name} wins the match!")

    # -------------------------------------------------------------------------
    # Leave / Forfeit
    # -------------------------------------------------------------------------

    def leave(self, side: Side, now: Optional[datetime] = None) -> ActionResult:
        """
        Forfeit the match.

        The opponent wins both current bets; the leaver's bet is charged
        against their credits.
        """
        if self.is_finished:
            raise InvalidPhase("Session is already finished")
        now = now or _utcnow()
        leaver = self.side(side)
        winner = self.opponent(side)
        total = leaver.bet + winner.bet

        result = self._result(side)
        self.phase = SessionPhase.FINISHED
        self.phase_deadline = None
        self.finished_at = now
        self.winner_side = side.other
        self.pot = total
        result.outcome = Outcome.FORFEITED
        result.ledger.append(LedgerEntry(user_id=leaver.user_id, credit_delta=-leaver.bet, won=False))
        result.ledger.append(LedgerEntry(user_id=winner.user_id, credit_delta=total, won=True))
        result.messages.append(
            f"{leaver.display_name} left the game. {winner.display_name} wins {total}!"
        )
        return result

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        """Full state for persistence (hides nothing)."""
        return {
            "session_id": self.session_id,
            "side_a": self.side_a.to_dict(),
            "side_b": self.side_b.to_dict(),
            "phase": self.phase.value,
            "pot": self.pot,
            "num_decks": self.num_decks,
            "allow_peek": self.allow_peek,
            "phase_deadline": _dt_to_str(self.phase_deadline),
            "current_round": self.current_round,
            "winner_side": self.winner_side.value if self.winner_side else None,
            "betting_seconds": self.betting_seconds,
            "created_at": _dt_to_str(self.created_at),
            "finished_at": _dt_to_str(self.finished_at),
            "version": self.version,
            "last_round": self.last_round.to_dict() if self.last_round else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GameSession":
        winner = data.get("winner_side")
        last_round = data.get("last_round")
        return cls(
            session_id=data["session_id"],
            side_a=PlayerSide.from_dict(data["side_a"]),
            side_b=PlayerSide.from_dict(data["side_b"]),
            phase=SessionPhase(data["phase"]),
            pot=data.get("pot", 0),
            num_decks=data.get("num_decks", DEFAULT_NUM_DECKS),
            allow_peek=data.get("allow_peek", DEFAULT_ALLOW_PEEK),
            phase_deadline=_dt_from_str(data.get("phase_deadline")),
            current_round=data.get("current_round", 0),
            winner_side=Side(winner) if winner else None,
            betting_seconds=data.get("betting_seconds", BETTING_SECONDS),
            created_at=_dt_from_str(data.get("created_at")) or _utcnow(),
            finished_at=_dt_from_str(data.get("finished_at")),
            version=data.get("version", 0),
            last_round=RoundSummary.from_dict(last_round) if last_round else None,
        )

    def get_state(self, for_user_id: Optional[str] = None) -> dict:
        """
        Session state as seen by one viewer.

        The viewer's own cards are always shown; opponent face-down cards
        stay hidden until the match is over. Pass None for a spectator view.

        Args:
            for_user_id: The participant who will receive this state.

        Returns:
            JSON-ready dict for polling clients.
        """
        viewer: Optional[Side] = None
        if for_user_id is not None:
            try:
                viewer = self.side_for_user(for_user_id)
            except NotAParticipant:
                viewer = None

        sides = {}
        for side in (Side.A, Side.B):
            player = self.side(side)
            is_self = side is viewer
            reveal = is_self or self.is_finished
            sides[side.value] = {
                "user_id": player.user_id,
                "display_name": player.display_name,
                "reserve_count": len(player.reserve),
                "hand": [c.to_client_dict(reveal=reveal) for c in player.hand],
                "visible_value": visible_hand_value(player.hand),
                "hand_value": player.hand_value() if reveal else None,
                "bet": player.bet,
                "folded": player.folded,
                "busted": player.busted if (is_self or self.is_finished) else None,
                "ready": player.ready,
                "has_voted": player.vote is not None,
            }

        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "your_side": viewer.value if viewer else None,
            "sides": sides,
            "pot": self.pot,
            "num_decks": self.num_decks,
            "allow_peek": self.allow_peek,
            "phase_deadline": _dt_to_str(self.phase_deadline),
            "current_round": self.current_round,
            "last_round": self._client_round(self.last_round),
            "winner_user_id": self.side(self.winner_side).user_id if self.winner_side else None,
        }

    @staticmethod
    def _client_round(summary: Optional[RoundSummary]) -> Optional[dict]:
        if summary is None:
            return None
        data = summary.to_dict()
        data["tiebreak_cards"] = {
            s.value: (c.to_client_dict(reveal=True) if c else None)
            for s, c in summary.tiebreak_cards.items()
        }
        return data
