"""
Test suite for Bloker game rules.

Covers the round state machine in game.py:
- Shoe construction and the reserve split
- Blackjack hand values (aces soft until they would bust)
- Settings negotiation and deadline defaults
- Betting (raise, check, fold) and the peek reveal
- Hit/stay, busts, tiebreakers and drawn rounds
- Card conservation across rounds
- Leaving mid-match

Run with: pytest test_game.py -v
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from game import (
    AlreadyVoted,
    BetKind,
    Card,
    Deck,
    GameSession,
    InsufficientReserve,
    InvalidAction,
    InvalidPhase,
    NotAParticipant,
    Outcome,
    PlayerSide,
    Rank,
    RANK_VALUES,
    SessionPhase,
    SettingsVote,
    Side,
    Suit,
    compare_tiebreak,
    hand_value,
    is_bust,
    is_natural,
)


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def cards(ranks: list[str], first_face_up: bool = False) -> list[Card]:
    """Spades of the given ranks; the list end is the reserve top."""
    result = [Card(Suit.SPADES, Rank(r)) for r in ranks]
    if first_face_up and result:
        result[0].face_up = True
    return result


def make_session(
    hand_a: list[str],
    hand_b: list[str],
    reserve_a: list[str],
    reserve_b: list[str],
    phase: SessionPhase = SessionPhase.HIT_OR_STAY,
    pot: int = 0,
    allow_peek: bool = True,
) -> GameSession:
    """A session mid-round with fully controlled cards."""
    return GameSession(
        side_a=PlayerSide(
            user_id="alice",
            reserve=cards(reserve_a),
            hand=cards(hand_a, first_face_up=True),
        ),
        side_b=PlayerSide(
            user_id="bob",
            reserve=cards(reserve_b),
            hand=cards(hand_b, first_face_up=True),
        ),
        phase=phase,
        pot=pot,
        allow_peek=allow_peek,
        current_round=1,
        phase_deadline=T0 + timedelta(seconds=25) if phase == SessionPhase.BETTING else None,
        created_at=T0,
        rng=random.Random(42),
    )


# =============================================================================
# Deck Tests
# =============================================================================

class TestDeck:
    """Shoe construction and splitting."""

    @pytest.mark.parametrize("num_decks", [1, 2, 3])
    def test_deck_size(self, num_decks):
        assert Deck(num_decks).cards_remaining() == 52 * num_decks

    def test_every_card_once_per_deck(self):
        deck = Deck(2, seed=1)
        counts = {}
        for card in deck.cards:
            key = (card.suit, card.rank)
            counts[key] = counts.get(key, 0) + 1
        assert len(counts) == 52
        assert set(counts.values()) == {2}

    def test_seed_reproduces_shuffle(self):
        first = [(c.suit, c.rank) for c in Deck(1, seed=99).cards]
        second = [(c.suit, c.rank) for c in Deck(1, seed=99).cards]
        assert first == second

    def test_split_even(self):
        side_a, side_b = Deck(1, seed=3).split()
        assert len(side_a) == 26
        assert len(side_b) == 26

    def test_split_odd_gives_side_a_extra_card(self):
        deck = Deck(1, seed=3)
        deck.draw()
        side_a, side_b = deck.split()
        assert len(side_a) == 26
        assert len(side_b) == 25
        assert deck.cards_remaining() == 0

    def test_dealt_cards_start_face_down(self):
        assert not any(card.face_up for card in Deck(1).cards)


# =============================================================================
# Hand Value Tests
# =============================================================================

class TestHandValues:
    """Blackjack scoring."""

    def test_face_cards_worth_10(self):
        for rank in (Rank.JACK, Rank.QUEEN, Rank.KING):
            assert RANK_VALUES[rank] == 10

    def test_ace_king_is_21(self):
        assert hand_value(cards(["A", "K"])) == 21

    def test_two_aces_is_12(self):
        assert hand_value(cards(["A", "A"])) == 12

    def test_two_aces_and_nine_is_21(self):
        assert hand_value(cards(["A", "A", "9"])) == 21

    def test_bust_hand(self):
        hand = cards(["10", "9", "5"])
        assert hand_value(hand) == 24
        assert is_bust(hand)

    def test_natural(self):
        assert is_natural(cards(["A", "Q"]))
        assert not is_natural(cards(["7", "7", "7"]))

    def test_empty_hand(self):
        assert hand_value([]) == 0


class TestTiebreakOrder:
    """Ace-high single card comparison."""

    def test_ranks_strictly_increasing(self):
        order = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
        for low, high in zip(order, order[1:]):
            assert compare_tiebreak(cards([high])[0], cards([low])[0]) == 1
            assert compare_tiebreak(cards([low])[0], cards([high])[0]) == -1

    def test_same_rank_different_suit_ties(self):
        assert compare_tiebreak(Card(Suit.HEARTS, Rank.TEN), Card(Suit.CLUBS, Rank.TEN)) == 0


# =============================================================================
# Settings Negotiation Tests
# =============================================================================

class TestSettingsVote:
    """Voting on deck count and peeking."""

    def setup_method(self):
        self.session = GameSession.create("alice", "bob", now=T0, vote_seconds=60, betting_seconds=25)
        self.session.rng = random.Random(7)

    def test_new_session_is_negotiating(self):
        assert self.session.phase == SessionPhase.NEGOTIATING_SETTINGS
        assert self.session.phase_deadline == T0 + timedelta(seconds=60)
        assert self.session.total_cards() == 0

    def test_agreeing_votes_start_round_one(self):
        self.session.submit_vote(Side.A, SettingsVote(2, True), T0)
        result = self.session.submit_vote(Side.B, SettingsVote(2, True), T0)

        assert result.outcome == Outcome.SETTINGS_RESOLVED
        assert self.session.num_decks == 2
        assert self.session.allow_peek is True
        assert self.session.phase == SessionPhase.BETTING
        assert self.session.current_round == 1
        assert self.session.phase_deadline == T0 + timedelta(seconds=25)
        for player in (self.session.side_a, self.session.side_b):
            assert len(player.hand) == 2
            assert len(player.reserve) == 50
            assert player.hand[0].face_up is True
            assert player.hand[1].face_up is False
            assert player.vote is None
        assert self.session.total_cards() == 104
        assert any("Round 1 started" in m for m in result.messages)

    def test_disagreeing_votes_pick_one_side(self):
        self.session.submit_vote(Side.A, SettingsVote(1, True), T0)
        self.session.submit_vote(Side.B, SettingsVote(3, False), T0)
        assert self.session.num_decks in (1, 3)
        assert self.session.allow_peek in (True, False)
        assert self.session.total_cards() == 52 * self.session.num_decks

    def test_split_peek_vote_is_stable_once_chosen(self):
        self.session.submit_vote(Side.A, SettingsVote(2, False), T0)
        self.session.submit_vote(Side.B, SettingsVote(2, True), T0)
        assert self.session.num_decks == 2
        assert self.session.allow_peek in (True, False)

        restored = GameSession.from_dict(self.session.to_dict())
        assert restored.num_decks == 2
        assert restored.allow_peek is self.session.allow_peek


    def test_single_vote_does_not_resolve(self):
        result = self.session.submit_vote(Side.A, SettingsVote(2, True), T0)
        assert result.outcome == Outcome.ACCEPTED
        assert self.session.phase == SessionPhase.NEGOTIATING_SETTINGS

    def test_double_vote_rejected(self):
        self.session.submit_vote(Side.A, SettingsVote(2, True), T0)
        with pytest.raises(AlreadyVoted):
            self.session.submit_vote(Side.A, SettingsVote(1, True), T0)

    @pytest.mark.parametrize("num_decks", [0, 5, -1])
    def test_deck_count_out_of_range(self, num_decks):
        with pytest.raises(InvalidAction):
            self.session.submit_vote(Side.A, SettingsVote(num_decks, True), T0)
        assert self.session.side_a.vote is None

    def test_vote_after_resolution_rejected(self):
        self.session.submit_vote(Side.A, SettingsVote(1, True), T0)
        self.session.submit_vote(Side.B, SettingsVote(1, True), T0)
        with pytest.raises(InvalidPhase):
            self.session.submit_vote(Side.A, SettingsVote(1, True), T0)

    def test_expiry_before_deadline_is_noop(self):
        assert self.session.expire_settings_vote(T0 + timedelta(seconds=59)) is None
        assert self.session.phase == SessionPhase.NEGOTIATING_SETTINGS

    def test_expiry_fills_missing_votes_with_defaults(self):
        later = T0 + timedelta(seconds=60)
        result = self.session.expire_settings_vote(later)
        assert result.outcome == Outcome.SETTINGS_RESOLVED
        assert self.session.num_decks == 1
        assert self.session.allow_peek is True
        assert self.session.phase == SessionPhase.BETTING
        assert self.session.phase_deadline == later + timedelta(seconds=25)

    def test_expiry_is_idempotent(self):
        later = T0 + timedelta(seconds=61)
        assert self.session.expire_settings_vote(later) is not None
        assert self.session.expire_settings_vote(later) is None

    def test_same_rng_seed_deals_same_reserves(self):
        other = GameSession.create("alice", "bob", now=T0)
        other.rng = random.Random(7)
        for session in (self.session, other):
            session.submit_vote(Side.A, SettingsVote(1, True), T0)
            session.submit_vote(Side.B, SettingsVote(1, True), T0)
        assert self.session.side_a.to_dict() == other.side_a.to_dict()


# =============================================================================
# Betting Tests
# =============================================================================

class TestBetting:
    """Raise, check and fold."""

    def setup_method(self):
        self.session = make_session(
            hand_a=["7", "8"],
            hand_b=["9", "5"],
            reserve_a=["2", "3", "4", "5", "6"],
            reserve_b=["2", "3", "4", "5", "6"],
            phase=SessionPhase.BETTING,
        )

    def test_raise_moves_reserve_cards_into_pot(self):
        result = self.session.bet(Side.A, BetKind.RAISE, 3, T0)
        assert result.outcome == Outcome.ACCEPTED
        assert self.session.side_a.bet == 3
        assert self.session.pot == 3
        assert len(self.session.side_a.reserve) == 2
        assert self.session.phase == SessionPhase.BETTING

    def test_check_matches_and_closes_betting(self):
        self.session.bet(Side.A, BetKind.RAISE, 3, T0)
        result = self.session.bet(Side.B, BetKind.CHECK, None, T0)
        assert result.outcome == Outcome.BETTING_CLOSED
        assert self.session.side_b.bet == 3
        assert self.session.pot == 6
        assert self.session.phase == SessionPhase.HIT_OR_STAY
        assert self.session.phase_deadline is None

    def test_check_with_equal_bets_closes_betting(self):
        result = self.session.bet(Side.A, BetKind.CHECK, None, T0)
        assert result.outcome == Outcome.BETTING_CLOSED
        assert self.session.pot == 0

    def test_check_when_already_ahead_rejected(self):
        self.session.bet(Side.A, BetKind.RAISE, 2, T0)
        with pytest.raises(InvalidAction):
            self.session.bet(Side.A, BetKind.CHECK, None, T0)

    def test_check_short_reserve_leaves_state_unchanged(self):
        self.session.side_b.reserve = cards(["2", "3"])
        self.session.bet(Side.A, BetKind.RAISE, 3, T0)
        with pytest.raises(InsufficientReserve):
            self.session.bet(Side.B, BetKind.CHECK, None, T0)
        assert self.session.side_b.bet == 0
        assert len(self.session.side_b.reserve) == 2
        assert self.session.pot == 3

    @pytest.mark.parametrize("amount", [0, -2, None, True])
    def test_invalid_raise_amount(self, amount):
        with pytest.raises(InvalidAction):
            self.session.bet(Side.A, BetKind.RAISE, amount, T0)

    def test_raise_beyond_reserve(self):
        with pytest.raises(InsufficientReserve):
            self.session.bet(Side.A, BetKind.RAISE, 6, T0)

    def test_unknown_bet_kind(self):
        with pytest.raises(InvalidAction):
            self.session.bet(Side.A, "all_in", None, T0)

    def test_bet_outside_betting_phase(self):
        self.session.phase = SessionPhase.HIT_OR_STAY
        with pytest.raises(InvalidPhase):
            self.session.bet(Side.A, BetKind.RAISE, 1, T0)

    def test_peek_reveals_face_down_cards(self):
        self.session.bet(Side.A, BetKind.CHECK, None, T0)
        for player in (self.session.side_a, self.session.side_b):
            assert all(card.face_up for card in player.hand)

    def test_no_peek_keeps_second_card_hidden(self):
        self.session.allow_peek = False
        self.session.bet(Side.A, BetKind.CHECK, None, T0)
        assert self.session.side_b.hand[1].face_up is False

    def test_betting_expiry(self):
        self.session.bet(Side.A, BetKind.RAISE, 2, T0)
        assert self.session.expire_betting(T0 + timedelta(seconds=24)) is None

        result = self.session.expire_betting(T0 + timedelta(seconds=25))
        assert result.outcome == Outcome.BETTING_CLOSED
        assert self.session.phase == SessionPhase.HIT_OR_STAY
        # Unmatched bets stand
        assert self.session.side_a.bet == 2
        assert self.session.side_b.bet == 0
        assert self.session.expire_betting(T0 + timedelta(seconds=26)) is None

    def test_fold_awards_hands_and_pot(self):
        before = self.session.total_cards()
        self.session.bet(Side.A, BetKind.RAISE, 2, T0)
        result = self.session.bet(Side.B, BetKind.FOLD, None, T0)

        assert result.outcome == Outcome.ROUND_RESOLVED
        summary = result.rounds[0]
        assert summary.winner_side == Side.A
        assert summary.reason == "fold"
        assert summary.pot_awarded == 2
        assert self.session.pot == 0
        assert self.session.current_round == 2
        assert self.session.phase == SessionPhase.BETTING
        # 3 left + 4 hand cards + 2 pot cards, minus 2 dealt for round 2
        assert len(self.session.side_a.reserve) == 7
        assert self.session.total_cards() == before
        assert [(e.user_id, e.credit_delta, e.won) for e in result.ledger] == [("alice", 2, None)]

    def test_pot_paid_as_synthetic_cards(self):
        self.session.bet(Side.A, BetKind.RAISE, 2, T0)
        self.session.bet(Side.B, BetKind.FOLD, None, T0)
        synthetic = [c for c in self.session.side_a.reserve if c.synthetic]
        assert len(synthetic) == 2

    def test_folded_side_cannot_bet(self):
        self.session.side_b.folded = True
        with pytest.raises(InvalidAction):
            self.session.bet(Side.B, BetKind.CHECK, None, T0)


# =============================================================================
# Hit / Stay Tests
# =============================================================================

class TestHitStay:
    """Drawing, standing and busting."""

    def test_hit_draws_top_reserve_card_face_up(self):
        session = make_session(["5", "6"], ["9", "9"], ["2", "8"], ["3", "4"])
        result = session.hit(Side.A, T0)
        assert result.drawn_card.rank == Rank.EIGHT
        assert result.drawn_card.face_up is True
        assert session.side_a.hand_value() == 19
        assert not result.busted

    def test_hit_over_21_busts(self):
        session = make_session(["K", "Q"], ["9", "9"], ["2", "5"], ["3", "4"])
        result = session.hit(Side.A, T0)
        assert result.busted
        assert session.side_a.busted
        assert result.outcome == Outcome.ACCEPTED

    def test_busted_side_cannot_act(self):
        session = make_session(["K", "Q"], ["9", "9"], ["2", "5"], ["3", "4"])
        session.hit(Side.A, T0)
        with pytest.raises(InvalidAction):
            session.stay(Side.A, T0)

    def test_stay_twice_rejected(self):
        session = make_session(["K", "Q"], ["9", "9"], ["2", "5"], ["3", "4"])
        session.stay(Side.A, T0)
        with pytest.raises(InvalidAction):
            session.stay(Side.A, T0)
        with pytest.raises(InvalidAction):
            session.hit(Side.A, T0)

    def test_hit_outside_phase(self):
        session = make_session(["5", "6"], ["9", "9"], ["2"], ["3"], phase=SessionPhase.BETTING)
        with pytest.raises(InvalidPhase):
            session.hit(Side.A, T0)

    def test_empty_reserve_without_stake_loses_match(self):
        session = make_session(["5", "6"], ["9", "9"], [], ["3", "4"])
        result = session.hit(Side.A, T0)
        assert result.outcome == Outcome.OUT_OF_CARDS_NO_STAKE
        assert session.phase == SessionPhase.FINISHED
        assert session.winner_side == Side.B
        assert session.finished_at == T0
        assert [(e.user_id, e.won) for e in result.ledger] == [("bob", True), ("alice", False)]

    def test_empty_reserve_with_stake_draws_from_bet(self):
        session = make_session(["5", "6"], ["9", "9"], [], ["3", "4"], pot=4)
        session.side_a.bet = 2
        session.side_b.bet = 2
        before = session.total_cards()

        result = session.hit(Side.A, T0)
        assert result.drawn_card.synthetic
        assert result.drawn_card.face_up
        assert session.side_a.bet == 1
        assert session.pot == 3
        assert len(session.side_a.hand) == 3
        assert session.total_cards() == before


# =============================================================================
# Round Resolution Tests
# =============================================================================

class TestRoundResolution:
    """Comparing hands, tiebreakers and drawn rounds."""

    def test_higher_hand_wins(self):
        session = make_session(["K", "9"], ["K", "7"], ["2", "3", "4"], ["5", "6", "7"], pot=4)
        before = session.total_cards()
        session.stay(Side.A, T0)
        result = session.stay(Side.B, T0)

        summary = result.rounds[0]
        assert summary.winner_side == Side.A
        assert summary.reason == "higher_hand"
        assert summary.hand_values == {Side.A: 19, Side.B: 17}
        assert session.pot == 0
        assert session.current_round == 2
        assert session.total_cards() == before

    def test_one_bust_other_wins(self):
        session = make_session(["K", "Q"], ["2", "3"], ["2", "3", "9"], ["5", "6", "7"])
        session.hit(Side.A, T0)
        result = session.stay(Side.B, T0)
        assert result.rounds[0].winner_side == Side.B
        assert result.rounds[0].reason == "bust"

    def test_double_bust_resolves_without_stays(self):
        session = make_session(["K", "Q"], ["K", "J"], ["2", "5", "9"], ["3", "4", "8"], pot=2)
        before = session.total_cards()
        session.hit(Side.A, T0)
        result = session.hit(Side.B, T0)

        assert result.outcome == Outcome.ROUND_RESOLVED
        assert result.busted
        summary = result.rounds[0]
        assert summary.winner_side is None
        assert summary.reason == "double_bust"
        # Pot carries, hands go back to their owners
        assert session.pot == 2
        assert len(session.side_a.reserve) == 3
        assert len(session.side_b.reserve) == 3
        assert session.total_cards() == before
        assert result.ledger == []

    def test_tie_at_19_decided_by_tiebreak(self):
        session = make_session(["10", "9"], ["K", "9"], ["2", "3", "A"], ["4", "5", "Q"])
        before = session.total_cards()
        session.stay(Side.A, T0)
        result = session.stay(Side.B, T0)

        summary = result.rounds[0]
        assert summary.reason == "tiebreak"
        assert summary.winner_side == Side.A
        assert summary.tiebreak_cards[Side.A].rank == Rank.ACE
        assert summary.tiebreak_cards[Side.B].rank == Rank.QUEEN
        # Each reserve shrank by exactly one card for the tiebreaker draw
        assert summary.tiebreak_reserve_counts == {Side.A: 2, Side.B: 2}
        # Winner took both hands and both tiebreak cards
        assert len(session.side_a.reserve) + len(session.side_a.hand) == 8
        assert session.total_cards() == before

    def test_tiebreak_tie_is_a_draw(self):
        session = make_session(["10", "9"], ["K", "9"], ["2", "3", "Q"], ["4", "5", "Q"], pot=4)
        before = session.total_cards()
        session.stay(Side.A, T0)
        result = session.stay(Side.B, T0)

        summary = result.rounds[0]
        assert summary.reason == "tie"
        assert summary.winner_side is None
        assert summary.tiebreak_reserve_counts == {Side.A: 2, Side.B: 2}
        assert session.pot == 4
        # Tiebreak cards went back on top and are dealt first next round
        assert session.side_a.hand[0].rank == Rank.QUEEN
        assert session.total_cards() == before

    def test_tiebreak_lost_with_empty_reserve(self):
        session = make_session(["10", "9"], ["K", "9"], [], ["4", "5", "2"])
        session.side_a.ready = True
        result = session.stay(Side.B, T0)
        assert result.rounds[0].winner_side == Side.B
        assert result.rounds[0].reason == "tiebreak"
        # Side A has nothing left, so the match ends
        assert session.phase == SessionPhase.FINISHED
        assert session.winner_side == Side.B

    def test_draw_with_empty_reserves_deals_returned_hands(self):
        session = make_session(["K", "9"], ["K", "9"], [], [])
        session.stay(Side.A, T0)
        result = session.stay(Side.B, T0)
        assert result.rounds[0].reason == "tie"
        assert session.phase == SessionPhase.BETTING
        assert session.current_round == 2
        assert len(session.side_a.hand) == 2
        assert session.side_a.reserve == []

    def test_match_ends_when_reserve_runs_out(self):
        session = make_session(["K", "9"], ["K", "7"], ["2"], [])
        session.stay(Side.A, T0)
        result = session.stay(Side.B, T0)
        assert result.outcome == Outcome.SESSION_FINISHED
        assert session.winner_side == Side.A
        assert ("alice", True) in [(e.user_id, e.won) for e in result.ledger]
        assert ("bob", False) in [(e.user_id, e.won) for e in result.ledger]


# =============================================================================
# Conservation Tests
# =============================================================================

class TestConservation:
    """Reserves, hands and pot always add up to the shoe size."""

    def test_full_match_conserves_cards(self):
        session = GameSession.create("alice", "bob", now=T0)
        session.rng = random.Random(11)
        session.submit_vote(Side.A, SettingsVote(1, False), T0)
        session.submit_vote(Side.B, SettingsVote(1, False), T0)

        rounds = 0
        while not session.is_finished and rounds < 200:
            assert session.total_cards() == 52
            a, b = session.side_a, session.side_b
            if a.reserve:
                session.bet(Side.A, BetKind.RAISE, 1, T0)
            if len(b.reserve) >= a.bet - b.bet:
                session.bet(Side.B, BetKind.CHECK, None, T0)
            else:
                session.bet(Side.B, BetKind.FOLD, None, T0)
            if session.phase == SessionPhase.HIT_OR_STAY:
                session.stay(Side.A, T0)
            if session.phase == SessionPhase.HIT_OR_STAY:
                session.stay(Side.B, T0)
            rounds += 1

        assert session.total_cards() == 52


# =============================================================================
# Leave Tests
# =============================================================================

class TestLeave:
    """Forfeiting mid-match."""

    def test_leaver_forfeits_both_bets(self):
        session = make_session(["7", "8"], ["9", "5"], ["2", "3", "4"], ["2", "3", "4"],
                               phase=SessionPhase.BETTING)
        session.bet(Side.A, BetKind.RAISE, 2, T0)
        result = session.leave(Side.B, T0)

        assert result.outcome == Outcome.FORFEITED
        assert session.phase == SessionPhase.FINISHED
        assert session.winner_side == Side.A
        assert [(e.user_id, e.credit_delta, e.won) for e in result.ledger] == [
            ("bob", 0, False),
            ("alice", 2, True),
        ]
        assert result.messages == ["bob left the game. alice wins 2!"]

    def test_leave_charges_leaver_bet(self):
        session = make_session(["7", "8"], ["9", "5"], ["2", "3", "4"], ["2", "3", "4"],
                               phase=SessionPhase.BETTING)
        session.bet(Side.A, BetKind.RAISE, 3, T0)
        result = session.leave(Side.A, T0)
        assert result.ledger[0].credit_delta == -3
        assert result.ledger[1].credit_delta == 3

    def test_leave_after_finish_rejected(self):
        session = make_session(["7", "8"], ["9", "5"], [], [])
        session.phase = SessionPhase.FINISHED
        with pytest.raises(InvalidPhase):
            session.leave(Side.A, T0)


# =============================================================================
# State View Tests
# =============================================================================

class TestStateView:
    """Per-viewer state and persistence round trip."""

    def setup_method(self):
        self.session = make_session(["7", "8"], ["9", "5"], ["2", "3"], ["4", "6"],
                                    phase=SessionPhase.BETTING, allow_peek=False)

    def test_opponent_hole_card_hidden(self):
        state = self.session.get_state("alice")
        assert state["your_side"] == "a"
        assert state["sides"]["a"]["hand"][1]["rank"] == "8"
        assert state["sides"]["b"]["hand"][1] == {"face_up": False}
        assert state["sides"]["b"]["hand_value"] is None
        assert state["sides"]["b"]["visible_value"] == 9
        assert state["sides"]["a"]["hand_value"] == 15

    def test_bust_reported_only_to_hitting_side(self):
        session = make_session(["K", "Q"], ["5", "6"], ["2", "5"], ["3", "4"], allow_peek=False)
        result = session.hit(Side.A, T0)
        assert result.busted
        assert result.side == Side.A

        own = session.get_state("alice")["sides"]["a"]
        assert own["busted"] is True
        assert own["hand_value"] == 25

        seen_by_bob = session.get_state("bob")["sides"]["a"]
        assert seen_by_bob["busted"] is None
        assert seen_by_bob["hand_value"] is None
        assert seen_by_bob["visible_value"] == 15

    def test_opponent_result_does_not_carry_bust(self):
        session = make_session(["K", "Q"], ["5", "6"], ["2", "5"], ["3", "4"])
        session.hit(Side.A, T0)
        result = session.hit(Side.B, T0)
        assert result.side == Side.B
        assert result.busted is False
        assert result.to_dict()["busted"] is False
        assert session.phase == SessionPhase.HIT_OR_STAY


    def test_finished_session_reveals_everything(self):
        self.session.phase = SessionPhase.FINISHED
        state = self.session.get_state("alice")
        assert state["sides"]["b"]["hand"][1]["rank"] == "5"

    def test_side_for_unknown_user(self):
        with pytest.raises(NotAParticipant):
            self.session.side_for_user("mallory")

    def test_dict_round_trip(self):
        self.session.bet(Side.A, BetKind.RAISE, 1, T0)
        restored = GameSession.from_dict(self.session.to_dict())
        assert restored.to_dict() == self.session.to_dict()
        assert restored.phase_deadline == self.session.phase_deadline
