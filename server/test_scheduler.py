"""
Test suite for the turn scheduler.

Covers:
- Who is entitled to which action in each phase
- Membership/phase/turn check order
- Claim ledger for duplicate and racing submissions
- Phase 3 grace timers

Run with: pytest test_scheduler.py -v
"""

import asyncio

import pydantic
import pytest

from errors import AlreadyActedError, AuthorizationError, InvalidPhaseError, OutOfTurnError
from game import GamePhase
from models.actions import LayCard, Predict, RevealRow
from roster import Identity
from scheduler import TurnScheduler
from test_game import C, HANDS, ROWS, make_game, rig_duel, rig_phase1, rig_phase2


class TestEntitlement:

    def test_everyone_reveals_in_any_mode(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        assert TurnScheduler(game).entitled("reveal_row") == {"p0", "p1", "p2", "p3"}

    def test_only_master_reveals_in_master_mode(self):
        game = make_game(reveal_mode="master")
        rig_phase1(game, ROWS, HANDS)
        assert TurnScheduler(game).entitled("reveal_row") == {"p0"}

    def test_busfahrer_excluded_in_phase2(self):
        game = make_game()
        rig_phase2(game, ["p1"], {"p0": [C(2)]})
        assert TurnScheduler(game).entitled("lay_card") == {"p0", "p2", "p3"}

    def test_only_driver_predicts(self):
        game = make_game()
        rig_duel(game, busfahrer=("p2",))
        assert TurnScheduler(game).entitled("predict") == {"p2"}

    def test_nothing_in_wrong_phase(self):
        game = make_game()
        assert TurnScheduler(game).entitled("reveal_row") == set()


class TestRequireTurn:

    def test_spectator_refused_first(self):
        game = make_game()
        game.roster.add_spectator(Identity(id="w", name="W"))
        with pytest.raises(AuthorizationError):
            TurnScheduler(game).require_turn("w", "reveal_row")

    def test_phase_before_turn(self):
        game = make_game()
        with pytest.raises(InvalidPhaseError):
            TurnScheduler(game).require_turn("p1", "predict")

    def test_busfahrer_out_of_turn(self):
        game = make_game()
        rig_phase2(game, ["p1"], {"p0": [C(2)], "p1": [C(3)]})
        with pytest.raises(OutOfTurnError):
            TurnScheduler(game).require_turn("p1", "lay_card")

    def test_non_driver_out_of_turn(self):
        game = make_game()
        rig_duel(game)
        with pytest.raises(OutOfTurnError):
            TurnScheduler(game).require_turn("p3", "predict")

    def test_entitled_player_passes(self):
        game = make_game()
        rig_duel(game)
        TurnScheduler(game).require_turn("p0", "predict")


class TestClaimLedger:

    def test_keys(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        scheduler = TurnScheduler(game)
        assert scheduler.claim_key("p0", RevealRow(action="reveal_row", row_index=2)) == ("row", 2)
        assert scheduler.claim_key("p1", LayCard(action="lay_card", card_index=1)) == ("card", "p1", 1)
        assert scheduler.claim_key("p0", Predict(action="predict", direction="equal", step=3)) == ("draw", 3)
        assert scheduler.claim_key("p0", Predict(action="predict", direction="lower", step=0)) == ("draw", 0)

    def test_predict_requires_step(self):
        with pytest.raises(pydantic.ValidationError):
            Predict(action="predict", direction="equal")

    def test_recorded_claim_rejects_replay(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        scheduler = TurnScheduler(game)
        scheduler.check_claim(("row", 0))
        scheduler.record(("row", 0))
        with pytest.raises(AlreadyActedError):
            scheduler.check_claim(("row", 0))

    def test_match_claims_only_hand_card(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        scheduler = TurnScheduler(game)
        scheduler.record(("card", "p0", 0))
        assert scheduler.is_claimed(("card", "p0", 0))
        assert scheduler._claims == {("card", "p0", 0)}

    def test_phase_change_resets_ledger(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        scheduler = TurnScheduler(game)
        scheduler.record(("row", 0))

        game.phase = GamePhase.PHASE2
        scheduler.check_claim(("row", 0))
        assert not scheduler.is_claimed(("row", 0))

    def test_claims_of_phase_changing_action_dropped(self):
        game = make_game()
        rig_phase1(game, ROWS, HANDS)
        scheduler = TurnScheduler(game)
        game.phase = GamePhase.PHASE2
        scheduler.record(("card", "p0", 0))
        assert not scheduler.is_claimed(("card", "p0", 0))


class TestGraceTimers:

    @pytest.mark.asyncio
    async def test_expiry_calls_back(self):
        game = make_game()
        rig_duel(game)
        scheduler = TurnScheduler(game, grace_seconds=0.01)
        expired = []

        async def on_expire(player_id):
            expired.append(player_id)

        assert scheduler.start_grace("p0", on_expire)
        await asyncio.sleep(0.1)
        assert expired == ["p0"]
        assert not scheduler.has_grace("p0")

    @pytest.mark.asyncio
    async def test_cancel_prevents_expiry(self):
        game = make_game()
        rig_duel(game)
        scheduler = TurnScheduler(game, grace_seconds=0.05)
        expired = []

        async def on_expire(player_id):
            expired.append(player_id)

        scheduler.start_grace("p0", on_expire)
        assert scheduler.cancel_grace("p0")
        await asyncio.sleep(0.1)
        assert expired == []

    @pytest.mark.asyncio
    async def test_only_current_driver_gets_grace(self):
        game = make_game()
        rig_duel(game)
        scheduler = TurnScheduler(game, grace_seconds=0.01)

        async def on_expire(player_id):
            pass

        assert not scheduler.start_grace("p1", on_expire)

    @pytest.mark.asyncio
    async def test_reset_cancels_timers(self):
        game = make_game()
        rig_duel(game)
        scheduler = TurnScheduler(game, grace_seconds=10)

        async def on_expire(player_id):
            pass

        scheduler.start_grace("p0", on_expire)
        scheduler.reset()
        assert not scheduler.has_grace("p0")
