import unittest

from games_server import catalog
from games_server.engines import (
    CardFlipEngine,
    CardFlipState,
    CoinTossEngine,
    DiceEngine,
    LuckyNumberEngine,
    LuckySpinEngine,
    RoundState,
    SlotEngine,
    TreasureEngine,
    TreasureState,
    build_engines,
    jackpot_floors,
    weighted_draw,
)
from games_server.errors import (
    CellAlreadyRevealedError,
    InternalError,
    NotCashoutEligibleError,
    ValidationError,
)
from games_server.jackpot import JackpotAccumulator

from support import ScriptedRandom


def card(rank, suit=0):
    return {"rank": rank, "suit": suit}


class TestWeightedDraw(unittest.TestCase):
    entries = [("a", 10), ("b", 20), ("c", 30)]

    def test_zero_draw_selects_first_entry(self):
        self.assertEqual(weighted_draw(self.entries, 0, "none"), "a")

    def test_boundary_draw_stays_in_band_that_reaches_it(self):
        self.assertEqual(weighted_draw(self.entries, 10, "none"), "a")
        self.assertEqual(weighted_draw(self.entries, 10.0001, "none"), "b")
        self.assertEqual(weighted_draw(self.entries, 30, "none"), "b")
        self.assertEqual(weighted_draw(self.entries, 60, "none"), "c")

    def test_remainder_selects_default(self):
        self.assertEqual(weighted_draw(self.entries, 60.5, "none"), "none")
        self.assertEqual(weighted_draw(self.entries, 99.99, "none"), "none")


class TestLuckySpin(unittest.TestCase):
    def spin(self, draw):
        engine = LuckySpinEngine(catalog.get_config("lucky_spin"), ScriptedRandom(randoms=[draw]))
        return engine.act(RoundState(), 1000, {}, "u1")

    def test_lowest_draw_loses(self):
        outcome = self.spin(0.0)
        self.assertTrue(outcome.completed)
        self.assertEqual(outcome.state["segment"], "lose")
        self.assertEqual(outcome.win_amount, 0)
        self.assertEqual(outcome.result, "lose")
        self.assertEqual(outcome.exp_earned, catalog.EXP_LOSS)

    def test_top_draw_hits_jackpot_segment(self):
        outcome = self.spin(0.999)
        self.assertEqual(outcome.state["segment"], "jackpot")
        self.assertEqual(outcome.win_amount, 50000)
        self.assertEqual(outcome.exp_earned, catalog.EXP_WHEEL_JACKPOT)

    def test_half_segment_pays_half(self):
        outcome = self.spin(0.40)
        self.assertEqual(outcome.state["segment"], "half")
        self.assertEqual(outcome.win_amount, 500)
        self.assertEqual(outcome.exp_earned, catalog.EXP_WIN)

    def test_unknown_action_rejected(self):
        engine = LuckySpinEngine(catalog.get_config("lucky_spin"))
        with self.assertRaises(ValidationError):
            engine.check_action("cashout")
        engine.check_action("spin")
        engine.check_action(None)


class TestDice(unittest.TestCase):
    def roll(self, dice, data, bet=1000):
        engine = DiceEngine(catalog.get_config("dice"), ScriptedRandom(ints=list(dice)))
        return engine.act(RoundState(), bet, data, "u1")

    def test_seven_pays_five_times(self):
        outcome = self.roll((3, 4), {"betType": "seven"})
        self.assertTrue(outcome.completed)
        self.assertEqual(outcome.state["sum"], 7)
        self.assertTrue(outcome.state["won"])
        self.assertEqual(outcome.win_amount, 5000)

    def test_win_conditions(self):
        cases = [
            ("high", 4, 4, None, True),
            ("high", 3, 4, None, False),
            ("low", 1, 5, None, True),
            ("low", 3, 4, None, False),
            ("pair", 2, 2, None, True),
            ("pair", 2, 3, None, False),
            ("specific_pair", 6, 6, 6, True),
            ("specific_pair", 5, 5, 6, False),
        ]
        for bet_type, d1, d2, value, expected in cases:
            with self.subTest(bet_type=bet_type, dice=(d1, d2)):
                self.assertEqual(DiceEngine.is_win(bet_type, d1, d2, value), expected)

    def test_specific_pair_needs_value(self):
        with self.assertRaises(ValidationError):
            self.roll((1, 1), {"betType": "specific_pair"})
        outcome = self.roll((6, 6), {"betType": "specific_pair", "value": 6})
        self.assertEqual(outcome.win_amount, 30000)

    def test_unknown_bet_type(self):
        with self.assertRaises(ValidationError):
            self.roll((1, 2), {"betType": "odd"})


class TestCardFlip(unittest.TestCase):
    def setUp(self):
        self.engine = CardFlipEngine(catalog.get_config("card_flip"), ScriptedRandom())
        self.ladder = catalog.get_config("card_flip").table["ladder"]

    def test_initial_state_shows_one_card(self):
        state = self.engine.initialize()
        self.assertEqual(len(state.deck), 51)
        visible = self.engine.visible_state(state)
        self.assertIn("currentCard", visible)
        self.assertNotIn("deck", visible)
        self.assertFalse(self.engine.cashout_eligible(state))

    def test_tie_is_a_loss_for_both_guesses(self):
        for guess in ("higher", "lower"):
            with self.subTest(guess=guess):
                state = CardFlipState(deck=[card(7, 1)], current=card(7))
                outcome = self.engine.act(state, 1000, {"guess": guess}, "u1")
                self.assertTrue(outcome.completed)
                self.assertEqual(outcome.result, "lose")
                self.assertEqual(outcome.win_amount, 0)

    def test_streak_multiplier_is_clamped_to_ladder(self):
        for n in range(1, 10):
            self.assertEqual(
                self.engine.ladder_step(n), self.ladder[min(n - 1, len(self.ladder) - 1)]
            )

    def test_accrued_multiplier_is_product_of_ladder_steps(self):
        # pop() takes from the end, so ranks come out 2, 3, ..., 9
        state = CardFlipState(deck=[card(r) for r in range(9, 1, -1)], current=card(1))
        expected = 1.0
        for n in range(1, 9):
            outcome = self.engine.act(state, 1000, {"guess": "higher"}, "u1")
            expected *= self.ladder[min(n - 1, len(self.ladder) - 1)]
            self.assertFalse(outcome.completed)
            self.assertEqual(outcome.exp_earned, 0)
            self.assertTrue(outcome.cashout_eligible)
            self.assertEqual(state.streak, n)
            self.assertAlmostEqual(state.multiplier, expected)

        settled = self.engine.settle(state, 1000)
        self.assertTrue(settled.completed)
        self.assertEqual(settled.win_amount, int(1000 * expected))

    def test_wrong_guess_ends_session(self):
        state = CardFlipState(deck=[card(3)], current=card(10))
        outcome = self.engine.act(state, 1000, {"guess": "higher"}, "u1")
        self.assertTrue(outcome.completed)
        self.assertEqual(outcome.result, "lose")

    def test_settle_before_any_win_rejected(self):
        with self.assertRaises(NotCashoutEligibleError):
            self.engine.settle(self.engine.initialize(), 1000)

    def test_empty_deck_is_rebuilt(self):
        state = CardFlipState(deck=[], current=card(1))
        self.engine.act(state, 1000, {"guess": "higher"}, "u1")
        self.assertEqual(len(state.deck), 51)

    def test_bad_guess(self):
        with self.assertRaises(ValidationError):
            self.engine.act(self.engine.initialize(), 1000, {"guess": "same"}, "u1")


class TestTreasure(unittest.TestCase):
    grid = ["coin", "bomb", "double", "coin", "triple", "bomb", "coin", "bomb", "coin"]

    def setUp(self):
        self.engine = TreasureEngine(catalog.get_config("treasure"), ScriptedRandom())

    def test_initial_grid_matches_configured_cells(self):
        state = self.engine.initialize()
        self.assertEqual(sorted(state.grid), sorted(self.grid))
        self.assertEqual(self.engine.visible_state(state), {"gridSize": 9, "revealed": {}, "pot": 0})

    def test_coin_then_double(self):
        state = TreasureState(grid=list(self.grid))
        self.engine.act(state, 10000, {"index": 0}, "u1")
        self.assertEqual(state.pot, 5000)
        outcome = self.engine.act(state, 10000, {"index": 2}, "u1")
        self.assertEqual(state.pot, 10000)
        self.assertTrue(outcome.cashout_eligible)

    def test_multiplier_on_empty_pot_seeds_from_bet(self):
        state = TreasureState(grid=list(self.grid))
        self.engine.act(state, 10000, {"index": 4}, "u1")
        self.assertEqual(state.pot, 30000)

    def test_re_reveal_is_conflict_and_keeps_pot(self):
        state = TreasureState(grid=list(self.grid))
        self.engine.act(state, 10000, {"index": 0}, "u1")
        with self.assertRaises(CellAlreadyRevealedError):
            self.engine.act(state, 10000, {"index": 0}, "u1")
        self.assertEqual(state.pot, 5000)

    def test_revealing_every_safe_cell_keeps_session_open(self):
        state = TreasureState(grid=list(self.grid))
        pot = 0
        for index, cell in enumerate(self.grid):
            if cell == "bomb":
                continue
            outcome = self.engine.act(state, 10000, {"index": index}, "u1")
            if cell == "coin":
                pot += 5000
            elif cell == "double":
                pot = (pot or 10000) * 2
            elif cell == "triple":
                pot = (pot or 10000) * 3
            self.assertFalse(outcome.completed)
            self.assertEqual(outcome.exp_earned, 0)
        self.assertEqual(state.pot, pot)
        self.assertEqual(pot, 55000)
        self.assertTrue(self.engine.cashout_eligible(state))
        settled = self.engine.settle(state, 10000)
        self.assertEqual(settled.win_amount, 55000)
        self.assertEqual(settled.exp_earned, catalog.EXP_WIN)

    def test_bomb_ends_with_nothing(self):
        state = TreasureState(grid=list(self.grid))
        self.engine.act(state, 10000, {"index": 0}, "u1")
        outcome = self.engine.act(state, 10000, {"index": 1}, "u1")
        self.assertTrue(outcome.completed)
        self.assertEqual(outcome.win_amount, 0)
        self.assertEqual(outcome.state["grid"], self.grid)

    def test_index_validation(self):
        state = TreasureState(grid=list(self.grid))
        for data in ({"index": 9}, {"index": -1}, {"index": "x"}, {}, {"index": True}):
            with self.subTest(data=data):
                with self.assertRaises(ValidationError):
                    self.engine.act(state, 10000, data, "u1")
        self.assertEqual(state.revealed, {})


class TestLuckyNumber(unittest.TestCase):
    def guess(self, guess, target):
        engine = LuckyNumberEngine(catalog.get_config("lucky_number"), ScriptedRandom(ints=[target]))
        return engine.act(RoundState(), 1000, {"guess": guess}, "u1")

    def test_distance_bands(self):
        cases = [(50, 50, 50000), (48, 50, 10000), (55, 50, 5000), (40, 50, 2000), (39, 50, 0)]
        for guess, target, expected in cases:
            with self.subTest(guess=guess):
                outcome = self.guess(guess, target)
                self.assertTrue(outcome.completed)
                self.assertEqual(outcome.state["distance"], abs(guess - target))
                self.assertEqual(outcome.win_amount, expected)

    def test_guess_out_of_range(self):
        for bad in (0, 101, "abc", None):
            with self.subTest(guess=bad):
                with self.assertRaises(ValidationError):
                    self.guess(bad, 50)


class TestCoinToss(unittest.TestCase):
    def toss(self, guesses, randoms):
        engine = CoinTossEngine(catalog.get_config("coin_toss"), ScriptedRandom(randoms=randoms))
        return engine.act(RoundState(), 1000, {"guesses": guesses}, "u1")

    def test_full_match_pays_by_length(self):
        outcome = self.toss(["heads", "tails", "heads"], [0.1, 0.9, 0.2])
        self.assertTrue(outcome.state["won"])
        self.assertEqual(outcome.win_amount, 7600)

    def test_stops_at_first_mismatch(self):
        outcome = self.toss(["heads", "heads", "heads"], [0.1, 0.9, 0.1])
        self.assertFalse(outcome.state["won"])
        self.assertEqual(outcome.state["flips"], ["heads", "tails"])
        self.assertEqual(outcome.win_amount, 0)

    def test_sequence_length_validated(self):
        for guesses in ([], ["heads"] * 4, ["edge"], "heads,tails"):
            with self.subTest(guesses=guesses):
                with self.assertRaises(ValidationError):
                    self.toss(guesses, [])


class TestSlot(unittest.TestCase):
    def setUp(self):
        self.jackpot = JackpotAccumulator({"slot": 1000000})
        self.config = catalog.get_config("slot")

    def spin(self, reels, bet=1000):
        engine = SlotEngine(self.config, ScriptedRandom(choices=list(reels)), jackpot=self.jackpot)
        return engine.act(RoundState(), bet, {}, "u1")

    def test_jackpot_pays_pool_and_resets_to_floor(self):
        self.jackpot.contribute("slot", 2500)
        outcome = self.spin(["seven", "seven", "seven"])
        self.assertTrue(outcome.state["isJackpot"])
        self.assertEqual(outcome.win_amount, 1002500)
        self.assertEqual(self.jackpot.amount("slot"), 1000000)
        self.assertEqual(self.jackpot.get("slot").last_winner, "u1")
        self.assertEqual(outcome.exp_earned, catalog.EXP_SLOT_JACKPOT)

    def test_non_jackpot_spin_contributes(self):
        outcome = self.spin(["bar", "bar", "bar"], bet=10000)
        self.assertEqual(outcome.win_amount, 250000)
        self.assertEqual(self.jackpot.amount("slot"), 1000100)
        self.spin(["bell", "grape", "lemon"], bet=10000)
        self.assertEqual(self.jackpot.amount("slot"), 1000200)

    def test_line_payouts(self):
        self.assertEqual(self.spin(["cherry", "cherry", "bell"]).win_amount, 2000)
        self.assertEqual(self.spin(["seven", "seven", "bar"]).win_amount, 0)
        self.assertEqual(self.spin(["lemon", "lemon", "lemon"]).win_amount, 8000)

    def test_slot_requires_jackpot_pool(self):
        with self.assertRaises(InternalError):
            SlotEngine(self.config, ScriptedRandom(), jackpot=JackpotAccumulator({}))


class TestRegistry(unittest.TestCase):
    def test_one_engine_per_game(self):
        jackpot = JackpotAccumulator(jackpot_floors(catalog.GAME_CATALOG))
        engines = build_engines(catalog.GAME_CATALOG, jackpot)
        self.assertEqual(set(engines), set(catalog.GAME_CATALOG))
        for game_type, engine in engines.items():
            self.assertEqual(engine.game_type, game_type)
        self.assertTrue(engines["card_flip"].push_your_luck)
        self.assertFalse(engines["dice"].push_your_luck)

    def test_engine_rejects_foreign_config(self):
        with self.assertRaises(InternalError):
            DiceEngine(catalog.get_config("slot"))


if __name__ == "__main__":
    unittest.main()
