"""Shared helpers for the test suites."""

import random

from games_server.settlement import SettlementGateway


class ScriptedRandom(random.Random):
    """random.Random that replays queued values before falling back to its seed."""

    def __init__(self, randoms=(), ints=(), choices=(), seed=1234):
        super().__init__(seed)
        self.randoms = list(randoms)
        self.ints = list(ints)
        self.choices = list(choices)

    def random(self):
        if self.randoms:
            return self.randoms.pop(0)
        return super().random()

    def randint(self, a, b):
        if self.ints:
            return self.ints.pop(0)
        return super().randint(a, b)

    def choice(self, seq):
        if self.choices:
            return self.choices.pop(0)
        return super().choice(seq)


class FakeGateway(SettlementGateway):
    def __init__(self, balances=None, fail_credit=False):
        self.balances = dict(balances or {})
        self.fail_credit = fail_credit
        self.debits = []
        self.credits = []

    def debit(self, user_id, amount, game_type, reference):
        if self.balances.get(user_id, 0) < amount:
            return False
        self.balances[user_id] -= amount
        self.debits.append((user_id, amount, game_type, reference))
        return True

    def credit(self, user_id, amount, game_type, reference):
        if self.fail_credit:
            raise ConnectionError("wallet unavailable")
        self.balances[user_id] = self.balances.get(user_id, 0) + amount
        self.credits.append((user_id, amount, game_type, reference))
