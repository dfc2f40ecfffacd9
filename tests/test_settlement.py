import os
import tempfile
import threading
import unittest

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from games_server import models
from games_server.database import Base
from games_server.settlement import LedgerSettlementGateway


class TestLedgerSettlementGateway(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.engine = create_engine(
            f"sqlite:///{os.path.join(tmp.name, 'wallet.db')}",
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )
        self.addCleanup(self.engine.dispose)
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.gateway = LedgerSettlementGateway(self.Session)

        db = self.Session()
        user = models.User(name="alice", pin="1234", balance=1000)
        db.add(user)
        db.commit()
        self.user_id = user.id
        db.close()

    def balance(self):
        db = self.Session()
        try:
            return db.query(models.User).filter(models.User.id == self.user_id).one().balance
        finally:
            db.close()

    def test_debit_and_credit_write_ledger_rows(self):
        self.assertTrue(self.gateway.debit(self.user_id, 400, "dice", "s1"))
        self.gateway.credit(self.user_id, 2000, "dice", "s1")
        self.assertEqual(self.balance(), 2600)

        db = self.Session()
        try:
            rows = db.query(models.Transaction).order_by(models.Transaction.id).all()
            self.assertEqual([r.amount for r in rows], [-400, 2000])
            self.assertEqual((rows[0].before_balance, rows[0].after_balance), (1000, 600))
            self.assertEqual((rows[1].before_balance, rows[1].after_balance), (600, 2600))
        finally:
            db.close()

    def test_debit_declined_when_balance_is_short(self):
        self.assertFalse(self.gateway.debit(self.user_id, 1001, "dice", "s1"))
        self.assertEqual(self.balance(), 1000)

    def test_credit_unknown_user(self):
        with self.assertRaises(LookupError):
            self.gateway.credit(9999, 100, "dice", "s1")

    def test_debit_committed_during_credit_is_kept(self):
        squeezed = []

        def debit_before_balance_write(conn, cursor, statement, parameters, context, executemany):
            if squeezed or not statement.startswith("UPDATE users"):
                return
            squeezed.append(statement)
            other = threading.Thread(
                target=self.gateway.debit, args=(self.user_id, 500, "dice", "other")
            )
            other.start()
            other.join()

        event.listen(self.engine, "before_cursor_execute", debit_before_balance_write)
        self.addCleanup(
            event.remove, self.engine, "before_cursor_execute", debit_before_balance_write
        )
        self.gateway.credit(self.user_id, 5000, "treasure", "s1")

        self.assertEqual(len(squeezed), 1)
        self.assertEqual(self.balance(), 1000 - 500 + 5000)
        db = self.Session()
        try:
            win = db.query(models.Transaction).filter(models.Transaction.amount == 5000).one()
            self.assertEqual((win.before_balance, win.after_balance), (500, 5500))
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
