import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


class SettlementGateway(ABC):
    """Wallet side of a game: take the bet, pay out the win."""

    @abstractmethod
    def debit(self, user_id, amount: int, game_type: str, reference: str) -> bool:
        """Return False when the balance cannot cover ``amount``."""

    @abstractmethod
    def credit(self, user_id, amount: int, game_type: str, reference: str) -> None:
        ...


def apply_balance_change(
    db: Session,
    user: models.User,
    delta: int,
    description: str,
    game_type: str | None = None,
    result_type: str = "game",
) -> models.Transaction:
    before = user.balance
    user.balance += delta
    user.updated_at = datetime.utcnow()
    tx = models.Transaction(
        user_id=user.id,
        type=result_type,
        game_type=game_type,
        amount=delta,
        before_balance=before,
        after_balance=user.balance,
        description=description,
    )
    db.add(tx)
    db.add(user)
    return tx


class LedgerSettlementGateway(SettlementGateway):
    """Settles against ``users.balance`` and records every move in ``transactions``."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def debit(self, user_id, amount: int, game_type: str, reference: str) -> bool:
        db = self.session_factory()
        try:
            # Conditional update so two concurrent bets cannot overdraw the wallet.
            updated = (
                db.query(models.User)
                .filter(models.User.id == int(user_id), models.User.balance >= amount)
                .update(
                    {
                        models.User.balance: models.User.balance - amount,
                        models.User.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return False
            user = db.query(models.User).filter(models.User.id == int(user_id)).one()
            db.add(
                models.Transaction(
                    user_id=user.id,
                    type="game",
                    game_type=game_type,
                    amount=-amount,
                    before_balance=user.balance + amount,
                    after_balance=user.balance,
                    description=f"game:{game_type}:bet:{reference}",
                )
            )
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def credit(self, user_id, amount: int, game_type: str, reference: str) -> None:
        db = self.session_factory()
        try:
            # Relative update; a concurrent debit between read and write must not be lost.
            updated = (
                db.query(models.User)
                .filter(models.User.id == int(user_id))
                .update(
                    {
                        models.User.balance: models.User.balance + amount,
                        models.User.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise LookupError(f"User {user_id} not found")
            user = db.query(models.User).filter(models.User.id == int(user_id)).one()
            db.add(
                models.Transaction(
                    user_id=user.id,
                    type="game",
                    game_type=game_type,
                    amount=amount,
                    before_balance=user.balance - amount,
                    after_balance=user.balance,
                    description=f"game:{game_type}:win:{reference}",
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
