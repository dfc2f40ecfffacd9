from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, String

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    pin = Column(String, nullable=False)
    balance = Column(BigInteger, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    type = Column(String, nullable=False)  # charge | deduct | game
    game_type = Column(String, nullable=True)
    amount = Column(BigInteger, nullable=False)
    before_balance = Column(BigInteger, nullable=False)
    after_balance = Column(BigInteger, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GameResult(Base):
    __tablename__ = "game_results"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=True)
    session_id = Column(String, unique=True, index=True, nullable=False)
    game_type = Column(String, index=True, nullable=False)
    room_id = Column(String, nullable=True)
    bet_amount = Column(BigInteger, nullable=False)
    result = Column(String, nullable=False)  # win | lose
    payout_multiplier = Column(Float, nullable=False)
    win_amount = Column(BigInteger, nullable=False)
    detail = Column(String, nullable=True)  # JSON string
    created_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GameLog(Base):
    __tablename__ = "game_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True)
    user_name = Column(String, nullable=True)
    game_type = Column(String, nullable=True)
    session_id = Column(String, index=True, nullable=True)
    action = Column(String, nullable=False)
    detail = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class JackpotPoolRow(Base):
    __tablename__ = "jackpot_pools"

    game_type = Column(String, primary_key=True)
    amount = Column(BigInteger, nullable=False)
    floor = Column(BigInteger, nullable=False)
    last_winner = Column(String, nullable=True)
    last_win_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
