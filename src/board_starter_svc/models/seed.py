import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from board_starter_svc.models.base import Base
from board_starter_svc.models.board import Board, Card, CardList

# Registers the account tables on Base.metadata
from board_starter_svc.models import user  # noqa: F401

LIST_COUNT = 3
CARDS_PER_LIST = 10


def prepare_schema(engine: Engine, recreate: bool) -> None:
    """
    Make sure every table exists, optionally dropping the old schema first.
    """
    if recreate:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def seed_sample_data(db: Session) -> bool:
    """
    Insert one demo board with a few lists of cards unless cards or lists already exist.

    Returns True when rows were inserted.
    """
    existing = db.execute(select(func.count(Card.id))).scalar_one()
    existing += db.execute(select(func.count(CardList.id))).scalar_one()
    if existing:
        return False

    board = Board(title="Test Board")
    for _ in range(LIST_COUNT):
        todo = CardList(summary="Todo items")
        for i in range(CARDS_PER_LIST):
            todo.cards.append(Card(title=f"Test Card {i}", text=f"Test Content {i}"))
        board.lists.append(todo)

    db.add(board)
    db.commit()
    logging.info("Database seeded with sample board data")
    return True


def initialize(engine: Engine, session_factory, recreate: bool, seed: bool = True) -> None:
    prepare_schema(engine, recreate)
    if not seed:
        return
    with session_factory() as db:
        seed_sample_data(db)
