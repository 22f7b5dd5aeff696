from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from board_starter_svc.models.base import Base


class Board(Base):
    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)

    lists = relationship("CardList", back_populates="board", cascade="all, delete-orphan",
                         order_by="CardList.id")


class CardList(Base):
    __tablename__ = "card_lists"

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id"), index=True, nullable=False)
    summary = Column(String(200), nullable=False)

    board = relationship("Board", back_populates="lists")
    cards = relationship("Card", back_populates="card_list", cascade="all, delete-orphan",
                         order_by="Card.id")


class Card(Base):
    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, index=True)
    card_list_id = Column(Integer, ForeignKey("card_lists.id"), index=True, nullable=False)
    title = Column(String(200), nullable=False)
    text = Column(Text, nullable=False, default="")

    card_list = relationship("CardList", back_populates="cards")
