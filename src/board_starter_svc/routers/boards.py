from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from board_starter_svc.models.base import get_db
from board_starter_svc.models.board import Board, CardList

router = APIRouter(prefix="/api/boards", tags=["boards"])


class CardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    text: str


class CardListOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    summary: str
    cards: List[CardOut]


class BoardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    lists: List[CardListOut]


class BoardSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str


@router.get("", response_model=List[BoardSummary])
def list_boards(db: Session = Depends(get_db)):
    return db.execute(select(Board).order_by(Board.id)).scalars().all()


@router.get("/{board_id}", response_model=BoardOut)
def get_board(board_id: int, db: Session = Depends(get_db)):
    stmt = (
        select(Board)
        .filter(Board.id == board_id)
        .options(selectinload(Board.lists).selectinload(CardList.cards))
    )
    board = db.execute(stmt).scalars().first()
    if board is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
    return board
