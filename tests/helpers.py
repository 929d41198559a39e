from datetime import date, timedelta

from sqlalchemy import select

from src.infrastructure.db.models import Game


def available_stock(session, game_id: int) -> int:
    return session.execute(
        select(Game.available_stock).where(Game.id == game_id)
    ).scalar_one()


def days_from_today(days: int) -> date:
    return date.today() + timedelta(days=days)
