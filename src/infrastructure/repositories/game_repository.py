# src/infrastructure/repositories/game_repository.py

import logging
from decimal import Decimal

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from src.infrastructure.db.models import Game
from src.domain.exceptions import GameNotFoundError, InsufficientStockError

logger = logging.getLogger(__name__)


class GameRepository:
    """
    Game catalog access plus the inventory ledger.

    ``available_stock`` is only ever changed by a single conditional
    UPDATE so concurrent reservations serialize on the game row.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, game_id: int) -> Game | None:
        stmt = select(Game).where(Game.id == game_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_game(
        self,
        partner_id: int,
        name: str,
        stock: int,
        rental_price_per_day: Decimal,
        security_deposit: Decimal,
        platform: str | None = None,
        is_active: bool = True,
    ) -> Game:
        game = Game(
            partner_id=partner_id,
            name=name,
            platform=platform,
            stock=stock,
            available_stock=stock,
            rental_price_per_day=rental_price_per_day,
            security_deposit=security_deposit,
            is_active=is_active,
        )
        self.db.add(game)
        self.db.flush()
        return game

    def check_availability(self, game_id: int, quantity: int = 1) -> bool:
        """Advisory read; reserve_stock is the authoritative check."""
        stmt = select(Game.available_stock).where(Game.id == game_id)
        available = self.db.execute(stmt).scalar_one_or_none()

        if available is None:
            raise GameNotFoundError(game_id)

        return available >= quantity

    def reserve_stock(self, game_id: int, quantity: int = 1) -> None:
        """
        UPDATE games SET available_stock = available_stock - :q
        WHERE id = :id AND available_stock >= :q
        """
        stmt = (
            update(Game)
            .where(Game.id == game_id)
            .where(Game.available_stock >= quantity)
            .values(available_stock=Game.available_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self._expire_cached(game_id)

        if result.rowcount == 0:
            logger.warning(
                "Stock reservation rejected for game %s (quantity %s)",
                game_id,
                quantity,
            )
            raise InsufficientStockError(game_id, quantity)

    def release_stock(self, game_id: int, quantity: int = 1) -> None:
        """
        Increment available_stock, clamped so it never exceeds stock.
        """
        released = Game.available_stock + quantity
        stmt = (
            update(Game)
            .where(Game.id == game_id)
            .values(
                available_stock=case(
                    (released > Game.stock, Game.stock),
                    else_=released,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self._expire_cached(game_id)

        if result.rowcount == 0:
            raise GameNotFoundError(game_id)

    def _expire_cached(self, game_id: int) -> None:
        # The UPDATE bypasses the identity map.
        cached = self.db.identity_map.get(identity_key(Game, game_id))
        if cached is not None:
            self.db.expire(cached, ["available_stock"])
