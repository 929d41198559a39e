from decimal import Decimal

from sqlalchemy import select

from src.infrastructure.db.models import Base, Game
from src.infrastructure.db.session import SessionLocal, engine


DEMO_PARTNER_ID = 1


def seed_games(db) -> None:
    game_defs = [
        {
            "name": "The Legend of Zelda: Tears of the Kingdom",
            "platform": "Nintendo Switch",
            "stock": 3,
            "rental_price_per_day": Decimal("4.50"),
            "security_deposit": Decimal("20.00"),
        },
        {
            "name": "Elden Ring",
            "platform": "PlayStation 5",
            "stock": 2,
            "rental_price_per_day": Decimal("5.00"),
            "security_deposit": Decimal("25.00"),
        },
        {
            "name": "Forza Horizon 5",
            "platform": "Xbox Series X",
            "stock": 1,
            "rental_price_per_day": Decimal("3.75"),
            "security_deposit": Decimal("15.00"),
        },
    ]

    for item in game_defs:
        existing = db.execute(
            select(Game).where(Game.name == item["name"])
        ).scalar_one_or_none()
        if existing:
            # Reset the ledger so repeated seeding starts from a clean slate.
            existing.platform = item["platform"]
            existing.stock = item["stock"]
            existing.available_stock = item["stock"]
            existing.rental_price_per_day = item["rental_price_per_day"]
            existing.security_deposit = item["security_deposit"]
            existing.is_active = True
            continue

        db.add(
            Game(
                partner_id=DEMO_PARTNER_ID,
                name=item["name"],
                platform=item["platform"],
                stock=item["stock"],
                available_stock=item["stock"],
                rental_price_per_day=item["rental_price_per_day"],
                security_deposit=item["security_deposit"],
                is_active=True,
            )
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_games(db)
        db.commit()
        print("Seed complete: Zelda, Elden Ring, Forza Horizon 5 added for partner 1.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
