"""Reset the development database and seed it with sample raffles."""

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from fairdraw.db.engine import make_engine
from fairdraw.models import AuditLog, Base, Entry
from fairdraw.validation import RaffleConfig
from fairdraw.workflows import create_raffle, transition_raffle

WALLETS = [
    "0x1111111111111111111111111111111111111111",
    "0x2222222222222222222222222222222222222222",
    "0x3333333333333333333333333333333333333333",
    "0x4444444444444444444444444444444444444444",
]


def _fake_tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def main() -> None:
    """Seed the development database with sample data."""
    engine = make_engine()

    # SQLite cannot drop tables with live foreign keys in arbitrary order.
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        # Ended raffle ready to draw.
        ended = create_raffle(
            session,
            RaffleConfig(
                raffle_type="daily",
                title="Daily Draw (ended)",
                entry_price=1_000_000,
                start_time=now - timedelta(days=1),
                end_time=now - timedelta(minutes=5),
                winner_count=3,
                seed_mode="crypto",
            ),
            actor="seed_dev",
        )
        transition_raffle(session, ended.id, "active", actor="seed_dev")

        # Entries are inserted directly; the chain is not consulted here.
        tx = 1
        for wallet, units in zip(WALLETS, (5, 3, 2, 1)):
            session.add(
                Entry(
                    raffle=ended,
                    wallet_address=wallet,
                    units=units,
                    amount_paid=units * ended.entry_price,
                    transaction_hash=_fake_tx_hash(tx),
                    created_at=now - timedelta(hours=6 - tx),
                )
            )
            ended.total_entries += units
            ended.prize_pool += units * ended.entry_price
            ended.total_participants += 1
            tx += 1

        # Running raffle accepting entries.
        running = create_raffle(
            session,
            RaffleConfig(
                raffle_type="weekly",
                title="Weekly Mega Pot",
                description="Five prizes split 40/25/20/10/5.",
                entry_price=5_000_000,
                start_time=now - timedelta(hours=2),
                end_time=now + timedelta(days=6),
                winner_count=5,
                max_entries_per_user=100,
            ),
            actor="seed_dev",
        )
        transition_raffle(session, running.id, "active", actor="seed_dev")

        # Scheduled raffle with an explicit tier table.
        create_raffle(
            session,
            RaffleConfig(
                raffle_type="flash",
                title="Flash Raffle",
                entry_price=2_000_000,
                start_time=now + timedelta(days=1),
                end_time=now + timedelta(days=1, hours=2),
                winner_count=2,
                prize_tiers=[
                    {"name": "Grand", "percentage": 70, "winner_count": 1},
                    {"name": "Runner-up", "percentage": 30, "winner_count": 1},
                ],
                allow_multiple_wins=True,
            ),
            actor="seed_dev",
        )
        session.flush()
        audit_rows = len(AuditLog.list_for_raffle(session, ended.id))

    print(
        f"Seeded raffles {ended.id} (ended, {ended.total_entries} tickets), "
        f"{running.id} (active) and a scheduled flash raffle; {audit_rows} audit rows on #{ended.id}"
    )


if __name__ == "__main__":
    main()
