from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_engine.core import config

DATABASE_URL = config.DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    connect_args={'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {},
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_reservation_schema_checked = False


def ensure_reservation_schema(bind=None) -> None:
    """Add columns and indexes that older reservation tables are missing."""
    global _reservation_schema_checked

    bind = bind or engine
    if bind is engine and _reservation_schema_checked:
        return

    with _schema_lock:
        if bind is engine and _reservation_schema_checked:
            return

        inspector = inspect(bind)

        if 'reservations' not in inspector.get_table_names():
            if bind is engine:
                _reservation_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('reservations')}
        migration_steps = [
            ('assignee_id', 'ALTER TABLE reservations ADD COLUMN assignee_id INTEGER'),
            ('subject_id', 'ALTER TABLE reservations ADD COLUMN subject_id INTEGER'),
            ('location', 'ALTER TABLE reservations ADD COLUMN location VARCHAR'),
            ('description', 'ALTER TABLE reservations ADD COLUMN description VARCHAR'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_date_status ON reservations(date, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_assignee_date ON reservations(assignee_id, date)')
            )

        if bind is engine:
            _reservation_schema_checked = True


def init_db(bind=None) -> None:
    from booking_engine.models import reservation  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    ensure_reservation_schema(bind)
