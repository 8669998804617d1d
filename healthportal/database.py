from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from healthportal.core import config

IMMEDIATE_TRANSACTION_OPTION = 'immediate_transaction'


def configure_sqlite_engine(target: Engine) -> Engine:
    """Let booking transactions take the SQLite write lock up front.

    pysqlite defers BEGIN until the first write, so two bookings could both
    read an empty calendar before either inserts. Connections opened with the
    immediate transaction option start with BEGIN IMMEDIATE instead, which makes
    the second booking wait for the first to commit and then read its row.
    Other connections keep the driver default.
    """

    @event.listens_for(target, 'begin')
    def _begin_immediate(connection):
        if connection.get_execution_options().get(IMMEDIATE_TRANSACTION_OPTION):
            connection.exec_driver_sql('BEGIN IMMEDIATE')

    return target


def build_engine(database_url: str) -> Engine:
    if database_url.startswith('sqlite'):
        built = create_engine(database_url, connect_args={'check_same_thread': False, 'timeout': 30})
        return configure_sqlite_engine(built)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_windows' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_windows')}

        with engine.begin() as connection:
            if 'is_active' not in existing_columns:
                connection.execute(
                    text('ALTER TABLE availability_windows ADD COLUMN is_active BOOLEAN DEFAULT TRUE')
                )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_windows_doctor_day '
                    'ON availability_windows(doctor_id, day_of_week)'
                )
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER NOT NULL DEFAULT 0'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_scheduled ON appointments(doctor_id, scheduled_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_scheduled ON appointments(patient_id, scheduled_at)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_active_start '
                    'ON appointments(doctor_id, scheduled_at) '
                    "WHERE status NOT IN ('cancelled', 'no-show')"
                )
            )

        _appointment_schema_checked = True
