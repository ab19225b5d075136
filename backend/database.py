import logging
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, declarative_base
from config import settings

log = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

DEFAULT_COUNTRIES = [
    ("UK", "United Kingdom", "GBP"),
    ("IN", "India", "INR"),
]

DEFAULT_CATEGORIES = [
    ("Groceries", "Supermarkets and food shopping"),
    ("Dining", "Restaurants, cafes and takeaways"),
    ("Transport", "Public transport, fuel, taxis"),
    ("Utilities", "Energy, water, phone and internet"),
    ("Rent", "Rent and mortgage payments"),
    ("Salary", "Employment income"),
    ("Shopping", "General retail"),
    ("Entertainment", "Leisure and events"),
    ("Healthcare", "Pharmacy, doctors and insurance"),
    ("Subscriptions", "Recurring digital services"),
    ("Travel", "Flights, hotels and holidays"),
    ("Transfers", "Transfers between accounts"),
    ("Other", "Anything uncategorised"),
]


def get_db():
    """Dependency for FastAPI endpoints."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _auto_migrate(bind=None):
    """Compare SQLAlchemy models against the live DB schema and
    ALTER TABLE to add any missing columns.  Forward-only: columns are
    never dropped or retyped.
    """
    bind = bind or engine
    inspector = inspect(bind)
    existing_tables = inspector.get_table_names()

    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue  # create_all() will handle brand-new tables

        db_columns = {col["name"] for col in inspector.get_columns(table.name)}
        missing = {col.name for col in table.columns} - db_columns
        if not missing:
            continue

        log.warning("Table '%s' is missing columns: %s, running ALTER TABLE",
                    table.name, missing)

        with bind.begin() as conn:
            for col_name in missing:
                col = table.c[col_name]
                col_type = col.type.compile(bind.dialect)
                default_clause = ""
                if col.default is not None and not callable(col.default.arg):
                    default_val = col.default.arg
                    if isinstance(default_val, bool):
                        default_clause = f" DEFAULT {int(default_val)}"
                    elif isinstance(default_val, str):
                        default_clause = f" DEFAULT '{default_val}'"
                    elif isinstance(default_val, (int, float)):
                        default_clause = f" DEFAULT {default_val}"
                stmt = f"ALTER TABLE {table.name} ADD COLUMN {col_name} {col_type}{default_clause}"
                log.info("  ➜ %s", stmt)
                conn.execute(text(stmt))


def seed_reference_data(db):
    """Insert the supported countries and system categories if absent."""
    from models import Country, TransactionCategory

    known_countries = {c.code for c in db.query(Country).all()}
    for code, name, currency in DEFAULT_COUNTRIES:
        if code not in known_countries:
            db.add(Country(code=code, name=name, currency_code=currency))

    known_categories = {c.name.lower() for c in db.query(TransactionCategory).all()}
    for name, description in DEFAULT_CATEGORIES:
        if name.lower() not in known_categories:
            db.add(TransactionCategory(name=name, description=description, system_defined=True))
    db.commit()


def init_db():
    """Create all tables, migrate any missing columns and seed reference rows."""
    import models  # noqa: F401  ensure models are registered with Base
    Base.metadata.create_all(bind=engine)
    _auto_migrate()
    db = SessionLocal()
    try:
        seed_reference_data(db)
    finally:
        db.close()
