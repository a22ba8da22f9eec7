"""SQLAlchemy engine, session factory and category catalog seeding."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Canonical catalog, in display order
DEFAULT_CATEGORIES = [
    ("Food & Dining", "🍽️", "#f59e0b"),
    ("Groceries", "🛒", "#10b981"),
    ("Transportation", "🚗", "#8b5cf6"),
    ("Shopping", "🛍️", "#f97316"),
    ("Bills & Utilities", "💡", "#6366f1"),
    ("Rent & Housing", "🏠", "#3b82f6"),
    ("Entertainment", "🎮", "#a855f7"),
    ("Health & Fitness", "🏥", "#ef4444"),
    ("Travel", "✈️", "#0ea5e9"),
    ("Education", "📚", "#14b8a6"),
    ("Personal Care", "💇", "#ec4899"),
    ("Investments", "📈", "#22c55e"),
    ("Transfers", "↔️", "#64748b"),
    ("Salary & Income", "💰", "#16a34a"),
    ("Other", "📝", "#94a3b8"),
]


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_categories(db) -> int:
    """Insert the default catalog if the table is empty. Returns rows added."""
    from models import Category

    if db.query(Category).count() > 0:
        return 0

    db.add_all([
        Category(name=name, icon=icon, color=color, sort_order=position)
        for position, (name, icon, color) in enumerate(DEFAULT_CATEGORIES)
    ])
    db.commit()
    return len(DEFAULT_CATEGORIES)


def init_db(bind=None):
    """Create all tables and seed the category catalog."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    target = bind or engine
    Base.metadata.create_all(bind=target)

    db = sessionmaker(bind=target)()
    try:
        seed_categories(db)
    finally:
        db.close()
