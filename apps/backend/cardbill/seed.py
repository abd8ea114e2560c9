from __future__ import annotations

from sqlalchemy.orm import Session

from .core.database import SessionLocal
from .models import Category, CategoryType, User
from .services.invoice_service import InvoiceService

DEFAULT_CATEGORIES = (
    ("Salary", CategoryType.INCOME),
    ("Groceries", CategoryType.EXPENSE),
    ("Restaurants", CategoryType.EXPENSE),
    ("Transport", CategoryType.EXPENSE),
    ("Uncategorized", CategoryType.EXPENSE),
)


def seed() -> None:
    db: Session = SessionLocal()
    try:
        # demo user
        user = db.query(User).filter_by(email="demo@example.com").first()
        if not user:
            user = User(email="demo@example.com", name="Demo", is_active=True)
            db.add(user)
            db.flush()

        for name, kind in DEFAULT_CATEGORIES:
            exists = db.query(Category).filter_by(user_id=user.id, name=name).first()
            if not exists:
                db.add(Category(user_id=user.id, name=name, type=kind))
        db.commit()

        InvoiceService(db).create_default_invoices(user.id)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
