from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from cardbill.core.database import get_db
from cardbill import models


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Authentication lives outside this service. Returns the first user and
    creates a demo one if none exists. Tests override this dependency to
    simulate different users.
    """
    user = db.query(models.User).order_by(models.User.id).first()
    if not user:
        user = models.User(email="demo@example.com", is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user
