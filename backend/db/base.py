"""
SQLAlchemy declarative base.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def import_models():
    """Import all models so ``Base.metadata`` knows every table before create_all."""
    import models.account  # noqa: F401
    import models.payment  # noqa: F401
