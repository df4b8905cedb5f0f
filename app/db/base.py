from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Index names match the ones written by the Alembic migrations (op.f("ix_<table>_<column>"))
metadata = MetaData(naming_convention={"ix": "ix_%(column_0_label)s"})

Base = declarative_base(metadata=metadata)

# All models must import Base from this module; app.db.models registers them
