from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Registers the table on Base.metadata before init_db() runs create_all.
from fora.models.job import JobRecord  # noqa: E402, F401
