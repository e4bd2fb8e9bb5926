# app/db/base.py
import uuid

from sqlalchemy import Column, String
from sqlalchemy.orm import DeclarativeBase


def new_id() -> str:
    """Primary keys are minted when the entity is built, not by the database."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """All engine tables (stock, demand records, encounters, billing) inherit from this."""
    pass


class IdMixin:
    """UUID string primary key, assigned in the constructor."""

    id = Column(String(36), primary_key=True, default=new_id)

    def __init__(self, **kwargs):
        kwargs.setdefault("id", new_id())
        super().__init__(**kwargs)
