"""Declarative bases for the server MFA store and the on-device store."""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Deterministic constraint names so schema diffs stay stable across backends.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Server-side MFA tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class LocalBase(DeclarativeBase):
    """Tables in the on-device offline database. Never shares metadata with ``Base``."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
