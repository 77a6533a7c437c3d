"""
Declarative base shared by every model.

Import this module before any model module to avoid circular imports.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
