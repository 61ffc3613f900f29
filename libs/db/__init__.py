"""Database utilities for the link tracker."""

from . import models
from .database import Database, get_database
from .repositories import ChatRepo, ContentDetailsRepo, LinkRepo

__all__ = ["models", "Database", "get_database", "LinkRepo", "ChatRepo", "ContentDetailsRepo"]
