"""
Generic filtered-query dispatch

Parses filter expressions, builds parameterized SQL and executes entity
operations behind a uniform result envelope.
"""

from .builder import QueryBuilder
from .dispatcher import Dispatcher
from .filters import FilterClause, parse_filters
from .hydrator import Hydrator
from .repository import EntityRepository

__all__ = [
    'QueryBuilder',
    'Dispatcher',
    'FilterClause',
    'parse_filters',
    'Hydrator',
    'EntityRepository',
]
