"""
Mirror Node Transports

Sources of raw transactions (REST API or mirror database) and the entity
lookup used to bind watched addresses to account ids.
"""

from .types import SUCCESS, EntityLookup, RawTransaction, TransactionSource
from .rest_source import MirrorRestConfig, MirrorRestSource
from .db_source import MirrorDatabaseConfig, MirrorDatabaseSource

__all__ = [
    'SUCCESS',
    'EntityLookup',
    'RawTransaction',
    'TransactionSource',
    'MirrorRestConfig',
    'MirrorRestSource',
    'MirrorDatabaseConfig',
    'MirrorDatabaseSource',
]
