from .base import BaseAuthProvider, BaseChangeFeed, BaseDatastore, Gateway, Subscription
from .factory import create_gateway
from .memory import InMemoryDatastore, StaticAuthProvider

__all__ = [
    'BaseAuthProvider',
    'BaseChangeFeed',
    'BaseDatastore',
    'Gateway',
    'Subscription',
    'create_gateway',
    'InMemoryDatastore',
    'StaticAuthProvider',
]
