"""Service layer for order aggregation and tagging."""

from .credentials import EnvCredentialResolver, StaticCredentialResolver
from .pagination import OrderAggregator
from .upstream import UpstreamClient
from .workflow import OrderTagWorkflow

__all__ = [
    "EnvCredentialResolver",
    "OrderAggregator",
    "OrderTagWorkflow",
    "StaticCredentialResolver",
    "UpstreamClient",
]
