"""Service clients."""

from lab_throughput.clients.base import BaseServiceClient
from lab_throughput.clients.case_store_client import CaseStoreClient

__all__ = [
    "BaseServiceClient",
    "CaseStoreClient",
]
