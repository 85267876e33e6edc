from app.repositories.certificate_requests import (
    InMemoryCertificateRequestsRepository,
    PostgresCertificateRequestsRepository,
)
from app.repositories.identities import InMemoryIdentitiesRepository, PostgresIdentitiesRepository

__all__ = [
    "InMemoryCertificateRequestsRepository",
    "PostgresCertificateRequestsRepository",
    "InMemoryIdentitiesRepository",
    "PostgresIdentitiesRepository",
]
