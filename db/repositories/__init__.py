"""
Repository layer exports.
"""

from db.repositories.business_repository import BusinessRepository, derive_business_name
from db.repositories.crawl_job_repository import CrawlJobRepository
from db.repositories.errors import (
    BusinessNotFoundError,
    ManualStorageError,
    RepositoryError,
    StatusConflictError,
)
from db.repositories.fingerprint_repository import FingerprintRepository
from db.repositories.wikidata_entity_repository import WikidataEntityRepository

__all__ = [
    "BusinessNotFoundError",
    "BusinessRepository",
    "CrawlJobRepository",
    "FingerprintRepository",
    "ManualStorageError",
    "RepositoryError",
    "StatusConflictError",
    "WikidataEntityRepository",
    "derive_business_name",
]
