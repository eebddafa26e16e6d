"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.business import Business, BusinessStatus
from db.models.crawl_job import CrawlJob, CrawlJobStatus, CrawlJobType
from db.models.fingerprint import Fingerprint
from db.models.team import PlanTier, SubscriptionStatus, Team
from db.models.wikidata_entity import WikidataEntity

__all__ = [
    "Business",
    "BusinessStatus",
    "CrawlJob",
    "CrawlJobStatus",
    "CrawlJobType",
    "Fingerprint",
    "PlanTier",
    "SubscriptionStatus",
    "Team",
    "WikidataEntity",
]
