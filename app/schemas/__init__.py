"""
app/schemas package marker.
"""

from app.schemas.cfp import (
    BusinessStatusResponse,
    CFPRunAcceptedResponse,
    FingerprintSummaryResponse,
    NotabilitySummaryResponse,
    StoredManualEntityListResponse,
    StoredManualEntityResponse,
)
from app.schemas.crawl_data import CrawlData, CrawlLocation, LLMEnhanced, SocialLinks

__all__ = [
    "BusinessStatusResponse",
    "CFPRunAcceptedResponse",
    "CrawlData",
    "CrawlLocation",
    "FingerprintSummaryResponse",
    "LLMEnhanced",
    "NotabilitySummaryResponse",
    "SocialLinks",
    "StoredManualEntityListResponse",
    "StoredManualEntityResponse",
]
