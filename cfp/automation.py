"""
cfp/automation.py

Tier-based automation policy. Pure functions of (tier, subscription status)
and the persisted business fields; nothing here performs I/O. A periodic
driver calls these decisions and submits orchestrator runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from cfp.entity_builder import EntityRichness
from db.base import as_utc
from db.models.business import Business, BusinessStatus
from db.models.team import PlanTier, SubscriptionStatus, Team


class Frequency:
    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


FREQUENCY_INTERVALS: dict[str, timedelta] = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=30),
}

INACTIVE_SUBSCRIPTIONS: frozenset[str] = frozenset(
    {
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.UNPAID,
        SubscriptionStatus.INCOMPLETE_EXPIRED,
    }
)

# Businesses in these states are skipped by the automatic crawl.
_CRAWL_BLOCKING_STATUSES: frozenset[str] = frozenset(
    {BusinessStatus.CRAWLING, BusinessStatus.GENERATING, BusinessStatus.ERROR}
)


@dataclass(frozen=True)
class AutomationConfig:
    crawl_frequency: str
    fingerprint_frequency: str
    auto_publish: bool
    entity_richness: str
    progressive_enrichment: bool = False

    @property
    def automated(self) -> bool:
        return self.crawl_frequency != Frequency.MANUAL


MANUAL_CONFIG = AutomationConfig(
    crawl_frequency=Frequency.MANUAL,
    fingerprint_frequency=Frequency.MANUAL,
    auto_publish=False,
    entity_richness=EntityRichness.BASIC,
)

_TIER_CONFIGS: dict[str, AutomationConfig] = {
    PlanTier.FREE: MANUAL_CONFIG,
    PlanTier.PRO: AutomationConfig(
        crawl_frequency=Frequency.WEEKLY,
        fingerprint_frequency=Frequency.WEEKLY,
        auto_publish=True,
        entity_richness=EntityRichness.ENHANCED,
    ),
    PlanTier.AGENCY: AutomationConfig(
        crawl_frequency=Frequency.WEEKLY,
        fingerprint_frequency=Frequency.WEEKLY,
        auto_publish=True,
        entity_richness=EntityRichness.COMPLETE,
        progressive_enrichment=True,
    ),
}


def get_automation_config(tier: str | None, subscription_status: str | None = None) -> AutomationConfig:
    """
    Config for a plan tier. Unknown tiers and lapsed subscriptions get the
    manual (free) config.
    """

    if subscription_status in INACTIVE_SUBSCRIPTIONS:
        return MANUAL_CONFIG
    return _TIER_CONFIGS.get((tier or "").strip().lower(), MANUAL_CONFIG)


def get_automation_config_for_team(team: Team | None) -> AutomationConfig:
    if team is None:
        return MANUAL_CONFIG
    return get_automation_config(team.plan_name, team.subscription_status)


def calculate_next_crawl_date(frequency: str, from_time: datetime) -> datetime | None:
    interval = FREQUENCY_INTERVALS.get(frequency)
    if interval is None:
        return None
    return as_utc(from_time) + interval


def should_auto_crawl(business: Business, team: Team | None, now: datetime) -> bool:
    if not business.automation_enabled:
        return False
    config = get_automation_config_for_team(team)
    interval = FREQUENCY_INTERVALS.get(config.crawl_frequency)
    if interval is None:
        return False
    if business.status in _CRAWL_BLOCKING_STATUSES:
        return False

    last_crawled_at = as_utc(business.last_crawled_at)
    if last_crawled_at is None:
        return True
    return as_utc(now) - last_crawled_at >= interval


def should_auto_publish(business: Business, team: Team | None) -> bool:
    if not business.automation_enabled:
        return False
    if not get_automation_config_for_team(team).auto_publish:
        return False

    if business.status == BusinessStatus.CRAWLED:
        return True
    if business.status == BusinessStatus.PUBLISHED:
        # Republish only when a crawl happened after the last automatic publish.
        last_crawled_at = as_utc(business.last_crawled_at)
        last_published_at = as_utc(business.last_auto_published_at)
        if last_crawled_at is None:
            return False
        return last_published_at is None or last_crawled_at > last_published_at
    return False
