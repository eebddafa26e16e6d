"""
cfp/entity_builder.py

Assembles a knowledge-graph entity (labels, descriptions, typed claims)
from crawl data, the latest fingerprint and the notability references.

The full entity is always built, whether or not it will be auto-published,
so it can be stored for manual review.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from cfp.notability import NotabilityAssessment


class EntityRichness:
    BASIC = "basic"
    ENHANCED = "enhanced"
    COMPLETE = "complete"


ENRICHMENT_LEVELS: dict[str, int] = {
    EntityRichness.BASIC: 1,
    EntityRichness.ENHANCED: 2,
    EntityRichness.COMPLETE: 3,
}

INSTANCE_OF = "P31"
BUSINESS_QID = "Q4830453"
REFERENCE_URL = "P854"
MAX_DESCRIPTION_LENGTH = 250
MIN_CLAIMS = 3

# property id -> minimum richness that includes it
_PROPERTY_RICHNESS: dict[str, str] = {
    "P31": EntityRichness.BASIC,
    "P856": EntityRichness.BASIC,
    "P1448": EntityRichness.BASIC,
    "P1329": EntityRichness.ENHANCED,
    "P969": EntityRichness.ENHANCED,
    "P625": EntityRichness.ENHANCED,
    "P571": EntityRichness.ENHANCED,
    "P968": EntityRichness.COMPLETE,
    "P2013": EntityRichness.COMPLETE,
    "P2003": EntityRichness.COMPLETE,
    "P4264": EntityRichness.COMPLETE,
    "P2002": EntityRichness.COMPLETE,
}

_YEAR = re.compile(r"\b(1[5-9]\d{2}|20\d{2})\b")


def _handle(url: str | None) -> str | None:
    """Last path segment of a social profile URL, or the value if it is not a URL."""
    if not url:
        return None
    if "://" not in url:
        return url.lstrip("@").strip() or None
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return segments[-1].lstrip("@") if segments else None


def _snak(prop: str, value: Any, value_type: str) -> dict[str, Any]:
    return {
        "snaktype": "value",
        "property": prop,
        "datavalue": {"value": value, "type": value_type},
    }


@dataclass(frozen=True)
class EntityDraft:
    label: str
    description: str
    claims: dict[str, list[dict[str, Any]]]
    enrichment_level: int
    reference_urls: list[str] = field(default_factory=list)
    provenance: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Body sent to the publisher."""
        return {
            "labels": {"en": {"language": "en", "value": self.label}},
            "descriptions": {"en": {"language": "en", "value": self.description}},
            "claims": self.claims,
        }

    def to_document(self) -> dict[str, Any]:
        """Body kept in manual storage: publisher payload plus provenance."""
        return {
            **self.to_payload(),
            "enrichment_level": self.enrichment_level,
            "reference_urls": self.reference_urls,
            "provenance": self.provenance,
        }

    def missing_requirements(self) -> list[str]:
        problems: list[str] = []
        if not self.label:
            problems.append("label is empty")
        if INSTANCE_OF not in self.claims:
            problems.append("instance-of (P31) claim is missing")
        if len(self.claims) < MIN_CLAIMS:
            problems.append(f"at least {MIN_CLAIMS} claims are required (found {len(self.claims)})")
        if not self.reference_urls:
            problems.append("no reference URLs")
        return problems


class EntityBuilder:
    """Builds EntityDraft objects at a given richness."""

    def build(
        self,
        *,
        business_name: str,
        business_url: str,
        crawl_data: dict[str, Any] | None,
        notability: NotabilityAssessment | None = None,
        richness: str = EntityRichness.BASIC,
        fingerprint_id: uuid.UUID | None = None,
        visibility_score: int | None = None,
    ) -> EntityDraft:
        data = crawl_data or {}
        location = data.get("location") or {}
        social = data.get("social_links") or {}
        level = ENRICHMENT_LEVELS.get(richness, 1)

        reference_urls = [business_url]
        if notability is not None:
            reference_urls.extend(
                reference.url for reference in notability.top_references if reference.url != business_url
            )

        label = (data.get("name") or business_name).strip()
        candidates: list[tuple[str, dict[str, Any] | None]] = [
            ("P31", _snak("P31", {"entity-type": "item", "id": BUSINESS_QID}, "wikibase-entityid")),
            ("P856", _snak("P856", business_url, "string")),
            ("P1448", _snak("P1448", {"text": label, "language": "en"}, "monolingualtext")),
            ("P1329", _snak("P1329", data["phone"], "string") if data.get("phone") else None),
            ("P969", self._address_snak(data, location)),
            ("P625", self._coordinate_snak(location)),
            ("P571", self._inception_snak(data.get("founded"))),
            ("P968", _snak("P968", f"mailto:{data['email']}", "string") if data.get("email") else None),
            ("P2013", self._handle_snak("P2013", social.get("facebook"))),
            ("P2003", self._handle_snak("P2003", social.get("instagram"))),
            ("P4264", self._handle_snak("P4264", social.get("linkedin"))),
            ("P2002", self._handle_snak("P2002", social.get("twitter"))),
        ]

        claims: dict[str, list[dict[str, Any]]] = {}
        for prop, snak in candidates:
            if snak is None or ENRICHMENT_LEVELS[_PROPERTY_RICHNESS[prop]] > level:
                continue
            claims[prop] = [self._statement(snak, reference_urls)]

        return EntityDraft(
            label=label,
            description=self._description(data, location),
            claims=claims,
            enrichment_level=level,
            reference_urls=reference_urls,
            provenance={
                "fingerprint_id": str(fingerprint_id) if fingerprint_id else None,
                "visibility_score": visibility_score,
                "notability_confidence": notability.confidence if notability else None,
                "richness": richness,
            },
        )

    @staticmethod
    def _statement(snak: dict[str, Any], reference_urls: list[str]) -> dict[str, Any]:
        return {
            "mainsnak": snak,
            "type": "statement",
            "rank": "normal",
            "references": [
                {"snaks": {REFERENCE_URL: [_snak(REFERENCE_URL, url, "string")]}}
                for url in reference_urls
            ],
        }

    @staticmethod
    def _description(data: dict[str, Any], location: dict[str, Any]) -> str:
        description = (data.get("description") or "").strip()
        if not description:
            place = ", ".join(part for part in (location.get("city"), location.get("state")) if part)
            description = f"Local business in {place}" if place else "Business"
        if len(description) > MAX_DESCRIPTION_LENGTH:
            description = description[: MAX_DESCRIPTION_LENGTH - 3].rstrip() + "..."
        return description

    @staticmethod
    def _address_snak(data: dict[str, Any], location: dict[str, Any]) -> dict[str, Any] | None:
        street = data.get("address") or location.get("address")
        if not street:
            return None
        parts = [street, location.get("city"), location.get("state"), location.get("postal_code")]
        return _snak("P969", ", ".join(part for part in parts if part), "string")

    @staticmethod
    def _coordinate_snak(location: dict[str, Any]) -> dict[str, Any] | None:
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None:
            return None
        return _snak(
            "P625",
            {
                "latitude": lat,
                "longitude": lng,
                "precision": 0.0001,
                "globe": "http://www.wikidata.org/entity/Q2",
            },
            "globecoordinate",
        )

    @staticmethod
    def _inception_snak(founded: str | None) -> dict[str, Any] | None:
        match = _YEAR.search(founded or "")
        if not match:
            return None
        return _snak(
            "P571",
            {
                "time": f"+{match.group(1)}-00-00T00:00:00Z",
                "timezone": 0,
                "before": 0,
                "after": 0,
                "precision": 9,
                "calendarmodel": "http://www.wikidata.org/entity/Q1985727",
            },
            "time",
        )

    @staticmethod
    def _handle_snak(prop: str, url: str | None) -> dict[str, Any] | None:
        handle = _handle(url)
        return _snak(prop, handle, "string") if handle else None
