"""
tests/test_manual_publish_cli.py

Tests for the manual-publish command line.

Coverage
--------
- Argument parsing (subcommands, UUID validation)
- list / show / delete against manual storage
- publish and publish-ready through the orchestrator
"""

from __future__ import annotations

import uuid

import pytest

from cfp.entity_builder import EntityBuilder
from db.models.business import BusinessStatus
from db.repositories.business_repository import BusinessRepository
from scripts.manual_publish import build_parser, run

CRAWL_DATA = {"name": "Harbor Bistro", "location": {"city": "Seattle", "state": "WA"}}


def _invoke(argv: list[str], storage, orchestrator=None):
    return run(build_parser().parse_args(argv), storage=storage, orchestrator=orchestrator)


def _store(storage, business_id: uuid.UUID, *, can_publish: bool, name: str = "Harbor Bistro") -> None:
    draft = EntityBuilder().build(business_name=name, business_url="https://harbor-bistro.com", crawl_data=CRAWL_DATA)
    storage.store_entity_for_manual_publish(
        business_id=business_id,
        business_name=name,
        entity=draft.to_document(),
        can_publish=can_publish,
        notability={"is_notable": can_publish, "confidence": 0.75, "recommendation": "ok"},
    )


class TestParser:
    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_rejects_malformed_id(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["show", "not-a-uuid"])

    def test_parses_business_id(self) -> None:
        business_id = uuid.uuid4()
        args = build_parser().parse_args(["publish", str(business_id)])
        assert args.command == "publish"
        assert args.business_id == business_id


class TestStorageCommands:
    def test_list(self, storage) -> None:
        business_id = uuid.uuid4()
        _store(storage, business_id, can_publish=True)

        code, payload = _invoke(["list"], storage)

        assert code == 0
        assert [row["business_id"] for row in payload] == [str(business_id)]
        assert payload[0]["can_publish"] is True
        assert payload[0]["confidence"] == 0.75

    def test_show(self, storage) -> None:
        business_id = uuid.uuid4()
        _store(storage, business_id, can_publish=False)

        code, payload = _invoke(["show", str(business_id)], storage)

        assert code == 0
        assert payload["can_publish"] is False
        assert payload["entity"]["labels"]["en"]["value"] == "Harbor Bistro"

    def test_show_missing(self, storage) -> None:
        code, payload = _invoke(["show", str(uuid.uuid4())], storage)

        assert code == 1
        assert "error" in payload

    def test_delete(self, storage) -> None:
        business_id = uuid.uuid4()
        _store(storage, business_id, can_publish=True)

        assert _invoke(["delete", str(business_id)], storage)[0] == 0
        code, payload = _invoke(["delete", str(business_id)], storage)

        assert code == 1
        assert payload["deleted"] is False


class TestPublishCommands:
    def test_publish(self, db, make_business, orchestrator, storage) -> None:
        business = make_business(status=BusinessStatus.CRAWLED, crawl_data=CRAWL_DATA)
        _store(storage, business.id, can_publish=True)

        code, payload = _invoke(["publish", str(business.id)], storage, orchestrator)

        assert code == 0
        assert payload["published"] is True
        assert payload["status"] == BusinessStatus.PUBLISHED
        assert BusinessRepository(db).require_business(business.id).wikidata_qid == payload["qid"]

    def test_publish_without_stored_entry(self, make_business, orchestrator, storage) -> None:
        business = make_business(status=BusinessStatus.CRAWLED, crawl_data=CRAWL_DATA)

        code, payload = _invoke(["publish", str(business.id)], storage, orchestrator)

        assert code == 1
        assert payload["published"] is False
        assert payload["error"]

    def test_publish_ready_skips_unpublishable(self, make_business, orchestrator, storage) -> None:
        ready = make_business(status=BusinessStatus.CRAWLED, crawl_data=CRAWL_DATA)
        held_back = make_business(status=BusinessStatus.CRAWLED, crawl_data=CRAWL_DATA)
        _store(storage, ready.id, can_publish=True)
        _store(storage, held_back.id, can_publish=False)

        code, payload = _invoke(["publish-ready"], storage, orchestrator)

        assert code == 0
        assert payload["attempted"] == 1
        assert payload["failed"] == 0
        assert payload["results"][0]["business_id"] == str(ready.id)
