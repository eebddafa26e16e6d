"""
Review and publish entities held in manual-publish storage from CLI.

    python -m scripts.manual_publish list
    python -m scripts.manual_publish show <business_id>
    python -m scripts.manual_publish publish <business_id>
    python -m scripts.manual_publish publish-ready
    python -m scripts.manual_publish delete <business_id>

The publish target follows PUBLISH_TO_PRODUCTION.
"""

from __future__ import annotations

import argparse
import json
import logging
import uuid
from collections.abc import Sequence
from typing import Any

from app.config import get_publish_settings
from app.services.cfp_service import get_cfp_orchestrator, get_manual_publish_storage
from app.storage.manual_publish import ManualPublishStorage, StoredManualEntity
from cfp.errors import PipelineError
from cfp.orchestrator import CFPOrchestrator
from db.repositories.errors import RepositoryError

logger = logging.getLogger(__name__)


def _summary(entry: StoredManualEntity) -> dict[str, Any]:
    notability = entry.notability or {}
    return {
        "business_id": str(entry.business_id),
        "business_name": entry.business_name,
        "can_publish": entry.can_publish,
        "is_notable": notability.get("is_notable"),
        "confidence": notability.get("confidence"),
        "stored_at": entry.stored_at.isoformat(),
        "published_qid": entry.published_qid,
    }


def _publish_one(orchestrator: CFPOrchestrator, business_id: uuid.UUID) -> dict[str, Any]:
    try:
        outcome = orchestrator.publish_stored(business_id)
    except (PipelineError, RepositoryError) as exc:
        return {"business_id": str(business_id), "published": False, "error": str(exc)}
    return {
        "business_id": str(business_id),
        "published": outcome.published,
        "qid": outcome.qid,
        "status": outcome.final_status,
        "error": outcome.error,
    }


def run(
    args: argparse.Namespace,
    *,
    storage: ManualPublishStorage,
    orchestrator: CFPOrchestrator | None = None,
) -> tuple[int, Any]:
    """Execute one command. Returns (exit code, JSON-serialisable payload)."""

    if args.command == "list":
        return 0, [_summary(entry) for entry in storage.list_stored_entities()]

    if args.command == "show":
        entry = storage.load_stored_entity(args.business_id)
        if entry is None:
            return 1, {"error": f"No stored entity for business {args.business_id}"}
        return 0, {**entry.metadata(), "entity": entry.entity}

    if args.command == "delete":
        removed = storage.delete_stored_entity(args.business_id)
        return (0 if removed else 1), {"business_id": str(args.business_id), "deleted": removed}

    orchestrator = orchestrator or get_cfp_orchestrator()
    settings = get_publish_settings()
    logger.info("Manual publish target=%s production=%s", settings.target, settings.is_production)

    if args.command == "publish":
        result = _publish_one(orchestrator, args.business_id)
        return (0 if result["published"] else 1), result

    if args.command == "publish-ready":
        ready = [entry for entry in storage.list_stored_entities() if entry.can_publish and not entry.published_qid]
        results = [_publish_one(orchestrator, entry.business_id) for entry in ready]
        failed = sum(1 for result in results if not result["published"])
        return (0 if failed == 0 else 1), {"attempted": len(results), "failed": failed, "results": results}

    return 2, {"error": f"Unknown command {args.command}"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage entities stored for manual publishing.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List stored entities, newest first.")
    for name, help_text in (
        ("show", "Print one stored entity with its metadata."),
        ("publish", "Publish one stored entity marked publishable."),
        ("delete", "Delete one stored entity."),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("business_id", type=uuid.UUID)
    subparsers.add_parser("publish-ready", help="Publish every publishable entity not yet published.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = build_parser().parse_args(argv)
    code, payload = run(args, storage=get_manual_publish_storage())
    print(json.dumps(payload, indent=2, default=str))
    return code


if __name__ == "__main__":
    raise SystemExit(main())
