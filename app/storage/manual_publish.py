"""
app/storage/manual_publish.py

Filesystem storage for entities awaiting (or recorded after) publishing.

Every publish attempt stores the full entity here, whatever the automatic
decision was. Each business owns exactly one entry made of two JSON files:

    business-{id}-entity.json    the entity document
    business-{id}-metadata.json  name, can_publish, notability summary, stored_at

A newer attempt overwrites the previous entry.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from db.base import as_utc, utcnow
from db.repositories.errors import ManualStorageError

logger = logging.getLogger(__name__)

_ENTITY_SUFFIX = "-entity.json"
_METADATA_SUFFIX = "-metadata.json"


@dataclass(frozen=True)
class StoredManualEntity:
    business_id: uuid.UUID
    business_name: str
    entity: dict[str, Any]
    can_publish: bool
    notability: dict[str, Any] | None
    stored_at: datetime
    published_qid: str | None = None

    @property
    def entity_file_name(self) -> str:
        return f"business-{self.business_id}{_ENTITY_SUFFIX}"

    @property
    def metadata_file_name(self) -> str:
        return f"business-{self.business_id}{_METADATA_SUFFIX}"

    def metadata(self) -> dict[str, Any]:
        return {
            "business_id": str(self.business_id),
            "entity_file_name": self.entity_file_name,
            "metadata_file_name": self.metadata_file_name,
            "business_name": self.business_name,
            "can_publish": self.can_publish,
            "notability": self.notability,
            "stored_at": self.stored_at.isoformat(),
            "published_qid": self.published_qid,
        }


def _as_uuid(business_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(business_id, uuid.UUID):
        return business_id
    try:
        return uuid.UUID(str(business_id))
    except ValueError as exc:
        raise ManualStorageError(f"Invalid business id: {business_id!r}") from exc


class ManualPublishStorage:
    """
    Local filesystem store keyed by business id.
    """

    def __init__(self, root_dir: str | Path = "data/manual-publish") -> None:
        self._root_dir = Path(root_dir)

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def store_entity_for_manual_publish(
        self,
        *,
        business_id: uuid.UUID,
        business_name: str,
        entity: dict[str, Any],
        can_publish: bool,
        notability: dict[str, Any] | None,
        published_qid: str | None = None,
    ) -> StoredManualEntity:
        stored = StoredManualEntity(
            business_id=_as_uuid(business_id),
            business_name=business_name,
            entity=entity,
            can_publish=can_publish,
            notability=notability,
            stored_at=utcnow(),
            published_qid=published_qid,
        )
        entity_path, metadata_path = self._paths(stored.business_id)
        self._root_dir.mkdir(parents=True, exist_ok=True)
        self._write_json(entity_path, entity)
        self._write_json(metadata_path, stored.metadata())
        logger.info(
            "Stored entity for manual publish business_id=%s can_publish=%s qid=%s",
            stored.business_id,
            can_publish,
            published_qid,
        )
        return stored

    def list_stored_entities(self) -> list[StoredManualEntity]:
        """All stored entries, newest first."""
        if not self._root_dir.exists():
            return []
        entries: list[StoredManualEntity] = []
        for metadata_path in self._root_dir.glob(f"business-*{_METADATA_SUFFIX}"):
            raw_id = metadata_path.name[len("business-") : -len(_METADATA_SUFFIX)]
            try:
                business_id = uuid.UUID(raw_id)
            except ValueError:
                logger.warning("Skipping unrecognised manual storage file path=%s", metadata_path)
                continue
            stored = self.load_stored_entity(business_id)
            if stored is not None:
                entries.append(stored)
        entries.sort(key=lambda entry: entry.stored_at, reverse=True)
        return entries

    def load_stored_entity(self, business_id: uuid.UUID | str) -> StoredManualEntity | None:
        key = _as_uuid(business_id)
        entity_path, metadata_path = self._paths(key)
        if not entity_path.exists() or not metadata_path.exists():
            return None
        entity = self._read_json(entity_path)
        metadata = self._read_json(metadata_path)
        try:
            stored_at = as_utc(datetime.fromisoformat(str(metadata["stored_at"])))
            return StoredManualEntity(
                business_id=key,
                business_name=str(metadata.get("business_name") or ""),
                entity=entity,
                can_publish=bool(metadata.get("can_publish", False)),
                notability=metadata.get("notability"),
                stored_at=stored_at,
                published_qid=metadata.get("published_qid"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ManualStorageError(f"Corrupt manual storage metadata: {metadata_path}") from exc

    def delete_stored_entity(self, business_id: uuid.UUID | str) -> bool:
        """Remove both files. Returns False when nothing was stored."""
        removed = False
        for path in self._paths(_as_uuid(business_id)):
            if not path.exists():
                continue
            try:
                path.unlink()
            except OSError as exc:
                raise ManualStorageError(f"Failed to delete {path.name} from manual storage.") from exc
            removed = True
        return removed

    def _paths(self, business_id: uuid.UUID) -> tuple[Path, Path]:
        stem = f"business-{business_id}"
        return (
            self._root_dir / f"{stem}{_ENTITY_SUFFIX}",
            self._root_dir / f"{stem}{_METADATA_SUFFIX}",
        )

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        tmp_path = path.with_suffix(f"{path.suffix}.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True, default=str)
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise ManualStorageError(f"Failed to write {path.name} to manual storage.") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.warning("Could not remove temporary file path=%s", tmp_path)

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ManualStorageError(f"Failed to read {path.name} from manual storage.") from exc
        if not isinstance(payload, dict):
            raise ManualStorageError(f"{path.name} does not contain a JSON object.")
        return payload
