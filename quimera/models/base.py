from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from quimera.db.store import Snapshot


class FirestoreModel(BaseModel):
    """Documento Firestore: campos snake_case en Python, camelCase en la BD."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    @classmethod
    def from_snapshot(cls, snap: Snapshot):
        return cls.model_validate({**snap.data, "id": snap.id})

    def to_document(self, *, exclude_id: bool = True) -> Dict[str, Any]:
        exclude = {"id"} if exclude_id and "id" in type(self).model_fields else None
        return self.model_dump(by_alias=True, exclude_none=True, exclude=exclude)
