# quimera/schemas/events.py
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel


class DocumentChange(BaseModel):
    # before = None -> creación; after = None -> borrado
    path: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class DocumentChangeResult(BaseModel):
    dispatched: int
    delivered: int
