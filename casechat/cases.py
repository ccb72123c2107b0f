"""Case content loader backed by a directory of case folders.

Layout::

    case_files/
        personas.json              optional instructor persona overrides
        <case_id>/
            case.json              title, protagonist, chat question, options
            case.md                case body shown to the student
            teaching_note.md       optional, never shown to the student
            arguments_for.md       optional
            arguments_against.md   optional
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from casechat.config import settings
from casechat.models.case import CaseData, PersonaRecord

logger = logging.getLogger(__name__)

_CASE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class CaseNotFoundError(LookupError):
    """Raised when no case folder exists for the requested id."""


class CaseStore:
    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or settings.cases_dir

    def case_dir(self, case_id: str) -> Path:
        if not _CASE_ID.match(case_id or ""):
            raise CaseNotFoundError(f"Invalid case id {case_id!r}")
        d = self.base_dir / case_id
        if not (d / "case.json").exists():
            raise CaseNotFoundError(f"Case {case_id} not found")
        return d

    def list_cases(self) -> list[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.parent.name for p in self.base_dir.glob("*/case.json"))

    def get_case(self, case_id: str) -> CaseData:
        d = self.case_dir(case_id)
        meta = self._read_json(d / "case.json")
        return CaseData(
            case_id=case_id,
            case_title=meta["case_title"],
            protagonist=meta["protagonist"],
            protagonist_initials=meta.get("protagonist_initials", ""),
            chat_topic=meta.get("chat_topic", ""),
            chat_question=meta["chat_question"],
            case_content=self._read_text(d / "case.md"),
            teaching_note=self._read_text(d / "teaching_note.md"),
            supplementary_materials=meta.get("supplementary_materials", ""),
            arguments_for=self._read_text(d / "arguments_for.md"),
            arguments_against=self._read_text(d / "arguments_against.md"),
        )

    def get_options(self, case_id: str) -> dict[str, Any]:
        """Chat option overrides stored with the case (may be empty)."""
        meta = self._read_json(self.case_dir(case_id) / "case.json")
        return dict(meta.get("options") or {})

    def get_personas(self) -> dict[str, PersonaRecord]:
        path = self.base_dir / "personas.json"
        if not path.exists():
            return {}
        records = [PersonaRecord(**p) for p in self._read_json(path)]
        return {r.persona_id: r for r in sorted(records, key=lambda r: r.sort_order)}

    def get_persona_override(self, persona_id: str) -> PersonaRecord | None:
        record = self.get_personas().get(persona_id)
        if record is not None and not record.enabled:
            logger.info("Persona override %s is disabled, using built-in instructions", persona_id)
            return None
        return record

    def _read_text(self, path: Path) -> str:
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))
