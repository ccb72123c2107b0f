from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from casechat.config import settings
from casechat.models.evaluation import EvaluationRecord


class RecordStore:
    """File-backed storage for completed evaluations and abandoned transcripts."""

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or settings.records_dir

    def conversation_dir(self, conversation_id: str) -> Path:
        d = self.base_dir / conversation_id
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_evaluation(self, record: EvaluationRecord) -> Path:
        path = self.conversation_dir(record.conversation_id) / "evaluation.json"
        data = record.model_dump(mode="json")
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        self._write_json(path, data)
        return path

    def get_evaluation(self, conversation_id: str) -> EvaluationRecord | None:
        path = self.base_dir / conversation_id / "evaluation.json"
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        data.pop("saved_at", None)
        return EvaluationRecord(**data)

    def save_dead_transcript(self, conversation_id: str, transcript: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = self.conversation_dir(conversation_id) / f"dead_transcript_{stamp}.txt"
        path.write_text(transcript, encoding="utf-8")
        return path

    def _write_json(self, path: Path, data: dict | list) -> None:
        path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
