import json
from dataclasses import asdict
from pathlib import Path
from typing import Iterable, List

from .types import KnowledgeEntry


def load_knowledge(path: str) -> List[KnowledgeEntry]:
    data_path = Path(path)
    if not data_path.exists():
        raise FileNotFoundError(f"Knowledge data not found: {data_path}")

    entries: List[KnowledgeEntry] = []
    with data_path.open("r", encoding="utf-8") as f:
        for idx, line in enumerate(f):
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            answer = record.get("answer", "")
            entries.append(
                KnowledgeEntry(
                    id=str(record.get("id") or idx + 1),
                    # "query" is accepted for QA exports that predate the question field
                    question=record.get("question") or record.get("query", ""),
                    answer=answer,
                    content=record.get("content") or answer,
                    created_at=float(record.get("created_at") or 0.0),
                    updated_at=float(record.get("updated_at") or 0.0),
                )
            )
    return entries


def write_knowledge(path: str, entries: Iterable[KnowledgeEntry]) -> None:
    data_path = Path(path)
    data_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = data_path.with_suffix(data_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(asdict(entry), ensure_ascii=False) + "\n")
    tmp_path.replace(data_path)
