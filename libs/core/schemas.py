from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Type

from pydantic import BaseModel

from . import models

SCHEMA_TARGETS: Dict[str, Type[BaseModel]] = {
    "Task": models.Task,
    "CycleReport": models.CycleReport,
    "ProcessingResult": models.ProcessingResult,
    "Job": models.Job,
    "EventEnvelope": models.EventEnvelope,
    "SubmitResponse": models.SubmitResponse,
    "JobStatusResponse": models.JobStatusResponse,
    "TaskCompletionUpdate": models.TaskCompletionUpdate,
}


def export_schemas(target_dir: Path) -> List[Path]:
    target_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, model in SCHEMA_TARGETS.items():
        schema_path = target_dir / f"{name}.json"
        schema_path.write_text(json.dumps(model.model_json_schema(), indent=2), encoding="utf-8")
        written.append(schema_path)
    return written
