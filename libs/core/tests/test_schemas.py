import json

from libs.core import schemas


def test_export_schemas_writes_one_file_per_model(tmp_path):
    written = schemas.export_schemas(tmp_path / "out")
    assert sorted(path.name for path in written) == sorted(
        f"{name}.json" for name in schemas.SCHEMA_TARGETS
    )
    task_schema = json.loads((tmp_path / "out" / "Task.json").read_text(encoding="utf-8"))
    assert set(task_schema["required"]) == {"id", "description", "priority"}
    assert "dependencies" in task_schema["properties"]
