import json
from pathlib import Path

from churchdesk.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_dispatch_documents_plain_error_bodies():
    dispatch = app.openapi()["paths"]["/automations/dispatch"]["post"]
    for status_code in ("400", "401"):
        schema_ref = dispatch["responses"][status_code]["content"]["application/json"]["schema"]["$ref"]
        assert schema_ref.endswith("/PlainErrorOut")
