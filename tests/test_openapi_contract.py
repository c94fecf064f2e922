import json
from pathlib import Path

from blackbox_crm.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_public_routes_are_unauthenticated():
    paths = app.openapi()["paths"]
    assert "security" not in paths["/pricing/plans"]["get"]
    assert "security" not in paths["/auth/register"]["post"]
    assert paths["/contacts"]["get"]["security"] == [{"OAuth2PasswordBearer": []}]
