"""Tests for the Google Sheets table service."""

import json
from urllib.parse import unquote

import httpx
import pytest

from flock.core.errors import NotFoundError, SchemaError, StoreRequestError, UnavailableError
from flock.core.rbac import PermissionResolver, RoleStore
from flock.store import TABLE_COLUMNS, Table
from flock.store.sheets import GOOGLE_TOKEN_URL, SheetsTableService, _cell


CREDENTIALS = {"client_email": "svc@example.iam.gserviceaccount.com", "private_key": "key"}


class FakeSpreadsheet:
    """Serves the Sheets values API from in-memory worksheets."""

    def __init__(self, worksheets):
        self.worksheets = worksheets
        self.requests = []
        self.fail_next = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = unquote(str(request.url))
        self.requests.append((request.method, url))

        if self.fail_next:
            failure = self.fail_next.pop(0)
            if failure == "timeout":
                raise httpx.ReadTimeout("read timed out", request=request)
            return httpx.Response(failure, text="backend error")

        if url.startswith(GOOGLE_TOKEN_URL):
            return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})

        assert request.headers["Authorization"] == "Bearer token-1"
        name = url.split("/values/")[1].split("!")[0]
        sheet = self.worksheets.setdefault(name, [])

        if request.method == "GET":
            return httpx.Response(200, json={"values": sheet})
        body = json.loads(request.content)
        if request.method == "POST":
            sheet.extend(body["values"])
            return httpx.Response(200, json={"updates": {"updatedRows": 1}})
        row_number = int(url.split("!A")[1].split("?")[0])
        while len(sheet) < row_number:
            sheet.append([])
        sheet[row_number - 1] = body["values"][0]
        return httpx.Response(200, json={"updatedRows": 1})

    def count(self, method, fragment=""):
        return sum(1 for m, url in self.requests if m == method and fragment in url)


@pytest.fixture(autouse=True)
def fake_signing(monkeypatch):
    """Skip RS256 signing; the fake token endpoint accepts any assertion."""
    monkeypatch.setattr("flock.store.sheets.jwt.encode", lambda claims, key, algorithm: "signed")


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet({
        "Tags": [
            ["id", "name", "category", "status"],
            ["t1", "choir", "ministry", "active"],
            ["t2", "band"],
        ],
    })


@pytest.fixture
def service(spreadsheet):
    client = httpx.Client(transport=httpx.MockTransport(spreadsheet))
    return SheetsTableService("sheet-1", CREDENTIALS, retry_delay=0, client=client)


class TestSheetsTableService:
    """Tests for SheetsTableService."""

    def test_requires_sheet_and_credentials(self):
        with pytest.raises(ValueError):
            SheetsTableService("", CREDENTIALS)
        with pytest.raises(ValueError):
            SheetsTableService("sheet-1", {"client_email": "x"})

    def test_list_maps_headers(self, service):
        rows = service.list(Table.TAGS)
        assert rows == [
            {"id": "t1", "name": "choir", "category": "ministry", "status": "active"},
            {"id": "t2", "name": "band", "category": "", "status": ""},
        ]

    def test_empty_worksheet(self, service):
        assert service.list(Table.MEMBERS) == []

    def test_get(self, service):
        assert service.get(Table.TAGS, "t2")["name"] == "band"
        with pytest.raises(NotFoundError):
            service.get(Table.TAGS, "t9")

    def test_token_reused(self, service, spreadsheet):
        service.list(Table.TAGS)
        service.list(Table.TAGS)
        assert spreadsheet.count("POST", GOOGLE_TOKEN_URL) == 1

    def test_append_orders_cells_by_header(self, service, spreadsheet):
        record_id = service.append(Table.TAGS, {"name": "ushers", "status": "active"})
        assert spreadsheet.worksheets["Tags"][-1] == [record_id, "ushers", "", "active"]
        assert service.get(Table.TAGS, record_id)["name"] == "ushers"

    def test_append_unknown_column_rejected(self, service, spreadsheet):
        with pytest.raises(SchemaError) as exc_info:
            service.append(Table.TAGS, {"name": "ushers", "mood": "happy"})
        assert exc_info.value.columns == ("mood",)
        assert len(spreadsheet.worksheets["Tags"]) == 3

    def test_append_adds_missing_layout_columns(self, service, spreadsheet):
        record_id = service.append(Table.TAGS, {"name": "ushers", "color": "#000000"})
        header = spreadsheet.worksheets["Tags"][0]
        assert header == TABLE_COLUMNS[Table.TAGS][:3] + ["status", "color", "description", "created_at"]
        assert service.get(Table.TAGS, record_id)["color"] == "#000000"
        assert service.get(Table.TAGS, "t1")["color"] == ""

    def test_append_creates_header_row(self, service, spreadsheet):
        record_id = service.append(Table.MEMBERS, {"name": "Ann"})
        assert spreadsheet.worksheets["Members"][0] == TABLE_COLUMNS[Table.MEMBERS]
        assert service.get(Table.MEMBERS, record_id)["name"] == "Ann"

    def test_update_writes_row(self, service, spreadsheet):
        row = service.update_by_id(Table.TAGS, "t2", {"status": "deleted", "id": "x"})
        assert row["status"] == "deleted"
        assert row["id"] == "t2"
        assert spreadsheet.worksheets["Tags"][2] == ["t2", "band", "", "deleted"]

    def test_update_missing(self, service):
        with pytest.raises(NotFoundError):
            service.update_by_id(Table.TAGS, "t9", {"status": "deleted"})

    def test_read_retried(self, service, spreadsheet):
        service.list(Table.TAGS)  # fetch token first
        spreadsheet.fail_next = [503, "timeout"]
        assert len(service.list(Table.TAGS)) == 2
        assert spreadsheet.count("GET") == 4

    def test_read_gives_up(self, service, spreadsheet):
        service.list(Table.TAGS)
        spreadsheet.fail_next = [500, 500, 500]
        with pytest.raises(UnavailableError):
            service.list(Table.TAGS)

    def test_write_not_retried(self, service, spreadsheet):
        service.list(Table.TAGS)
        spreadsheet.fail_next = [500]
        with pytest.raises(UnavailableError):
            service.append(Table.TAGS, {"name": "ushers"})
        assert len(spreadsheet.worksheets["Tags"]) == 3

    @pytest.mark.parametrize("code", [400, 403, 404])
    def test_client_errors_not_retried(self, service, spreadsheet, code):
        service.list(Table.TAGS)
        spreadsheet.fail_next = [code]
        with pytest.raises(StoreRequestError) as exc_info:
            service.list(Table.TAGS)
        assert exc_info.value.status_code == code
        assert spreadsheet.count("GET") == 2

    def test_rate_limit_retried(self, service, spreadsheet):
        service.list(Table.TAGS)
        spreadsheet.fail_next = [429]
        assert len(service.list(Table.TAGS)) == 2
        assert spreadsheet.count("GET") == 3

    def test_from_settings(self):
        class FakeSettings:
            google_sheet_id = "sheet-1"
            google_sheets_credentials = json.dumps(CREDENTIALS)
            store_timeout_seconds = 3.0
            store_max_retries = 5
            store_retry_delay_seconds = 0.1

        service = SheetsTableService.from_settings(FakeSettings())
        assert service.sheet_id == "sheet-1"
        assert service.timeout == 3.0
        assert service.max_retries == 5
        service.close()


class TestWorksheetSchema:
    """Tests for header rows that lag behind the table layout."""

    def test_update_unknown_column_rejected(self, service, spreadsheet):
        with pytest.raises(SchemaError):
            service.update_by_id(Table.TAGS, "t2", {"status": "deleted", "other": 1})
        assert spreadsheet.worksheets["Tags"][2] == ["t2", "band"]

    def test_update_adds_missing_layout_column(self, service, spreadsheet):
        row = service.update_by_id(Table.TAGS, "t1", {"color": "#111111"})
        assert row["color"] == "#111111"
        assert "color" in spreadsheet.worksheets["Tags"][0]
        assert service.get(Table.TAGS, "t1")["color"] == "#111111"

    def test_ensure_schema(self, service, spreadsheet):
        added = service.ensure_schema()

        assert added["Tags"] == ["color", "description", "created_at"]
        assert added["Members"] == TABLE_COLUMNS[Table.MEMBERS]
        for table, layout in TABLE_COLUMNS.items():
            assert set(layout) <= set(spreadsheet.worksheets[table.value][0])
        assert service.ensure_schema() == {}

    def test_revoke_on_sheet_without_status_column(self, service, spreadsheet):
        """Revocation must take effect on worksheets created without a status column."""
        spreadsheet.worksheets.update({
            "Users": [
                ["id", "member_id", "email", "password_hash", "role", "permissions", "status"],
                ["u1", "", "ann@example.org", "", "readonly", "", "active"],
            ],
            "Roles": [
                ["id", "name", "description", "permissions", "is_system_role", "created_at", "updated_at"],
                ["r-admin", "admin", "", '["members:delete"]', "true", "", ""],
                ["r-readonly", "readonly", "", '["members:read"]', "true", "", ""],
            ],
            "Role_Assignments": [
                ["id", "user_id", "role_id", "assigned_by", "assigned_at"],
                ["a1", "u1", "r-admin", "root", "2024-01-01T00:00:00+00:00"],
            ],
        })
        store = RoleStore(service)
        resolver = PermissionResolver(store)
        assert "members:delete" in {str(p) for p in resolver.resolve("u1")}

        assert store.revoke("u1", "r-admin", "root") == 1

        assert {str(p) for p in resolver.resolve("u1")} == {"members:read"}
        sheet = spreadsheet.worksheets["Role_Assignments"]
        assert sheet[1][sheet[0].index("status")] == "revoked"


class TestCellSerialization:
    """Tests for cell formatting."""

    def test_cells(self):
        assert _cell(None) == ""
        assert _cell(True) == "true"
        assert _cell(3) == "3"
        assert _cell(["b", "a"]) == '["b", "a"]'
        assert _cell({"b", "a"}) == '["a", "b"]'
