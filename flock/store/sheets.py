"""Google Sheets table service.

Each logical table is a worksheet whose first row holds the column
headers. Access uses the Sheets v4 REST API with a service-account token
minted locally (RS256 JWT bearer grant).
"""

import json
import threading
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx
from jose import jwt

from flock.common.logger import get_logger
from flock.core.errors import NotFoundError, SchemaError, StoreRequestError, UnavailableError
from .base import TABLE_COLUMNS, Row, Table, TableService, new_id, table_name
from .retry import call_with_retry

logger = get_logger("store.sheets")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"


def _cell(value: Any) -> str:
    """Serialize a Python value into a spreadsheet cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict, tuple, set, frozenset)):
        return json.dumps(sorted(value) if isinstance(value, (set, frozenset)) else value)
    return str(value)


class SheetsTableService(TableService):
    """TableService backed by a Google spreadsheet."""

    def __init__(
        self,
        sheet_id: str,
        credentials: Mapping[str, Any],
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize the service.

        Args:
            sheet_id: Spreadsheet id
            credentials: Parsed service account JSON (client_email, private_key)
            timeout: Per-request timeout in seconds
            max_retries: Attempts per read, including the first
            retry_delay: Initial backoff between read attempts
            client: Optional preconfigured httpx client
        """
        if not sheet_id:
            raise ValueError("Missing Google sheet id")
        if not credentials.get("client_email") or not credentials.get("private_key"):
            raise ValueError("Service account credentials need client_email and private_key")

        self.sheet_id = sheet_id
        self.credentials = dict(credentials)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = client or httpx.Client(timeout=timeout)
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._token_expiry = 0.0
        self._headers: Dict[str, List[str]] = {}

    @classmethod
    def from_settings(cls, settings) -> "SheetsTableService":
        """Build the service from application settings."""
        if not settings.google_sheets_credentials:
            raise ValueError("FLOCK_GOOGLE_SHEETS_CREDENTIALS is not set")
        return cls(
            sheet_id=settings.google_sheet_id or "",
            credentials=json.loads(settings.google_sheets_credentials),
            timeout=settings.store_timeout_seconds,
            max_retries=settings.store_max_retries,
            retry_delay=settings.store_retry_delay_seconds,
        )

    # Auth

    def _access_token(self) -> str:
        with self._lock:
            now = time.time()
            if self._token and now < self._token_expiry:
                return self._token

            claims = {
                "iss": self.credentials["client_email"],
                "scope": SHEETS_SCOPE,
                "aud": GOOGLE_TOKEN_URL,
                "iat": int(now),
                "exp": int(now) + 3600,
            }
            assertion = jwt.encode(claims, self.credentials["private_key"], algorithm="RS256")
            data = self._send(
                "POST",
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": assertion,
                },
            )
            self._token = data["access_token"]
            # refresh one minute early
            self._token_expiry = now + int(data.get("expires_in", 3600)) - 60
            return self._token

    # Transport

    def _send(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UnavailableError(f"Google Sheets request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            message = f"Google Sheets API error: {code} {e.response.text[:200]}"
            if code == 429 or code >= 500:
                raise UnavailableError(message) from e
            raise StoreRequestError(message, status_code=code) from e
        except httpx.HTTPError as e:
            raise UnavailableError(f"Google Sheets request failed: {e}") from e
        return response.json() if response.content else {}

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        return self._send(method, f"{SHEETS_BASE_URL}/{self.sheet_id}{path}", headers=headers, **kwargs)

    def _values_path(self, rng: str) -> str:
        return f"/values/{quote(rng, safe='')}"

    # Reading

    def _read(self, table: "Table | str") -> Tuple[List[str], List[Row]]:
        name = table_name(table)
        # Only reads are retried
        data = call_with_retry(
            lambda: self._request("GET", self._values_path(f"{name}!A:Z")),
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            description=f"read {name}",
        )
        values = data.get("values") or []
        if not values:
            self._headers[name] = []
            return [], []

        headers = [str(h) for h in values[0]]
        self._headers[name] = headers
        rows = []
        for raw in values[1:]:
            rows.append({h: (raw[i] if i < len(raw) else "") for i, h in enumerate(headers)})
        return headers, rows

    def _headers_for(self, table: "Table | str") -> List[str]:
        name = table_name(table)
        if name not in self._headers:
            self._read(table)
        return self._headers[name]

    def list(self, table: "Table | str") -> List[Row]:
        return self._read(table)[1]

    def get(self, table: "Table | str", record_id: str) -> Row:
        for row in self.list(table):
            if row.get("id") == str(record_id):
                return row
        raise NotFoundError(table_name(table), record_id)

    # Schema

    def _write_headers(self, name: str, headers: List[str]) -> None:
        self._request(
            "PUT",
            self._values_path(f"{name}!A1"),
            params={"valueInputOption": "RAW"},
            json={"values": [headers]},
        )
        self._headers[name] = list(headers)

    def _require_columns(
        self, table: "Table | str", headers: List[str], columns: Iterable[str]
    ) -> List[str]:
        """Return headers covering columns, adding known missing ones to the sheet.

        Raises:
            SchemaError: If a column is neither in the sheet nor in the table layout
        """
        name = table_name(table)
        missing = [c for c in columns if c not in headers]
        if not missing:
            return headers

        try:
            layout = TABLE_COLUMNS[Table(name)]
        except ValueError:
            layout = []
        unknown = [c for c in missing if c not in layout]
        if unknown:
            raise SchemaError(name, unknown)

        added = [c for c in layout if c not in headers]
        self._write_headers(name, headers + added)
        logger.warning(f"Added columns {added} to worksheet {name}")
        return headers + added

    def ensure_schema(self) -> Dict[str, List[str]]:
        """Create or extend every worksheet's header row to the table layout."""
        added: Dict[str, List[str]] = {}
        for table, layout in TABLE_COLUMNS.items():
            headers, _ = self._read(table)
            missing = [c for c in layout if c not in headers]
            if missing:
                self._write_headers(table.value, headers + missing)
                logger.info(f"Worksheet {table.value}: added columns {missing}")
                added[table.value] = missing
        return added

    # Writing

    def append(self, table: "Table | str", row: Mapping[str, Any]) -> str:
        name = table_name(table)
        record = dict(row)
        record_id = str(record.get("id") or new_id())
        record["id"] = record_id
        headers = self._require_columns(table, self._headers_for(table), record)

        self._request(
            "POST",
            self._values_path(f"{name}!A:A") + ":append",
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [[_cell(record.get(h)) for h in headers]]},
        )
        return record_id

    def update_by_id(
        self, table: "Table | str", record_id: str, patch: Mapping[str, Any]
    ) -> Row:
        name = table_name(table)
        headers, rows = self._read(table)
        for index, row in enumerate(rows):
            if row.get("id") == str(record_id):
                break
        else:
            raise NotFoundError(name, record_id)

        changes = {k: _cell(v) for k, v in patch.items() if k != "id"}
        headers = self._require_columns(table, headers, changes)
        row.update(changes)
        sheet_row = index + 2  # header row + zero-based index
        self._request(
            "PUT",
            self._values_path(f"{name}!A{sheet_row}"),
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [[row.get(h, "") for h in headers]]},
        )
        return row

    def close(self) -> None:
        self._client.close()
