"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the document store because:
1. Households can inspect their months directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Layout:
- Budgets sheet: one row per budget. A few readable columns plus the
  full budget as JSON.
- Months sheet: one row per (budget, month). Identifying columns plus the
  month document as JSON.
- AuditLog sheet: append-only audit events.

TRADEOFFS:
- Lookups scan the sheet (fine at household scale)
- No transactions; partial writes merge into the stored JSON and are
  idempotent, so a retried write converges to the same row
"""

import json
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_engine.calculations.calendar import month_ordinal
from budget_engine.calculations.window import apply_start_balances
from budget_engine.config import GoogleSheetsSettings, get_settings
from budget_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_engine.models.budget import Budget
from budget_engine.models.ledger import MonthDocument, MonthStartBalances
from budget_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for Budgets sheet
BUDGET_COLUMNS = [
    "budget_id",
    "name",
    "updated_at",
    "percentage_income_months_back",
    "month_count",
    "budget_json",
]

# Column mappings for Months sheet
MONTH_COLUMNS = [
    "month_id",
    "budget_id",
    "ordinal",
    "are_allocations_finalized",
    "transaction_count",
    "updated_at",
    "month_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def month_row_id(budget_id: str, year: int, month: int) -> str:
    return f"{budget_id}_{month_ordinal(year, month)}"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_budgets_sheet(self) -> gspread.Worksheet:
        """Get or create the Budgets worksheet."""
        return self._get_or_create_sheet(
            self._settings.budgets_sheet_name, BUDGET_COLUMNS, rows=100
        )

    def get_months_sheet(self) -> gspread.Worksheet:
        """Get or create the Months worksheet."""
        return self._get_or_create_sheet(
            self._settings.months_sheet_name, MONTH_COLUMNS, rows=2000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def _find_row(sheet: gspread.Worksheet, key: str) -> tuple[Optional[int], Optional[list]]:
    """Locate a row by its first column. Returns (1-based row index, row)."""
    all_rows = sheet.get_all_values()
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
        if row and row[0] == key:
            return idx, row
    return None, None


def _replace_row(sheet: gspread.Worksheet, row_index: int, values: list) -> None:
    for col_idx, value in enumerate(values, start=1):
        sheet.update_cell(row_index, col_idx, value)


class GoogleSheetsBudgetStorage(BudgetStorageInterface):
    """
    Google Sheets implementation of budget storage.

    The JSON column is authoritative; the other columns are written for
    people looking at the sheet.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            budget.id,
            budget.name,
            budget.updated_at.isoformat(),
            str(budget.percentage_income_months_back or ""),
            str(len(budget.month_map)),
            json.dumps(budget.model_dump(mode="json")),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        payload = safe_get(5)
        if not payload:
            raise StorageError(f"Budget row {safe_get(0)!r} has no JSON payload")
        return Budget.model_validate(json.loads(payload))

    def _month_to_row(self, month: MonthDocument) -> list:
        return [
            month_row_id(month.budget_id, month.year, month.month),
            month.budget_id,
            month.ordinal,
            str(month.are_allocations_finalized),
            str(len(month.all_transactions())),
            month.updated_at.isoformat(),
            json.dumps(month.model_dump(mode="json")),
        ]

    def _row_to_month(self, row: list) -> MonthDocument:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        payload = safe_get(6)
        if not payload:
            raise StorageError(f"Month row {safe_get(0)!r} has no JSON payload")
        return MonthDocument.model_validate(json.loads(payload))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def read_month(
        self,
        budget_id: str,
        year: int,
        month: int,
    ) -> Optional[MonthDocument]:
        """Read one month row."""
        try:
            sheet = self._client.get_months_sheet()
            _, row = _find_row(sheet, month_row_id(budget_id, year, month))
            return self._row_to_month(row) if row else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read month: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def read_budget(self, budget_id: str) -> Optional[Budget]:
        """Read one budget row."""
        try:
            sheet = self._client.get_budgets_sheet()
            _, row = _find_row(sheet, budget_id)
            return self._row_to_budget(row) if row else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read budget: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write_partial_month(
        self,
        budget_id: str,
        year: int,
        month: int,
        start_balances: MonthStartBalances,
    ) -> bool:
        """Merge start balances into the month row, appending it if absent."""
        try:
            sheet = self._client.get_months_sheet()
            row_index, row = _find_row(sheet, month_row_id(budget_id, year, month))

            if row:
                document = self._row_to_month(row)
            else:
                document = MonthDocument(budget_id=budget_id, year=year, month=month)

            document = apply_start_balances(document, start_balances)
            document = document.model_copy(update={"updated_at": datetime.now(timezone.utc)})
            new_row = self._month_to_row(document)

            if row_index is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                _replace_row(sheet, row_index, new_row)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write start balances: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def write_budget_field(
        self,
        budget_id: str,
        month_map: Optional[set[str]] = None,
        percentage_income_months_back: Optional[int] = None,
    ) -> bool:
        """Update month_map and/or percentage_income_months_back on a budget row."""
        try:
            sheet = self._client.get_budgets_sheet()
            row_index, row = _find_row(sheet, budget_id)
            if row is None:
                raise NotFoundError(f"Budget not found: {budget_id}")

            budget = self._row_to_budget(row)
            update = {"updated_at": datetime.now(timezone.utc)}
            if month_map is not None:
                update["month_map"] = set(month_map)
            if percentage_income_months_back is not None:
                update["percentage_income_months_back"] = percentage_income_months_back

            _replace_row(sheet, row_index, self._budget_to_row(budget.model_copy(update=update)))
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update budget: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_month(self, month: MonthDocument) -> bool:
        """Insert or replace a month row."""
        try:
            sheet = self._client.get_months_sheet()
            row_index, _ = _find_row(sheet, month_row_id(month.budget_id, month.year, month.month))
            new_row = self._month_to_row(month)
            if row_index is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                _replace_row(sheet, row_index, new_row)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save month: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_budget(self, budget: Budget) -> bool:
        """Insert or replace a budget row."""
        try:
            sheet = self._client.get_budgets_sheet()
            row_index, _ = _find_row(sheet, budget.id)
            new_row = self._budget_to_row(budget)
            if row_index is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                _replace_row(sheet, row_index, new_row)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, IndexError) as e:
                logger.warning("audit_row_unreadable", row_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the recalculation flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
