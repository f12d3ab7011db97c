"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. The church treasurer and committee can view the books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for one congregation)
- No transactions. A commit is sent as ONE values_batch_update call,
  which Sheets applies as a unit, so a failed call writes nothing.
- No server-side compare-and-swap. Fund versions are re-read and
  checked immediately before the batch is sent, under an in-process
  lock. Writers in other processes can still race inside that window.
- Limited query capabilities (we filter in Python)

Deleted records are cleared in place rather than removed, so row
numbers computed for a batch stay valid.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from church_ledger.config import GoogleSheetsSettings, get_settings
from church_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from church_ledger.models.bill_group import BillGroup, BillSubgroup
from church_ledger.models.fund import Fund
from church_ledger.models.ledger import LedgerCommit, LedgerEntry, LedgerEntrySource
from church_ledger.models.record import (
    RECORD_MODELS,
    FinancialRecord,
    Member,
    RecordKind,
)
from church_ledger.services.storage.interface import (
    AuditStorageInterface,
    BillGroupStorageInterface,
    ConcurrencyConflictError,
    ConnectionError,
    DuplicateError,
    FundStorageInterface,
    LedgerStorageInterface,
    MemberStorageInterface,
    NotFoundError,
    RecordStorageInterface,
    StorageError,
    check_record_delete,
    check_record_upsert,
    filter_records,
)


logger = structlog.get_logger(__name__)


# Column mappings for each sheet. The first column is always the row id.
FUND_COLUMNS = [
    "id",
    "name",
    "current_balance",
    "description",
    "version",
    "created_at",
    "updated_at",
]

OFFERING_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "offering_type",
    "amount",
    "record_date",
    "member_id",
    "contributors_count",
    "notes",
    "allocation",
    "version",
]

BILL_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "vendor_name",
    "category",
    "amount",
    "record_date",
    "due_date",
    "frequency",
    "status",
    "paid_date",
    "fund_id",
    "document_path",
    "member_id",
    "notes",
    "allocation",
    "group_id",
    "subgroup_id",
    "version",
]

ADVANCE_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "recipient_name",
    "purpose",
    "fund_id",
    "amount",
    "amount_returned",
    "status",
    "record_date",
    "expected_return_date",
    "member_id",
    "notes",
    "allocation",
    "version",
]

TRANSACTION_COLUMNS = [
    "id",
    "created_at",
    "updated_at",
    "transaction_type",
    "description",
    "category",
    "payment_method",
    "fund_id",
    "amount",
    "record_date",
    "receipt_number",
    "member_id",
    "notes",
    "allocation",
    "version",
]

BILL_GROUP_COLUMNS = [
    "id",
    "title",
    "description",
    "status",
    "priority",
    "approval_status",
    "approved_by",
    "approved_at",
    "default_due_date",
    "default_fund_id",
    "responsible_parties",
    "notes",
    "created_at",
    "updated_at",
]

BILL_SUBGROUP_COLUMNS = [
    "id",
    "group_id",
    "title",
    "purpose",
    "status",
    "priority",
    "default_fund_id",
    "default_due_date",
    "allocation_percentage",
    "sort_order",
    "notes",
    "created_at",
    "updated_at",
]

MEMBER_COLUMNS = [
    "id",
    "name",
    "phone",
    "fellowship_name",
    "job",
    "location",
    "created_at",
    "updated_at",
]

LEDGER_COLUMNS = [
    "entry_id",
    "created_at",
    "fund_id",
    "amount",
    "source",
    "reference_id",
    "description",
    "correlation_id",
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

RECORD_COLUMNS: dict[RecordKind, list[str]] = {
    RecordKind.OFFERING: OFFERING_COLUMNS,
    RecordKind.BILL: BILL_COLUMNS,
    RecordKind.ADVANCE: ADVANCE_COLUMNS,
    RecordKind.TRANSACTION: TRANSACTION_COLUMNS,
}

# Columns holding JSON objects
JSON_COLUMNS = {"allocation", "responsible_parties"}


def model_to_row(model: BaseModel, columns: list[str]) -> list:
    """Serialize a model into a row in column order. None becomes ''."""
    data = model.model_dump(mode="json")
    row = []
    for column in columns:
        value = data.get(column)
        if value is None:
            row.append("")
        elif column in JSON_COLUMNS:
            row.append(json.dumps(value))
        else:
            row.append(str(value))
    return row


def row_to_data(row: list, columns: list[str]) -> dict[str, Any]:
    """Map a row back to field values, dropping empty cells."""
    data = {}
    for index, column in enumerate(columns):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        data[column] = json.loads(value) if column in JSON_COLUMNS else value
    return data


def _a1_range(sheet: gspread.Worksheet, row: int) -> str:
    return f"'{sheet.title}'!{rowcol_to_a1(row, 1)}"


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
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_funds_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.funds_sheet_name, FUND_COLUMNS)

    def get_records_sheet(self, kind: RecordKind) -> gspread.Worksheet:
        title = {
            RecordKind.OFFERING: self._settings.offerings_sheet_name,
            RecordKind.BILL: self._settings.bills_sheet_name,
            RecordKind.ADVANCE: self._settings.advances_sheet_name,
            RecordKind.TRANSACTION: self._settings.transactions_sheet_name,
        }[kind]
        return self.get_sheet(title, RECORD_COLUMNS[kind])

    def get_bill_groups_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.bill_groups_sheet_name, BILL_GROUP_COLUMNS)

    def get_bill_subgroups_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.bill_subgroups_sheet_name, BILL_SUBGROUP_COLUMNS)

    def get_members_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.members_sheet_name, MEMBER_COLUMNS)

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get or create the append-only ledger worksheet."""
        return self.get_sheet(self._settings.ledger_sheet_name, LEDGER_COLUMNS, rows=5000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        # More rows for audit log
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def batch_update(self, data: list[dict]) -> None:
        """Write several ranges across sheets in one API call."""
        self.get_spreadsheet().values_batch_update({
            "valueInputOption": "RAW",
            "data": data,
        })


class _SheetBatch:
    """Collects row writes for one commit, tracking appended row numbers."""

    def __init__(self):
        self.data: list[dict] = []
        self._next_row: dict[str, int] = {}
        self._needed_rows: dict[str, int] = {}
        self._sheets: dict[str, gspread.Worksheet] = {}

    def write(self, sheet: gspread.Worksheet, row_number: int, values: list) -> None:
        self._sheets[sheet.title] = sheet
        self._needed_rows[sheet.title] = max(
            self._needed_rows.get(sheet.title, 0), row_number
        )
        self.data.append({"range": _a1_range(sheet, row_number), "values": [values]})

    def append(self, sheet: gspread.Worksheet, all_rows: list[list], values: list) -> None:
        row_number = self._next_row.get(sheet.title, len(all_rows) + 1)
        self._next_row[sheet.title] = row_number + 1
        self.write(sheet, row_number, values)

    def grow_sheets(self) -> None:
        """Make sure every target row exists in its sheet's grid."""
        for title, needed in self._needed_rows.items():
            sheet = self._sheets[title]
            if needed > sheet.row_count:
                sheet.add_rows(needed - sheet.row_count + 100)


class GoogleSheetsFinanceStorage(
    FundStorageInterface,
    RecordStorageInterface,
    MemberStorageInterface,
    LedgerStorageInterface,
    BillGroupStorageInterface,
):
    """
    Google Sheets implementation of fund, record, member, bill group and
    ledger storage.

    One worksheet per entity, one entity per row. Allocations are
    JSON-serialized into a single column.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._commit_lock = asyncio.Lock()

    # =========================================================================
    # Row conversion
    # =========================================================================

    def _row_to_fund(self, row: list) -> Fund:
        return Fund(**row_to_data(row, FUND_COLUMNS))

    def _row_to_record(self, kind: RecordKind, row: list) -> FinancialRecord:
        return RECORD_MODELS[kind](**row_to_data(row, RECORD_COLUMNS[kind]))

    def _row_to_member(self, row: list) -> Member:
        return Member(**row_to_data(row, MEMBER_COLUMNS))

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        return model_to_row(entry, LEDGER_COLUMNS)

    def _row_to_entry(self, row: list) -> LedgerEntry:
        return LedgerEntry(**row_to_data(row, LEDGER_COLUMNS))

    def _find_row(self, all_rows: list[list], row_id: UUID) -> Optional[int]:
        """1-based sheet row number of the row with this id."""
        for idx, row in enumerate(all_rows[1:], start=2):  # Start from 2 (row 1 is header)
            if row and row[0] == str(row_id):
                return idx
        return None

    # =========================================================================
    # Funds
    # =========================================================================

    async def get_fund(self, fund_id: UUID) -> Optional[Fund]:
        """Retrieve a fund by its ID."""
        try:
            sheet = self._client.get_funds_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(fund_id):
                    return self._row_to_fund(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get fund: {e}")

    async def list_funds(self) -> list[Fund]:
        """List funds in sheet order, which is creation order."""
        try:
            sheet = self._client.get_funds_sheet()
            return [
                self._row_to_fund(row)
                for row in sheet.get_all_values()[1:]
                if row and row[0]
            ]
        except Exception as e:
            raise StorageError(f"Failed to list funds: {e}")

    async def update_fund_details(
        self,
        fund_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Fund:
        """Rename a fund or change its description."""
        async with self._commit_lock:
            try:
                sheet = self._client.get_funds_sheet()
                all_rows = sheet.get_all_values()
                row_number = self._find_row(all_rows, fund_id)
                if row_number is None:
                    raise NotFoundError(f"Fund not found: {fund_id}")

                funds = [self._row_to_fund(row) for row in all_rows[1:] if row and row[0]]
                if name is not None:
                    for other in funds:
                        if other.id != fund_id and other.name.lower() == name.strip().lower():
                            raise DuplicateError(f"A fund named '{other.name}' already exists")

                fund = self._row_to_fund(all_rows[row_number - 1])
                updates = {"updated_at": datetime.utcnow()}
                if name is not None:
                    updates["name"] = name
                if description is not None:
                    updates["description"] = description
                fund = fund.model_copy(update=updates)

                batch = _SheetBatch()
                batch.write(sheet, row_number, model_to_row(fund, FUND_COLUMNS))
                self._client.batch_update(batch.data)
                return fund
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to update fund: {e}")

    async def delete_fund(self, fund_id: UUID) -> bool:
        """Delete a fund by ID."""
        async with self._commit_lock:
            try:
                sheet = self._client.get_funds_sheet()
                row_number = self._find_row(sheet.get_all_values(), fund_id)
                if row_number is None:
                    return False
                sheet.delete_rows(row_number)
                return True
            except Exception as e:
                raise StorageError(f"Failed to delete fund: {e}")

    # =========================================================================
    # Records
    # =========================================================================

    async def get_record(
        self,
        kind: RecordKind,
        record_id: UUID,
    ) -> Optional[FinancialRecord]:
        """Retrieve a record by its ID."""
        try:
            sheet = self._client.get_records_sheet(kind)
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(record_id):
                    return self._row_to_record(kind, row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get {kind.value}: {e}")

    async def list_records(
        self,
        kind: RecordKind,
        date_from=None,
        date_to=None,
        member_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FinancialRecord]:
        """List records with optional filters."""
        try:
            sheet = self._client.get_records_sheet(kind)
            records = []
            for row in sheet.get_all_values()[1:]:
                if not row or not row[0]:  # Skip empty and cleared rows
                    continue
                try:
                    records.append(self._row_to_record(kind, row))
                except Exception as e:
                    logger.warning(
                        "skipping_malformed_row",
                        sheet=sheet.title,
                        row_id=row[0],
                        error=str(e),
                    )
            return filter_records(
                records,
                date_from=date_from,
                date_to=date_to,
                member_id=member_id,
                fund_id=fund_id,
                limit=limit,
                offset=offset,
            )
        except Exception as e:
            raise StorageError(f"Failed to list {kind.value} records: {e}")

    # =========================================================================
    # Members
    # =========================================================================

    async def save_member(self, member: Member) -> bool:
        """Insert a member, or overwrite the row if it already exists."""
        try:
            sheet = self._client.get_members_sheet()
            all_rows = sheet.get_all_values()
            row_number = self._find_row(all_rows, member.id)
            values = model_to_row(member, MEMBER_COLUMNS)
            if row_number is None:
                sheet.append_row(values, value_input_option="RAW")
            else:
                batch = _SheetBatch()
                batch.write(sheet, row_number, values)
                self._client.batch_update(batch.data)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save member: {e}")

    async def get_member(self, member_id: UUID) -> Optional[Member]:
        try:
            sheet = self._client.get_members_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(member_id):
                    return self._row_to_member(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get member: {e}")

    async def list_members(self, search: Optional[str] = None) -> list[Member]:
        try:
            sheet = self._client.get_members_sheet()
            members = [
                self._row_to_member(row)
                for row in sheet.get_all_values()[1:]
                if row and row[0]
            ]
        except Exception as e:
            raise StorageError(f"Failed to list members: {e}")

        if search:
            members = [m for m in members if search.lower() in m.name.lower()]
        members.sort(key=lambda m: m.name.lower())
        return members

    # =========================================================================
    # Bill groups
    # =========================================================================

    def _row_to_group(self, row: list) -> BillGroup:
        return BillGroup(**row_to_data(row, BILL_GROUP_COLUMNS))

    def _row_to_subgroup(self, row: list) -> BillSubgroup:
        return BillSubgroup(**row_to_data(row, BILL_SUBGROUP_COLUMNS))

    def _save_row(self, sheet: gspread.Worksheet, row_id: UUID, values: list) -> None:
        row_number = self._find_row(sheet.get_all_values(), row_id)
        if row_number is None:
            sheet.append_row(values, value_input_option="RAW")
        else:
            batch = _SheetBatch()
            batch.write(sheet, row_number, values)
            self._client.batch_update(batch.data)

    async def save_group(self, group: BillGroup) -> bool:
        try:
            self._save_row(
                self._client.get_bill_groups_sheet(),
                group.id,
                model_to_row(group, BILL_GROUP_COLUMNS),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save bill group: {e}")

    async def get_group(self, group_id: UUID) -> Optional[BillGroup]:
        try:
            for row in self._client.get_bill_groups_sheet().get_all_values()[1:]:
                if row and row[0] == str(group_id):
                    return self._row_to_group(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get bill group: {e}")

    async def list_groups(self) -> list[BillGroup]:
        try:
            groups = [
                self._row_to_group(row)
                for row in self._client.get_bill_groups_sheet().get_all_values()[1:]
                if row and row[0]
            ]
        except Exception as e:
            raise StorageError(f"Failed to list bill groups: {e}")
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def delete_group(self, group_id: UUID) -> bool:
        try:
            sheet = self._client.get_bill_groups_sheet()
            row_number = self._find_row(sheet.get_all_values(), group_id)
            if row_number is None:
                return False

            sub_sheet = self._client.get_bill_subgroups_sheet()
            sub_rows = sub_sheet.get_all_values()
            # Bottom-up so earlier row numbers stay valid
            for idx in range(len(sub_rows), 1, -1):
                row = sub_rows[idx - 1]
                if len(row) > 1 and row[1] == str(group_id):
                    sub_sheet.delete_rows(idx)

            sheet.delete_rows(row_number)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete bill group: {e}")

    async def save_subgroup(self, subgroup: BillSubgroup) -> bool:
        try:
            self._save_row(
                self._client.get_bill_subgroups_sheet(),
                subgroup.id,
                model_to_row(subgroup, BILL_SUBGROUP_COLUMNS),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save bill subgroup: {e}")

    async def get_subgroup(self, subgroup_id: UUID) -> Optional[BillSubgroup]:
        try:
            for row in self._client.get_bill_subgroups_sheet().get_all_values()[1:]:
                if row and row[0] == str(subgroup_id):
                    return self._row_to_subgroup(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get bill subgroup: {e}")

    async def list_subgroups(self, group_id: UUID) -> list[BillSubgroup]:
        try:
            subgroups = [
                self._row_to_subgroup(row)
                for row in self._client.get_bill_subgroups_sheet().get_all_values()[1:]
                if len(row) > 1 and row[1] == str(group_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list bill subgroups: {e}")
        subgroups.sort(key=lambda s: (s.sort_order, s.created_at))
        return subgroups

    async def delete_subgroup(self, subgroup_id: UUID) -> bool:
        try:
            sheet = self._client.get_bill_subgroups_sheet()
            row_number = self._find_row(sheet.get_all_values(), subgroup_id)
            if row_number is None:
                return False
            sheet.delete_rows(row_number)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete bill subgroup: {e}")

    # =========================================================================
    # Ledger
    # =========================================================================

    async def commit(self, commit: LedgerCommit) -> None:
        """
        Apply a commit as one values_batch_update call.

        Versions are checked against a fresh read of the funds sheet
        right before the batch is sent.
        """
        async with self._commit_lock:
            try:
                batch = self._build_batch(commit)
                batch.grow_sheets()
                self._client.batch_update(batch.data)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to commit ledger changes: {e}")

        logger.debug(
            "ledger_commit_written",
            commit_id=str(commit.commit_id),
            ranges=len(batch.data),
        )

    def _build_batch(self, commit: LedgerCommit) -> _SheetBatch:
        batch = _SheetBatch()
        now = datetime.utcnow()

        funds_sheet = self._client.get_funds_sheet()
        fund_rows = funds_sheet.get_all_values()
        funds = {
            row[0]: (idx, self._row_to_fund(row))
            for idx, row in enumerate(fund_rows[1:], start=2)
            if row and row[0]
        }

        for fund in commit.fund_inserts:
            if str(fund.id) in funds:
                raise DuplicateError(f"Fund already exists: {fund.id}")
            for _, existing in funds.values():
                if existing.name.lower() == fund.name.lower():
                    raise DuplicateError(f"A fund named '{existing.name}' already exists")
            batch.append(funds_sheet, fund_rows, model_to_row(fund, FUND_COLUMNS))

        for change in commit.balance_changes:
            if str(change.fund_id) not in funds:
                raise NotFoundError(f"Fund not found: {change.fund_id}")
            row_number, fund = funds[str(change.fund_id)]
            if fund.version != change.expected_version:
                raise ConcurrencyConflictError(
                    change.fund_id, change.expected_version, fund.version
                )
            updated = fund.model_copy(update={
                "current_balance": change.new_balance,
                "version": fund.version + 1,
                "updated_at": now,
            })
            batch.write(funds_sheet, row_number, model_to_row(updated, FUND_COLUMNS))

        record_sheets: dict[RecordKind, tuple[gspread.Worksheet, list[list]]] = {}

        def sheet_rows(kind: RecordKind):
            if kind not in record_sheets:
                sheet = self._client.get_records_sheet(kind)
                record_sheets[kind] = (sheet, sheet.get_all_values())
            return record_sheets[kind]

        for ref in commit.record_deletes:
            sheet, all_rows = sheet_rows(ref.kind)
            row_number = self._find_row(all_rows, ref.record_id)
            stored = None
            if row_number is not None:
                stored = self._row_to_record(ref.kind, all_rows[row_number - 1])
            check_record_delete(ref, stored)
            batch.write(sheet, row_number, [""] * len(RECORD_COLUMNS[ref.kind]))

        for record in commit.record_upserts:
            sheet, all_rows = sheet_rows(record.kind)
            values = model_to_row(record, RECORD_COLUMNS[record.kind])
            row_number = self._find_row(all_rows, record.id)
            stored = None
            if row_number is not None:
                stored = self._row_to_record(record.kind, all_rows[row_number - 1])
            check_record_upsert(record, stored)
            if row_number is None:
                batch.append(sheet, all_rows, values)
            else:
                batch.write(sheet, row_number, values)

        if commit.entries:
            ledger_sheet = self._client.get_ledger_sheet()
            ledger_rows = ledger_sheet.get_all_values()
            for entry in commit.entries:
                batch.append(ledger_sheet, ledger_rows, self._entry_to_row(entry))

        return batch

    async def list_entries(
        self,
        fund_id: Optional[UUID] = None,
        source: Optional[LedgerEntrySource] = None,
        reference_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        try:
            sheet = self._client.get_ledger_sheet()
            entries = [
                self._row_to_entry(row)
                for row in sheet.get_all_values()[1:]
                if row and row[0]
            ]
        except Exception as e:
            raise StorageError(f"Failed to list ledger entries: {e}")

        return [
            entry for entry in entries
            if (fund_id is None or entry.fund_id == fund_id)
            and (source is None or entry.source == source)
            and (reference_id is None or entry.reference_id == reference_id)
        ]


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
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                logger.warning("skipping_malformed_audit_row", row_id=row[0], error=str(e))
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
            # Audit logging must not break the main flow
            logger.error(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
