"""
Row resolution over the Users Table and Logs sheets.

Every operation re-reads the sheet it needs, finds rows by header name, and
either returns plain dicts or writes back through the store adapter. Store
failures never escape an operation: they are logged and turned into an empty
result (``[]``, ``None`` or ``False``).
"""

import functools
import logging
from datetime import datetime, timezone

from kpi import UserTargets, safe_float, safe_int
from sheets import LOGS_SHEET, USERS_SHEET
from timezones import (
    DEFAULT_OFFSET, format_sheet_date, offset_to_zone, parse_iso_date,
    parse_sheet_date, today_in_zone,
)

logger = logging.getLogger(__name__)

EMAIL_COLUMN = "Agent Email"
DATE_COLUMN = "Date"
TASK_SLOTS = (1, 2, 3)

TARGET_COLUMNS = {
    "id": "ID",
    "industry": "Agent Industry",
    "timezone": "Agent Timezone (UTC)",
    "conversations_per_day": "Target number of conversations (connects) / day",
    "meetings_scheduled_per_day": "Target number of sales meetings scheduled / day",
    "meetings_held_per_day": "Target number of sales meetings run / day",
    "listings_per_month": "Target number of listings / month",
    "appraisals_per_week": "Target number of in-person appraisals / week",
    "listing_presentations_per_week": "Target number of listing presentations / week",
    "offers_per_day": "Target number of offers presented / day",
    "group_presentations_per_week": "Target number of group sales presentations / week",
    "monthly_sales_goal": "What's your average monthly sales goal ($)",
    "monthly_gci_goal": "What's your average monthly GCI goal ($)",
}

FLOAT_TARGETS = ("monthly_sales_goal", "monthly_gci_goal")
TEXT_TARGETS = ("id", "industry", "timezone")


def task_column(task_id: int) -> str:
    return f"Task {task_id}"


def completion_column(task_id: int) -> str:
    return f"Task {task_id} Completion"


def normalize_email(email) -> str:
    return (email or "").strip().lower()


# Columns update_today_log never writes: row identity and the task slots
RESERVED_LOG_COLUMNS = frozenset(
    [EMAIL_COLUMN, DATE_COLUMN]
    + [task_column(t) for t in TASK_SLOTS]
    + [completion_column(t) for t in TASK_SLOTS]
)


class SchemaError(KeyError):
    pass


class SheetSchema:
    """Header name -> column position, resolved once per sheet read."""

    def __init__(self, sheet: str, header: list[str], strict: bool = False):
        self.sheet = sheet
        self.header = list(header)
        self.strict = strict
        self._positions = {}
        for idx, name in enumerate(self.header):
            self._positions.setdefault(name.strip(), idx)

    def index(self, name: str) -> int:
        idx = self._positions.get(name, -1)
        if idx == -1 and self.strict:
            raise SchemaError(f"{self.sheet!r} has no {name!r} column")
        return idx

    def has(self, name: str) -> bool:
        return name in self._positions

    def cell(self, row: list[str], name: str):
        idx = self.index(name)
        if idx == -1 or idx >= len(row):
            return None
        return row[idx]

    def blank_row(self) -> list[str]:
        return [""] * len(self.header)


def last_match(rows, predicate):
    """
    Fold over (position, row) pairs keeping the last one that matches.
    Positions are 1-based sheet rows, so the header is row 1.
    """
    return functools.reduce(
        lambda found, item: item if predicate(item[1]) else found,
        ((pos, row) for pos, row in enumerate(rows[1:], start=2)),
        None,
    )


def store_boundary(default):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SchemaError:
                raise
            except Exception:
                logger.exception("%s failed", func.__name__)
                return default() if callable(default) else default
        return wrapper
    return decorator


def task_record(schema: SheetSchema, row: list[str], task_id: int, position: int, date_text: str):
    text = schema.cell(row, task_column(task_id))
    if not text or not text.strip():
        return None
    done = (schema.cell(row, completion_column(task_id)) or "").strip()
    return {
        "id": task_id,
        "task": text,
        "completed": done.lower() == "true" or done == "1",
        "rowIndex": position,
        "date": date_text or "",
    }


class Resolver:
    def __init__(self, store, now: datetime = None, strict: bool = False):
        self.store = store
        self.now = now
        self.strict = strict

    # ---------------- helpers ----------------
    def _read(self, sheet: str):
        rows = self.store.read(sheet) or []
        if not rows:
            return None, []
        return SheetSchema(sheet, rows[0], strict=self.strict), rows

    def _keyed(self, schema: SheetSchema) -> bool:
        if schema.index(EMAIL_COLUMN) == -1 or schema.index(DATE_COLUMN) == -1:
            logger.error("Logs sheet is missing %r or %r", EMAIL_COLUMN, DATE_COLUMN)
            return False
        return True

    def _now(self) -> datetime:
        return self.now or datetime.now(timezone.utc)

    def _today_for(self, targets: UserTargets):
        return today_in_zone(offset_to_zone(targets.timezone), self._now())

    def _is_user_row(self, schema: SheetSchema, email: str):
        wanted = normalize_email(email)

        def check(row):
            return normalize_email(schema.cell(row, EMAIL_COLUMN)) == wanted
        return check

    def _find_day_row(self, schema, rows, email, day):
        is_user = self._is_user_row(schema, email)
        return last_match(
            rows,
            lambda row: is_user(row) and parse_sheet_date(schema.cell(row, DATE_COLUMN)) == day,
        )

    def _rows_in_range(self, schema, rows, email, start, end):
        is_user = self._is_user_row(schema, email)
        for pos, row in enumerate(rows[1:], start=2):
            if not is_user(row):
                continue
            date_text = schema.cell(row, DATE_COLUMN)
            if not date_text:
                continue
            day = parse_sheet_date(date_text)
            if day is None:
                logger.debug("Skipping row %d with unreadable date %r", pos, date_text)
                continue
            if start <= day <= end:
                yield pos, row, date_text

    # ---------------- targets ----------------
    @store_boundary(None)
    def get_user_targets(self, email: str):
        schema, rows = self._read(USERS_SHEET)
        if schema is None or len(rows) < 2:
            return None

        found = last_match(rows, self._is_user_row(schema, email))
        if found is None:
            logger.debug("No targets row for %s", email)
            return None
        _, row = found

        values = {}
        for field, header in TARGET_COLUMNS.items():
            raw = schema.cell(row, header) if schema.has(header) else None
            if field in TEXT_TARGETS:
                values[field] = raw or None
            elif field in FLOAT_TARGETS:
                values[field] = safe_float(raw)
            else:
                values[field] = safe_int(raw)
        values["timezone"] = values["timezone"] or DEFAULT_OFFSET
        return UserTargets(**values)

    # ---------------- logs ----------------
    @store_boundary(False)
    def ensure_today_row(self, email: str) -> bool:
        targets = self.get_user_targets(email)
        if targets is None:
            logger.info("Could not resolve targets for %s; not creating a log row", email)
            return False
        today = self._today_for(targets)

        schema, rows = self._read(LOGS_SHEET)
        if schema is None:
            logger.error("Logs sheet has no header row")
            return False
        if not self._keyed(schema):
            return False

        found = self._find_day_row(schema, rows, email, today)
        if found is not None:
            logger.debug("Today's log for %s already at row %d", email, found[0])
            return True

        new_row = schema.blank_row()
        new_row[schema.index(EMAIL_COLUMN)] = email
        new_row[schema.index(DATE_COLUMN)] = format_sheet_date(today)
        self.store.append_row(LOGS_SHEET, new_row)
        logger.info("Created log row for %s on %s", email, format_sheet_date(today))
        return True

    @store_boundary(list)
    def get_daily_logs(self, email: str, start, end) -> list[dict]:
        start_day = parse_iso_date(start)
        end_day = parse_iso_date(end)
        if start_day is None or end_day is None:
            return []

        schema, rows = self._read(LOGS_SHEET)
        if schema is None or len(rows) < 2:
            return []
        email_idx = schema.index(EMAIL_COLUMN)
        date_idx = schema.index(DATE_COLUMN)

        logs = []
        for _pos, row, date_text in self._rows_in_range(schema, rows, email, start_day, end_day):
            log = {"date": date_text}
            for idx, header in enumerate(schema.header):
                if idx in (email_idx, date_idx):
                    continue
                value = row[idx] if idx < len(row) else None
                log[header] = value or None
            logs.append(log)

        logger.debug("%d log row(s) for %s between %s and %s", len(logs), email, start_day, end_day)
        return logs

    @store_boundary(False)
    def update_today_log(self, email: str, fields: dict) -> bool:
        targets = self.get_user_targets(email)
        if targets is None:
            return False
        today = self._today_for(targets)

        schema, rows = self._read(LOGS_SHEET)
        if schema is None:
            logger.error("Logs sheet has no header row")
            return False
        if not self._keyed(schema):
            return False

        known = {
            k: v for k, v in (fields or {}).items()
            if k not in RESERVED_LOG_COLUMNS and schema.has(k)
        }
        dropped = set(fields or {}) - set(known)
        if dropped:
            logger.debug("Ignoring log fields: %s", sorted(map(str, dropped)))

        found = self._find_day_row(schema, rows, email, today)
        if found is None:
            new_row = schema.blank_row()
            new_row[schema.index(EMAIL_COLUMN)] = email
            new_row[schema.index(DATE_COLUMN)] = format_sheet_date(today)
            for name, value in known.items():
                new_row[schema.index(name)] = _cell_text(value)
            self.store.append_row(LOGS_SHEET, new_row)
            logger.info("Created log row for %s with %d field(s)", email, len(known))
            return True

        position, _ = found
        cells = [
            (position, schema.index(name) + 1, _cell_text(value))
            for name, value in known.items()
        ]
        if cells:
            self.store.batch_write(LOGS_SHEET, cells)
            logger.info("Updated %d field(s) on row %d for %s", len(cells), position, email)
        return True

    # ---------------- tasks ----------------
    def get_tasks(self, email: str, start=None, end=None):
        """
        Today's task list, or a {d/M/yyyy: [task, ...]} map when both ends of
        a YYYY-MM-DD range are given. Empty results keep the same shape.
        """
        if start and end:
            return self._tasks_by_date(email, start, end)
        return self._todays_tasks(email)

    @store_boundary(list)
    def _todays_tasks(self, email: str) -> list:
        self.ensure_today_row(email)

        targets = self.get_user_targets(email)
        if targets is None:
            return []

        schema, rows = self._read(LOGS_SHEET)
        if schema is None or len(rows) < 2:
            return []

        today = self._today_for(targets)
        found = self._find_day_row(schema, rows, email, today)
        if found is None:
            logger.warning("No log row for %s today after ensure", email)
            return []
        position, row = found
        return _row_tasks(schema, row, position, schema.cell(row, DATE_COLUMN))

    @store_boundary(dict)
    def _tasks_by_date(self, email: str, start, end) -> dict:
        self.ensure_today_row(email)

        if self.get_user_targets(email) is None:
            return {}

        schema, rows = self._read(LOGS_SHEET)
        if schema is None or len(rows) < 2:
            return {}

        start_day = parse_iso_date(start)
        end_day = parse_iso_date(end)
        if start_day is None or end_day is None:
            return {}

        by_date = {}
        for position, row, date_text in self._rows_in_range(schema, rows, email, start_day, end_day):
            tasks = _row_tasks(schema, row, position, date_text)
            if tasks:
                by_date[date_text] = tasks
        return by_date

    @store_boundary(False)
    def update_task_completion(self, email: str, task_id: int, completed: bool, task_date: str = None) -> bool:
        targets = self.get_user_targets(email)
        if targets is None:
            return False

        if task_date:
            day = parse_sheet_date(task_date)
            if day is None:
                logger.info("Unreadable task date %r for %s", task_date, email)
                return False
        else:
            day = self._today_for(targets)

        schema, rows = self._read(LOGS_SHEET)
        if schema is None or len(rows) < 2:
            return False
        col = schema.index(completion_column(task_id))
        if col == -1:
            logger.error("Logs sheet has no %r column", completion_column(task_id))
            return False

        found = self._find_day_row(schema, rows, email, day)
        if found is None:
            logger.info("No log row for %s on %s", email, format_sheet_date(day))
            return False

        position, _ = found
        self.store.batch_write(LOGS_SHEET, [(position, col + 1, "TRUE" if completed else "FALSE")])
        return True

    @store_boundary(False)
    def update_task_text(self, email: str, task_id: int, text: str, row_index: int = None) -> bool:
        # row_index is ignored: text edits always land on today's row
        targets = self.get_user_targets(email)
        if targets is None:
            return False
        today = self._today_for(targets)

        schema, rows = self._read(LOGS_SHEET)
        if schema is None or len(rows) < 2:
            return False
        col = schema.index(task_column(task_id))
        if col == -1:
            logger.error("Logs sheet has no %r column", task_column(task_id))
            return False

        found = self._find_day_row(schema, rows, email, today)
        if found is None:
            logger.info("No log row for %s today", email)
            return False

        position, _ = found
        text = text or ""
        cells = [(position, col + 1, text)]
        done_col = schema.index(completion_column(task_id)) if schema.has(completion_column(task_id)) else -1
        if text.strip() and done_col != -1:
            cells.append((position, done_col + 1, "FALSE"))
        self.store.batch_write(LOGS_SHEET, cells)
        return True


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def _row_tasks(schema: SheetSchema, row: list, position: int, date_text: str) -> list:
    tasks = []
    for task_id in TASK_SLOTS:
        if not schema.has(task_column(task_id)):
            continue
        task = task_record(schema, row, task_id, position, date_text)
        if task:
            tasks.append(task)
    return tasks
