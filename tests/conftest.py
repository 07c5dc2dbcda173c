"""
Shared fixtures: an in-memory stand-in for the spreadsheet and a Flask client.

The fake store keeps each sheet as a list of rows (header first), exactly the
shape SheetsStore.read returns, so resolver code runs unchanged against it.
"""

import copy
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Repo root on sys.path so tests can import the top-level modules
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from resolver import Resolver  # noqa: E402
from sheets import LOGS_SHEET, USERS_SHEET  # noqa: E402


# 2024-03-15 12:00 UTC -> "15/3/2024" for UTC users, "16/3/2024" for UTC+12
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = "15/3/2024"

USERS_HEADER = [
    "ID",
    "Timestamp",
    "Agent Name",
    "Agent Industry",
    "Agent Email",
    "Agent Timezone (UTC)",
    "Target number of conversations (connects) / day",
    "Target number of sales meetings scheduled / day",
    "Target number of sales meetings run / day",
    "Target number of listings / month",
    "Target number of in-person appraisals / week",
    "Target number of listing presentations / week",
    "Target number of offers presented / day",
    "Target number of group sales presentations / week",
    "What's your average monthly sales goal ($)",
    "What's your average monthly GCI goal ($)",
]

LOGS_HEADER = [
    "Agent Email",
    "Date",
    "Number of conversations (connects) today",
    "Number of sales meetings scheduled today",
    "Number of sales meetings run today",
    "Number of listings today",
    "Number of in-person appraisals today",
    "Number of listing presentations today",
    "Number of offers presented today",
    "Number of group sales presentations today",
    "Current sales today ($)",
    "Current GCI ($)",
    "Task 1",
    "Task 1 Completion",
    "Task 2",
    "Task 2 Completion",
    "Task 3",
    "Task 3 Completion",
]


def user_row(email, tz="UTC+0", conversations="5", listings="3", appraisals="2",
             sales="", gci="", uid="u1", industry="Real Estate"):
    values = {
        "ID": uid,
        "Agent Industry": industry,
        "Agent Email": email,
        "Agent Timezone (UTC)": tz,
        "Target number of conversations (connects) / day": conversations,
        "Target number of listings / month": listings,
        "Target number of in-person appraisals / week": appraisals,
        "What's your average monthly sales goal ($)": sales,
        "What's your average monthly GCI goal ($)": gci,
    }
    return [values.get(h, "") for h in USERS_HEADER]


def log_row(email, date_text, **cells):
    values = {"Agent Email": email, "Date": date_text}
    values.update(cells)
    return [values.get(h, "") for h in LOGS_HEADER]


def col(name):
    """1-based Logs column for a header."""
    return LOGS_HEADER.index(name) + 1


class FakeStore:
    def __init__(self, sheets=None):
        self.sheets = sheets or {}
        self.reads = 0
        self.writes = []
        self.appends = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise RuntimeError("spreadsheet unavailable")

    def read(self, sheet):
        self._check()
        self.reads += 1
        if sheet not in self.sheets:
            raise KeyError(sheet)
        return copy.deepcopy(self.sheets[sheet])

    def batch_write(self, sheet, cells):
        self._check()
        self.writes.append((sheet, list(cells)))
        rows = self.sheets[sheet]
        for row, column, value in cells:
            while len(rows) < row:
                rows.append([])
            target = rows[row - 1]
            while len(target) < column:
                target.append("")
            target[column - 1] = value

    def append_row(self, sheet, values):
        self._check()
        self.appends.append((sheet, list(values)))
        self.sheets[sheet].append(list(values))

    # test helpers
    def rows_for(self, email, date_text):
        logs = self.sheets[LOGS_SHEET]
        return [r for r in logs[1:] if r[0].lower() == email.lower() and r[1] == date_text]

    def cell(self, row, name):
        return self.sheets[LOGS_SHEET][row - 1][col(name) - 1]


@pytest.fixture
def store():
    return FakeStore({
        USERS_SHEET: [
            list(USERS_HEADER),
            user_row("a@x.com"),
            user_row("late@x.com", tz="UTC+12"),
        ],
        LOGS_SHEET: [list(LOGS_HEADER)],
    })


@pytest.fixture
def resolver(store):
    return Resolver(store, now=NOW, strict=True)


@pytest.fixture
def flask_app(store, monkeypatch):
    import app as app_module
    from allowlist import AllowList

    monkeypatch.setattr(app_module, "_store", store)
    monkeypatch.setattr(app_module, "_allow_list", AllowList(store))
    monkeypatch.setattr(app_module, "request_now", lambda: NOW)
    app_module.app.testing = True
    return app_module


@pytest.fixture
def client(flask_app):
    return flask_app.app.test_client()


@pytest.fixture
def logged_in(client):
    with client.session_transaction() as sess:
        sess["email"] = "a@x.com"
    return client
