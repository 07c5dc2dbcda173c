import json
import logging

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1

logger = logging.getLogger(__name__)

USERS_SHEET = "Users Table"
LOGS_SHEET = "Logs"

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def authorize(credentials_json: str):
    if not credentials_json:
        raise RuntimeError(
            "GOOGLE_SHEETS_CREDENTIALS is missing. Set it to the service-account JSON."
        )
    creds_dict = json.loads(credentials_json)
    credentials = Credentials.from_service_account_info(creds_dict, scopes=SCOPES)
    return gspread.authorize(credentials)


class SheetsStore:
    """
    Thin row/column adapter over one Google spreadsheet.

    Every read returns the whole sheet as a list of rows (lists of strings,
    header first). Writes address cells by 1-based (row, col) and go out as a
    single batch per call; appends add one row after the last filled one.

    The gspread client is built on first use, so bad settings surface as an
    error from the first read or write rather than at import.
    """

    def __init__(self, spreadsheet_id: str, credentials_json: str = None, client=None):
        self.spreadsheet_id = (spreadsheet_id or "").strip()
        self.credentials_json = credentials_json
        self.client = client
        self._spreadsheet = None

    def _worksheet(self, sheet: str):
        if self._spreadsheet is None:
            if not self.spreadsheet_id:
                raise RuntimeError(
                    "GOOGLE_SHEETS_SPREADSHEET_ID is missing. Set it to the key of the tracking spreadsheet."
                )
            if self.client is None:
                self.client = authorize(self.credentials_json)
            self._spreadsheet = self.client.open_by_key(self.spreadsheet_id)
        return self._spreadsheet.worksheet(sheet)

    def read(self, sheet: str) -> list[list[str]]:
        return self._worksheet(sheet).get_all_values()

    def batch_write(self, sheet: str, cells: list[tuple[int, int, str]]):
        if not cells:
            return
        data = [
            {"range": rowcol_to_a1(row, col), "values": [[value]]}
            for row, col, value in cells
        ]
        logger.debug("Writing %d cell(s) to %s: %s", len(data), sheet, [d["range"] for d in data])
        self._worksheet(sheet).batch_update(data, value_input_option="RAW")

    def append_row(self, sheet: str, values: list[str]):
        logger.debug("Appending row to %s", sheet)
        self._worksheet(sheet).append_row(values, value_input_option="RAW")
