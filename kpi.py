import math
import re
from dataclasses import dataclass
from datetime import date

from timezones import DEFAULT_OFFSET, parse_iso_date


# ---------------- Targets ----------------
@dataclass
class UserTargets:
    id: str = None
    industry: str = None
    timezone: str = DEFAULT_OFFSET
    conversations_per_day: int = 0
    meetings_scheduled_per_day: int = 0
    meetings_held_per_day: int = 0
    listings_per_month: int = 0
    appraisals_per_week: int = 0
    listing_presentations_per_week: int = 0
    offers_per_day: int = 0
    group_presentations_per_week: int = 0
    monthly_sales_goal: float = 0.0
    monthly_gci_goal: float = 0.0

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "industry": self.industry,
            "timezone": self.timezone,
            "conversationsPerDay": self.conversations_per_day,
            "meetingsScheduledPerDay": self.meetings_scheduled_per_day,
            "meetingsHeldPerDay": self.meetings_held_per_day,
            "listingsPerMonth": self.listings_per_month,
            "appraisalsPerWeek": self.appraisals_per_week,
            "listingPresentationsPerWeek": self.listing_presentations_per_week,
            "offersPerDay": self.offers_per_day,
            "groupPresentationsPerWeek": self.group_presentations_per_week,
            "monthlySalesGoal": self.monthly_sales_goal,
            "monthlyGCIGoal": self.monthly_gci_goal,
        }


_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def safe_int(value) -> int:
    """Leading integer of a cell ("12 calls" -> 12, "3.7" -> 3); blank or junk -> 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return 0 if math.isnan(value) else int(value)
    m = _INT_RE.match(str(value))
    return int(m.group(1)) if m else 0


def safe_float(value) -> float:
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 0.0 if math.isnan(value) else float(value)
    m = _FLOAT_RE.match(str(value))
    return float(m.group(1)) if m else 0.0


# ---------------- Metrics ----------------
DAILY = "day"
WEEKLY = "week"
MONTHLY = "month"

# key, title, Logs column, UserTargets field, cadence
METRICS = [
    ("conversations", "Conversations",
     "Number of conversations (connects) today", "conversations_per_day", DAILY),
    ("meetingsScheduled", "Meetings Scheduled",
     "Number of sales meetings scheduled today", "meetings_scheduled_per_day", DAILY),
    ("meetingsHeld", "Meetings Held",
     "Number of sales meetings run today", "meetings_held_per_day", DAILY),
    ("listings", "Listings Won",
     "Number of listings today", "listings_per_month", MONTHLY),
    ("appraisals", "Appraisals",
     "Number of in-person appraisals today", "appraisals_per_week", WEEKLY),
    ("listingPresentations", "Listing Presentations",
     "Number of listing presentations today", "listing_presentations_per_week", WEEKLY),
    ("offers", "Offers Presented",
     "Number of offers presented today", "offers_per_day", DAILY),
    ("groupPresentations", "Group Presentations",
     "Number of group sales presentations today", "group_presentations_per_week", WEEKLY),
]

SALES_COLUMN = "Current sales today ($)"
GCI_COLUMN = "Current GCI ($)"

LOG_COLUMNS = [m[2] for m in METRICS] + [SALES_COLUMN, GCI_COLUMN]

# Singular noun per metric for pace text
METRIC_UNITS = {
    "conversations": "conversation",
    "meetingsScheduled": "scheduled meeting",
    "meetingsHeld": "completed meeting",
    "listings": "listing",
    "appraisals": "appraisal",
    "listingPresentations": "listing presentation",
    "offers": "offer",
    "groupPresentations": "group presentation",
}

MONTH_DAYS = 28
WORKING_DAYS_PER_MONTH = 22

GREEN = "green"
AMBER = "amber"
RED = "red"

KPI_STATUS = {
    GREEN: "on target",
    AMBER: "at risk",
    RED: "off track",
}


def days_between(start, end) -> int:
    """Inclusive calendar-day count of a window."""
    start = parse_iso_date(start)
    end = parse_iso_date(end)
    return abs((end - start).days) + 1


def working_days(total_days: int) -> int:
    return WORKING_DAYS_PER_MONTH if total_days >= MONTH_DAYS else total_days


def period_targets(targets: UserTargets, start, end) -> dict:
    """Scale each metric target to the window: daily by working days, weekly by
    weeks (rounded up), monthly as-is."""
    total = days_between(start, end)
    wd = working_days(total)
    weeks = total / 7

    out = {}
    for key, _title, _column, field, cadence in METRICS:
        base = getattr(targets, field)
        if cadence == DAILY:
            out[key] = base * wd
        elif cadence == WEEKLY:
            out[key] = math.ceil(base * weeks)
        else:
            out[key] = base
    return out


def kpi_color(actual, target) -> str:
    if target == 0:
        return GREEN
    ratio = actual / target
    if ratio >= 1:
        return GREEN
    if ratio >= 0.6:
        return AMBER
    return RED


def calculate_percentage(actual, target) -> int:
    if target == 0:
        return 0
    return round((actual / target) * 100)


def metric_totals(logs: list[dict]) -> dict:
    totals = {key: 0 for key, *_ in METRICS}
    totals["sales"] = 0.0
    totals["gci"] = 0.0
    for log in logs:
        for key, _title, column, _field, _cadence in METRICS:
            totals[key] += safe_int(log.get(column))
        totals["sales"] += safe_float(log.get(SALES_COLUMN))
        totals["gci"] += safe_float(log.get(GCI_COLUMN))
    return totals


def active_metrics(targets: UserTargets) -> list[str]:
    return [key for key, _t, _c, field, _cad in METRICS if getattr(targets, field) > 0]


def summarize(targets: UserTargets, logs: list[dict], start, end) -> list[dict]:
    totals = metric_totals(logs)
    period = period_targets(targets, start, end)
    active = set(active_metrics(targets))

    cards = []
    for key, title, _column, _field, _cadence in METRICS:
        if key not in active:
            continue
        actual = totals[key]
        target = period[key]
        cards.append({
            "key": key,
            "title": title,
            "actual": actual,
            "target": target,
            "color": kpi_color(actual, target),
            "percentage": calculate_percentage(actual, target),
            "pace": pace_message(target - actual, METRIC_UNITS[key]),
        })

    # Money goals are monthly and not prorated
    for key, title, goal in (
        ("sales", "Sales", targets.monthly_sales_goal),
        ("gci", "GCI", targets.monthly_gci_goal),
    ):
        if goal > 0:
            cards.append({
                "key": key,
                "title": title,
                "actual": totals[key],
                "target": goal,
                "color": kpi_color(totals[key], goal),
                "percentage": calculate_percentage(totals[key], goal),
                "currency": True,
            })
    return cards


def format_currency(value) -> str:
    value = round(float(value or 0))
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,}"


def pace_message(needed: int, metric: str) -> str:
    if needed <= 0:
        return ""
    word = metric if needed == 1 else metric + "s"
    return f"{needed} more {word} to stay on track"


def month_bounds(d: date) -> tuple[date, date]:
    start = d.replace(day=1)
    if start.month == 12:
        nxt = start.replace(year=start.year + 1, month=1)
    else:
        nxt = start.replace(month=start.month + 1)
    return start, date.fromordinal(nxt.toordinal() - 1)
