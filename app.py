from flask import (
    Flask, request, render_template_string, redirect, url_for,
    session, jsonify, g
)
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlencode
import os
import logging
import secrets

import requests

from allowlist import AllowList
from kpi import KPI_STATUS, LOG_COLUMNS, format_currency, month_bounds, summarize
from resolver import Resolver, TASK_SLOTS
from sheets import SheetsStore
from timezones import offset_to_zone, parse_iso_date, today_in_zone


app = Flask(__name__)

# ---------------- CONFIG ----------------
APP_VERSION = "V1.0.0"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

SPREADSHEET_ID = os.environ.get("GOOGLE_SHEETS_SPREADSHEET_ID", "").strip()
GOOGLE_SHEETS_CREDENTIALS = os.environ.get("GOOGLE_SHEETS_CREDENTIALS", "").strip()

# ---------------- GOOGLE SIGN-IN CONFIG ----------------
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "").strip()
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "").strip()
OAUTH_REDIRECT_URL = os.environ.get("OAUTH_REDIRECT_URL", "").strip()

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


# ---------------- Store ----------------
_store = None
_allow_list = None


def get_store():
    global _store
    if _store is None:
        _store = SheetsStore(SPREADSHEET_ID, GOOGLE_SHEETS_CREDENTIALS)
    return _store


def get_allow_list() -> AllowList:
    global _allow_list
    if _allow_list is None:
        _allow_list = AllowList(get_store())
    return _allow_list


def request_now() -> datetime:
    # One "now" per request so every lookup agrees on today
    if "now" not in g:
        g.now = datetime.now(timezone.utc)
    return g.now


def get_resolver() -> Resolver:
    if "resolver" not in g:
        g.resolver = Resolver(get_store(), now=request_now())
    return g.resolver


# ---------------- Auth ----------------
def is_logged_in() -> bool:
    return bool(session.get("email"))


def current_email() -> str:
    return session.get("email") or ""


def require_login():
    if not is_logged_in():
        return redirect(url_for("login", next=request.path))
    return None


def require_api_login():
    if not is_logged_in():
        return jsonify({"error": "Unauthorized"}), 401
    return None


def sign_in_configured() -> bool:
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def oauth_redirect_uri() -> str:
    return OAUTH_REDIRECT_URL or url_for("auth_callback", _external=True)


def safe_next(url) -> str:
    # Only same-site paths
    if url and url.startswith("/") and not url.startswith("//"):
        return url
    return url_for("index")


def google_email_for_code(code: str):
    """Swap an authorization code for the signed-in Google account's email."""
    r = requests.post(GOOGLE_TOKEN_URL, data={
        "code": code,
        "client_id": GOOGLE_CLIENT_ID,
        "client_secret": GOOGLE_CLIENT_SECRET,
        "redirect_uri": oauth_redirect_uri(),
        "grant_type": "authorization_code",
    }, timeout=10)
    r.raise_for_status()
    access_token = r.json().get("access_token")
    if not access_token:
        return None

    r = requests.get(
        GOOGLE_USERINFO_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=10,
    )
    r.raise_for_status()
    info = r.json()
    if not info.get("email") or not info.get("email_verified", False):
        return None
    return info["email"].strip()


# ---------------- Request parsing ----------------
def parse_date_range(start_raw, end_raw):
    """(start, end, error) from two YYYY-MM-DD strings."""
    if not start_raw or not end_raw:
        return None, None, "Start and end dates required"
    start = parse_iso_date(start_raw)
    end = parse_iso_date(end_raw)
    if start is None or end is None:
        return None, None, "Dates must be YYYY-MM-DD"
    if start > end:
        return None, None, "startDate must not be after endDate"
    return start, end, None


def parse_task_id(value):
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value not in TASK_SLOTS:
        return None
    return value


def is_cell_value(value) -> bool:
    return value is None or isinstance(value, (str, int, float))


def bad_request(message: str):
    return jsonify({"error": message}), 400


def get_week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())  # Monday start


def resolve_period(period: str, today: date):
    if period == "today":
        return today, today
    if period == "week":
        start = get_week_start(today)
        return start, start + timedelta(days=6)
    return month_bounds(today)


def period_label(start: date, end: date) -> str:
    def fmt(x: date):
        return f"{x.day}/{x.month}/{str(x.year)[-2:]}"
    if start == end:
        return fmt(start)
    return f"{fmt(start)}–{fmt(end)}"


# ---------------- UI ----------------
BASE_STYLE = """
    :root{
      --bgA:#f4f7fb; --bgB:#dde7f3;
      --text:#0f172a; --muted:#475569;
      --card:rgba(255,255,255,.94);
      --border:rgba(15,23,42,.10);
      --shadow:0 14px 34px rgba(0,0,0,.10);
      --primary:#1d4ed8;
      --green:#10b981; --amber:#f97316; --red:#f43f5e;
      --focus: rgba(29,78,216,.20);
    }
    *{ box-sizing:border-box; }
    body{
      margin:0; padding:12px;
      font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif;
      color: var(--text);
      background: linear-gradient(180deg, var(--bgA) 0%, var(--bgB) 100%);
      min-height: 100vh;
    }
    .card{
      background: var(--card); border: 1px solid var(--border); border-radius: 18px;
      box-shadow: var(--shadow); padding: 14px;
    }
    input, select{
      height: 42px; padding: 0 10px; border-radius: 12px; border: 1px solid rgba(15,23,42,.18);
      font-size: 14px; font-weight: 700; width: 100%; min-width: 0; background: #fff;
    }
    input:focus, select:focus{ outline:none; box-shadow: 0 0 0 4px var(--focus); }
    button, a.btn{
      height: 42px; padding: 0 14px; border-radius: 12px; border: 1px solid rgba(15,23,42,.14);
      background: #fff; cursor:pointer; font-weight: 900; font-size: 14px; text-decoration:none;
      color: inherit; display:inline-flex; align-items:center; justify-content:center;
    }
    .btn-primary{ background: var(--primary); color:#fff; border-color: rgba(29,78,216,.3); }
    footer{ margin-top: 12px; text-align:center; color: rgba(15,23,42,.55); font-weight: 900; font-size: 12px; }
"""

LOGIN_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Sign in • Sales Accountability</title>
  <style>
    {{ base_style|safe }}
    body{ display:flex; align-items:center; justify-content:center; }
    .card{ width: min(460px, 100%); }
    h1{ margin:0 0 6px; font-size: 18px; font-weight: 950; }
    p{ margin: 0 0 14px; color: var(--muted); font-weight: 700; font-size: 13px; }
    .err{
      margin-top: 12px; padding: 10px 12px; border-radius: 12px;
      border: 1px solid rgba(244,63,94,.3); background: rgba(244,63,94,.10);
      font-weight: 800; font-size: 13px;
    }
    a.btn{ width:100%; }
  </style>
</head>
<body>
  <div class="card">
    <h1>Sales Accountability</h1>
    <p>Sign in with the Google account your manager registered.</p>
    {% if configured %}
      <a class="btn btn-primary" href="{{ url_for('auth_google', next=next_url) }}">Sign in with Google</a>
    {% else %}
      <div class="err">Google sign-in is not configured (set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET).</div>
    {% endif %}
    {% if error %}
      <div class="err">{{ error }}</div>
    {% endif %}
    <footer>{{ version }}</footer>
  </div>
</body>
</html>
"""

HTML_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Sales Accountability</title>
  <style>
    {{ base_style|safe }}
    .wrap{ max-width: 1100px; margin: 0 auto; }
    .topbar{ display:flex; flex-wrap:wrap; align-items:center; justify-content:space-between; gap:10px; }
    .topbar h1{ font-size: 15px; margin:0; font-weight: 950; }
    .sub{ font-size: 12px; color: var(--muted); font-weight: 800; }
    .tabs{ display:flex; gap:8px; flex-wrap:wrap; }
    .tabs a.active{ background: var(--primary); color:#fff; }
    .flash{ margin-top:12px; padding: 10px 12px; border-radius: 14px; font-weight: 850; font-size: 13px; }
    .flash.ok{ background: rgba(16,185,129,.12); border: 1px solid rgba(16,185,129,.25); }
    .flash.bad{ background: rgba(244,63,94,.10); border: 1px solid rgba(244,63,94,.28); }
    .kpis{ display:grid; grid-template-columns: repeat(auto-fill, minmax(220px, 1fr)); gap: 12px; margin-top: 12px; }
    .kpi h3{ margin:0 0 8px; font-size: 13px; font-weight: 900; }
    .kpi .value{ font-size: 30px; font-weight: 950; }
    .kpi .target{ font-size: 12px; color: var(--muted); font-weight: 800; margin-bottom: 10px; }
    .bar{ height: 9px; border-radius: 999px; background: rgba(15,23,42,.08); overflow:hidden; }
    .bar > div{ height: 100%; border-radius: 999px; }
    .bar .green{ background: var(--green); } .bar .amber{ background: var(--amber); } .bar .red{ background: var(--red); }
    .status{ font-size: 11px; text-transform: uppercase; letter-spacing: .06em; font-weight: 900; margin-top: 6px; color: var(--muted); }
    .grid2{ display:grid; grid-template-columns: 1fr; gap: 12px; margin-top: 12px; }
    @media (min-width: 900px){ .grid2{ grid-template-columns: 1fr 1fr; } }
    .sectionHead{ font-weight: 950; font-size: 12px; text-transform: uppercase; letter-spacing: .04em; margin-bottom: 10px; color: rgba(15,23,42,.75); }
    form.row{ display:flex; gap:8px; align-items:center; margin-bottom: 8px; }
    .logGrid{ display:grid; grid-template-columns: 1fr 110px; gap: 8px; align-items:center; font-size: 13px; font-weight: 800; }
    .done{ text-decoration: line-through; color: var(--muted); }
    .pace{ font-size: 12px; font-weight: 800; margin-top: 4px; color: var(--red); }
  </style>
</head>
<body>
  <div class="wrap">
    <div class="card topbar">
      <div>
        <h1>Sales Accountability</h1>
        <div class="sub">Signed in as <b>{{ email }}</b> · {{ range_label }}</div>
      </div>
      <div class="tabs">
        {% for key, label in periods %}
          <a class="btn {% if key == period %}active{% endif %}" href="{{ url_for('index', period=key) }}">{{ label }}</a>
        {% endfor %}
        <a class="btn" href="{{ url_for('logout') }}">Logout</a>
      </div>
    </div>

    {% if message %}
      <div class="flash {{ 'ok' if ok else 'bad' }}">{{ message }}</div>
    {% endif %}

    {% if not targets %}
      <div class="card" style="margin-top:12px">No targets found for your account yet.</div>
    {% else %}
      <div class="kpis">
        {% for c in cards %}
          <div class="card kpi">
            <h3>{{ c.title }}</h3>
            <div class="value">{{ money(c.actual) if c.currency else c.actual }}</div>
            <div class="target">Target is: {{ money(c.target) if c.currency else c.target }}</div>
            <div class="bar"><div class="{{ c.color }}" style="width: {{ [c.percentage, 100]|min }}%"></div></div>
            <div class="status">{{ status[c.color] }} · {{ c.percentage }}%</div>
            {% if c.pace %}<div class="pace">{{ c.pace }}</div>{% endif %}
          </div>
        {% endfor %}
      </div>

      <div class="grid2">
        <div class="card">
          <div class="sectionHead">Today's tasks</div>
          {% for slot in slots %}
            {% set t = tasks_by_id.get(slot) %}
            <form class="row" method="POST" action="{{ url_for('index', period=period) }}">
              <input type="hidden" name="task_id" value="{{ slot }}">
              {% if t %}
                <button type="submit" name="action" value="toggle" title="Toggle done">{{ '✅' if t.completed else '⬜' }}</button>
                <input type="hidden" name="completed" value="{{ '0' if t.completed else '1' }}">
              {% endif %}
              <input type="text" name="task_text" value="{{ t.task if t else '' }}" placeholder="Task {{ slot }}" class="{{ 'done' if t and t.completed else '' }}">
              <button type="submit" name="action" value="task">Save</button>
            </form>
          {% endfor %}
        </div>

        <div class="card">
          <div class="sectionHead">Log today</div>
          <form method="POST" action="{{ url_for('index', period=period) }}">
            <input type="hidden" name="action" value="log">
            <div class="logGrid">
              {% for column in log_columns %}
                <label for="f{{ loop.index }}">{{ column }}</label>
                <input id="f{{ loop.index }}" type="number" min="0" step="any" name="{{ column }}" value="{{ today_log.get(column) or '' }}">
              {% endfor %}
            </div>
            <div style="margin-top:10px"><button class="btn-primary" type="submit">Save today's numbers</button></div>
          </form>
        </div>
      </div>
    {% endif %}

    <footer>{{ version }}</footer>
  </div>
</body>
</html>
"""

PERIODS = [("today", "Today"), ("week", "This week"), ("month", "This month")]


# ---------------- Routes ----------------
@app.route("/login")
def login():
    next_url = safe_next(request.args.get("next"))
    error = request.args.get("error")
    return render_template_string(
        LOGIN_PAGE,
        base_style=BASE_STYLE,
        configured=sign_in_configured(),
        error=error,
        next_url=next_url,
        version=APP_VERSION,
    )


@app.route("/auth/google")
def auth_google():
    if not sign_in_configured():
        return redirect(url_for("login", error="Google sign-in is not configured."))

    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    session["oauth_next"] = safe_next(request.args.get("next"))
    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": oauth_redirect_uri(),
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "prompt": "select_account",
    }
    return redirect(f"{GOOGLE_AUTH_URL}?{urlencode(params)}")


@app.route("/auth/callback")
def auth_callback():
    expected = session.pop("oauth_state", None)
    next_url = safe_next(session.pop("oauth_next", None))

    if not expected or request.args.get("state") != expected:
        return redirect(url_for("login", error="Sign-in expired. Please try again."))
    if request.args.get("error"):
        return redirect(url_for("login", error="Sign-in was cancelled."))

    code = request.args.get("code") or ""
    if not code:
        return redirect(url_for("login", error="Sign-in failed."))

    try:
        email = google_email_for_code(code)
    except Exception:
        logger.exception("Google token exchange failed")
        email = None

    if not email:
        return redirect(url_for("login", error="Could not read a verified email from Google."))

    if not get_allow_list().is_allowed(email):
        logger.warning("Rejected sign-in for %s (not on the allow-list)", email)
        return redirect(url_for("login", error="This account is not registered for the dashboard."))

    session.clear()
    session["email"] = email
    logger.info("Signed in %s", email)
    return redirect(next_url)


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("login"))


@app.route("/api/logs", methods=["GET"])
def api_get_logs():
    gate = require_api_login()
    if gate:
        return gate

    start, end, error = parse_date_range(request.args.get("startDate"), request.args.get("endDate"))
    if error:
        return bad_request(error)

    logs = get_resolver().get_daily_logs(current_email(), start, end)
    return jsonify(logs)


@app.route("/api/logs", methods=["PUT"])
def api_put_logs():
    gate = require_api_login()
    if gate:
        return gate

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("logData"), dict):
        return bad_request("logData object required")
    log_data = data["logData"]
    if not all(isinstance(k, str) and is_cell_value(v) for k, v in log_data.items()):
        return bad_request("logData values must be text or numbers")

    if not get_resolver().update_today_log(current_email(), log_data):
        return jsonify({"error": "Failed to update log"}), 500
    return jsonify({"success": True})


@app.route("/api/targets", methods=["GET"])
def api_get_targets():
    gate = require_api_login()
    if gate:
        return gate

    targets = get_resolver().get_user_targets(current_email())
    if targets is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify(targets.to_json())


@app.route("/api/kpis", methods=["GET"])
def api_get_kpis():
    gate = require_api_login()
    if gate:
        return gate

    start, end, error = parse_date_range(request.args.get("startDate"), request.args.get("endDate"))
    if error:
        return bad_request(error)

    resolver = get_resolver()
    targets = resolver.get_user_targets(current_email())
    if targets is None:
        return jsonify({"error": "User not found"}), 404
    logs = resolver.get_daily_logs(current_email(), start, end)
    return jsonify({
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "kpis": summarize(targets, logs, start, end),
    })


@app.route("/api/tasks", methods=["GET"])
def api_get_tasks():
    gate = require_api_login()
    if gate:
        return gate

    start_raw = request.args.get("startDate")
    end_raw = request.args.get("endDate")
    if not start_raw and not end_raw:
        return jsonify(get_resolver().get_tasks(current_email()))

    start, end, error = parse_date_range(start_raw, end_raw)
    if error:
        return bad_request(error)
    return jsonify(get_resolver().get_tasks(current_email(), start, end))


@app.route("/api/tasks", methods=["PATCH"])
def api_patch_task():
    gate = require_api_login()
    if gate:
        return gate

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return bad_request("Invalid request")
    task_id = parse_task_id(data.get("taskId"))
    completed = data.get("completed")
    task_date = data.get("taskDate")
    if task_id is None or not isinstance(completed, bool):
        return bad_request("Invalid request")
    if task_date is not None and not isinstance(task_date, str):
        return bad_request("taskDate must be a d/M/yyyy string")

    if not get_resolver().update_task_completion(current_email(), task_id, completed, task_date or None):
        return jsonify({"error": "Failed to update task"}), 500
    return jsonify({"success": True})


@app.route("/api/tasks", methods=["PUT"])
def api_put_task():
    gate = require_api_login()
    if gate:
        return gate

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return bad_request("Invalid request")
    task_id = parse_task_id(data.get("taskId"))
    task_text = data.get("taskText")
    row_index = data.get("rowIndex")
    if task_id is None or not isinstance(task_text, str):
        return bad_request("Invalid request")
    if row_index is not None and (isinstance(row_index, bool) or not isinstance(row_index, int)):
        return bad_request("rowIndex must be a number")

    if not get_resolver().update_task_text(current_email(), task_id, task_text, row_index):
        return jsonify({"error": "Failed to update task"}), 500
    return jsonify({"success": True})


def handle_dashboard_post(resolver: Resolver, email: str):
    action = request.form.get("action", "")

    if action == "log":
        fields = {
            column: (request.form.get(column) or "").strip()
            for column in LOG_COLUMNS
            if column in request.form
        }
        ok = resolver.update_today_log(email, fields)
        return ("Saved today's numbers." if ok else "Could not save today's numbers."), ok

    task_id = parse_task_id(_int_or_none(request.form.get("task_id")))
    if task_id is None:
        return "Unknown task.", False

    if action == "task":
        text = (request.form.get("task_text") or "").strip()
        ok = resolver.update_task_text(email, task_id, text)
        return ("Task saved." if ok else "Could not save the task."), ok

    if action == "toggle":
        completed = request.form.get("completed") == "1"
        ok = resolver.update_task_completion(email, task_id, completed)
        return ("Task updated." if ok else "Could not update the task."), ok

    return "Unknown action.", False


def _int_or_none(raw):
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@app.route("/", methods=["GET", "POST"])
def index():
    gate = require_login()
    if gate:
        return gate

    email = current_email()
    period = request.args.get("period") or "month"
    if period not in dict(PERIODS):
        period = "month"

    resolver = get_resolver()

    if request.method == "POST":
        msg, ok = handle_dashboard_post(resolver, email)
        return redirect(url_for("index", period=period, msg=msg, ok="1" if ok else "0"))

    message = request.args.get("msg")
    ok = (request.args.get("ok", "1") == "1")

    targets = resolver.get_user_targets(email)
    if targets is not None:
        today = today_in_zone(offset_to_zone(targets.timezone), request_now())
    else:
        today = request_now().date()
    start, end = resolve_period(period, today)

    cards, tasks, today_log = [], [], {}
    if targets is not None:
        logs = resolver.get_daily_logs(email, start, end)
        cards = summarize(targets, logs, start, end)
        tasks = resolver.get_tasks(email)
        todays = resolver.get_daily_logs(email, today, today)
        today_log = todays[-1] if todays else {}

    tasks_by_id = {t["id"]: t for t in tasks} if isinstance(tasks, list) else {}

    return render_template_string(
        HTML_PAGE,
        base_style=BASE_STYLE,
        email=email,
        period=period,
        periods=PERIODS,
        range_label=period_label(start, end),
        message=message,
        ok=ok,
        targets=targets,
        cards=cards,
        status=KPI_STATUS,
        money=format_currency,
        slots=TASK_SLOTS,
        tasks_by_id=tasks_by_id,
        log_columns=LOG_COLUMNS,
        today_log=today_log,
        version=APP_VERSION,
    )


@app.route("/healthz")
def healthz():
    return {
        "ok": True,
        "version": APP_VERSION,
        "utc_today": datetime.now(timezone.utc).date().isoformat(),
    }


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "10000"))
    app.run(host="0.0.0.0", port=port)
