"""
MySQL access for the App Hub API.

Every query is parameterized. Rows come back as dicts (snake_case columns)
and are mapped to the camelCase read models in `models`.
"""

from __future__ import annotations

import json
import os
import time
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from dotenv import load_dotenv

import mysql.connector

from models.app_data import AppData, AppDataCreate
from models.feedback import Feedback, FeedbackCreate, FeedbackStatus

load_dotenv()

# -------------------------------------------------------------------
# Config / connection helpers
# -------------------------------------------------------------------
DB_CFG = {
    "host": os.getenv("DB_HOST"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER"),
    "password": os.getenv("DB_PASSWORD"),
    "database": os.getenv("DB_NAME"),
}

_REQUIRED = ["DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME"]

DUPLICATE_KEY = 1062


def db() -> mysql.connector.MySQLConnection:
    missing = [k for k in _REQUIRED if not os.getenv(k)]
    if missing:
        raise RuntimeError(f"Missing required env vars: {', '.join(missing)}. Check your .env file.")
    return mysql.connector.connect(**DB_CFG)


def run(sql: str, params: tuple = (), fetch: str | None = None):
    """
    Execute SQL. fetch=None (no results), 'one' (single row), 'all' (all rows),
    'rowcount' (number of affected rows).
    """
    conn = db()
    try:
        cur = conn.cursor(dictionary=True)
        cur.execute(sql, params)
        rows = None
        if fetch == "one":
            rows = cur.fetchone()
        elif fetch == "all":
            rows = cur.fetchall()
        elif fetch == "rowcount":
            rows = cur.rowcount
        conn.commit()
        cur.close()
        return rows
    finally:
        conn.close()


def now_ms() -> int:
    return int(time.time() * 1000)


# -------------------------------------------------------------------
# Schema bootstrap (ids as VARCHAR, tech_stack / ai_insights JSON)
# -------------------------------------------------------------------
APPS_SCHEMA = """
CREATE TABLE IF NOT EXISTS apps (
  id VARCHAR(64) PRIMARY KEY,
  name VARCHAR(255) NOT NULL,
  description TEXT NOT NULL,
  github_url VARCHAR(2048) NULL,
  demo_url VARCHAR(2048) NULL,
  tech_stack JSON NOT NULL,
  created_at BIGINT NOT NULL,
  thumbnail_url VARCHAR(2048) NULL,
  image_url VARCHAR(2048) NULL,
  ai_insights JSON NULL,

  KEY ix_apps_created_at (created_at)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
"""

FEEDBACK_SCHEMA = """
CREATE TABLE IF NOT EXISTS feedback (
  id VARCHAR(64) PRIMARY KEY,
  app_id VARCHAR(64) NOT NULL,
  type ENUM('BUG', 'FEATURE', 'IMPROVEMENT', 'OTHER') NOT NULL,
  title VARCHAR(255) NOT NULL,
  description TEXT NOT NULL,
  created_at BIGINT NOT NULL,
  votes INT NOT NULL DEFAULT 0,
  status ENUM('OPEN', 'IN_PROGRESS', 'RESOLVED') NOT NULL DEFAULT 'OPEN',
  author VARCHAR(120) NOT NULL DEFAULT 'Anonymous',

  KEY ix_feedback_app (app_id, created_at),
  CONSTRAINT fk_feedback_app FOREIGN KEY (app_id) REFERENCES apps (id) ON DELETE CASCADE,
  CONSTRAINT ck_feedback_votes CHECK (votes >= 0)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
"""


def bootstrap_schema() -> None:
    run(APPS_SCHEMA)
    run(FEEDBACK_SCHEMA)
    run("SELECT 1", fetch="one")


# -------------------------------------------------------------------
# Mappers (DB row -> Pydantic)
# -------------------------------------------------------------------
def _decode_json(value) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode()
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _coerce_tech_stack(value) -> List[str]:
    decoded = _decode_json(value)
    if decoded is None:
        return []
    if isinstance(decoded, list):
        return [str(x) for x in decoded]
    return [s.strip() for s in str(decoded).split(",") if s.strip()]


def row_to_app(r: dict) -> AppData:
    return AppData(
        id=r["id"],
        name=r["name"],
        description=r["description"],
        github_url=r["github_url"],
        demo_url=r["demo_url"],
        tech_stack=_coerce_tech_stack(r["tech_stack"]),
        created_at=int(r["created_at"]),
        thumbnail_url=r["thumbnail_url"] or r["image_url"],
        image_url=r["image_url"] or r["thumbnail_url"],
        ai_insights=_decode_json(r["ai_insights"]),
    )


def row_to_feedback(r: dict) -> Feedback:
    return Feedback(
        id=r["id"],
        app_id=r["app_id"],
        type=r["type"],
        title=r["title"],
        description=r["description"],
        created_at=int(r["created_at"]),
        votes=r["votes"],
        status=r["status"],
        author=r["author"],
    )


def _dump_json(value) -> Optional[str]:
    return None if value is None else json.dumps(value)


# -------------------------------------------------------------------
# Apps
# -------------------------------------------------------------------
def list_apps(search: Optional[str] = None, tech_stack: Optional[Sequence[str]] = None) -> List[AppData]:
    where, params = [], []
    if search:
        pattern = f"%{search.lower()}%"
        where.append("(LOWER(name) LIKE %s OR LOWER(description) LIKE %s)")
        params.extend([pattern, pattern])
    if tech_stack:
        where.append("JSON_OVERLAPS(tech_stack, CAST(%s AS JSON))")
        params.append(json.dumps(list(tech_stack)))

    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    rows = run(
        f"SELECT * FROM apps {where_sql} ORDER BY created_at DESC, id DESC",
        tuple(params),
        fetch="all",
    ) or []
    return [row_to_app(r) for r in rows]


def fetch_app(app_id: str) -> Optional[AppData]:
    row = run("SELECT * FROM apps WHERE id=%s", (app_id,), fetch="one")
    return row_to_app(row) if row else None


def app_exists(app_id: str) -> bool:
    return run("SELECT id FROM apps WHERE id=%s", (app_id,), fetch="one") is not None


def insert_app(payload: AppDataCreate) -> AppData:
    aid = payload.id or str(uuid4())
    created_at = payload.created_at if payload.created_at is not None else now_ms()
    image = payload.image_url or payload.thumbnail_url
    run(
        """
        INSERT INTO apps
        (id, name, description, github_url, demo_url, tech_stack, created_at,
         thumbnail_url, image_url, ai_insights)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            aid, payload.name, payload.description,
            payload.github_url or None, payload.demo_url or None,
            json.dumps(payload.tech_stack), created_at,
            image, image, _dump_json(payload.ai_insights),
        ),
    )
    return fetch_app(aid)


APP_COLUMNS = [
    ("name", "name"),
    ("description", "description"),
    ("github_url", "github_url"),
    ("demo_url", "demo_url"),
    ("thumbnail_url", "thumbnail_url"),
    ("image_url", "image_url"),
]


def update_app(app_id: str, data: Dict[str, Any]) -> Optional[AppData]:
    """
    Apply a partial update. `data` holds snake_case keys; None values are
    treated as absent so existing columns are preserved.
    """
    data = {k: v for k, v in data.items() if v is not None}
    if "image_url" in data or "thumbnail_url" in data:
        image = data.get("image_url", data.get("thumbnail_url"))
        thumb = data.get("thumbnail_url", data.get("image_url"))
        data["image_url"], data["thumbnail_url"] = image, thumb

    fields, params = [], []
    def setf(col, val): fields.append(f"{col}=%s"); params.append(val)

    for key, col in APP_COLUMNS:
        if key in data:
            setf(col, data[key])
    if "tech_stack" in data:
        setf("tech_stack", json.dumps(data["tech_stack"]))
    if "ai_insights" in data:
        setf("ai_insights", _dump_json(data["ai_insights"]))

    if fields:
        params.append(app_id)
        run(f"UPDATE apps SET {', '.join(fields)} WHERE id=%s", tuple(params))
    return fetch_app(app_id)


def delete_app(app_id: str) -> bool:
    return bool(run("DELETE FROM apps WHERE id=%s", (app_id,), fetch="rowcount"))


# -------------------------------------------------------------------
# Feedback
# -------------------------------------------------------------------
def list_feedback(
    app_id: Optional[str] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
) -> List[Feedback]:
    where, params = [], []
    if app_id: where.append("app_id=%s"); params.append(app_id)
    if status: where.append("status=%s"); params.append(status)
    if type:   where.append("type=%s");   params.append(type)

    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    rows = run(
        f"SELECT * FROM feedback {where_sql} ORDER BY created_at DESC, id DESC",
        tuple(params),
        fetch="all",
    ) or []
    return [row_to_feedback(r) for r in rows]


def fetch_feedback(feedback_id: str) -> Optional[Feedback]:
    row = run("SELECT * FROM feedback WHERE id=%s", (feedback_id,), fetch="one")
    return row_to_feedback(row) if row else None


def insert_feedback(payload: FeedbackCreate) -> Feedback:
    fid = payload.id or str(uuid4())
    created_at = payload.created_at if payload.created_at is not None else now_ms()
    run(
        """
        INSERT INTO feedback
        (id, app_id, type, title, description, created_at, votes, status, author)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            fid, payload.app_id, payload.type.value, payload.title, payload.description,
            created_at, payload.votes or 0,
            (payload.status or FeedbackStatus.OPEN).value, payload.author,
        ),
    )
    return fetch_feedback(fid)


FEEDBACK_COLUMNS = ["type", "title", "description", "votes", "status"]


def update_feedback(feedback_id: str, data: Dict[str, Any]) -> Optional[Feedback]:
    fields, params = [], []
    for col in FEEDBACK_COLUMNS:
        value = data.get(col)
        if value is None:
            continue
        fields.append(f"{col}=%s")
        params.append(getattr(value, "value", value))

    if fields:
        params.append(feedback_id)
        run(f"UPDATE feedback SET {', '.join(fields)} WHERE id=%s", tuple(params))
    return fetch_feedback(feedback_id)


def vote_feedback(feedback_id: str, increment: int = 1) -> Optional[Feedback]:
    # single statement so concurrent votes add up server-side
    run(
        "UPDATE feedback SET votes = GREATEST(CAST(votes AS SIGNED) + %s, 0) WHERE id=%s",
        (increment, feedback_id),
    )
    return fetch_feedback(feedback_id)


def delete_feedback(feedback_id: str) -> bool:
    return bool(run("DELETE FROM feedback WHERE id=%s", (feedback_id,), fetch="rowcount"))
