"""SQLite store (WAL) for duration samples, fitted models and custom presets."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from wrench.models import (
    FeatureNormalization,
    PcFingerprint,
    PresetEntry,
    ServiceModelWeights,
    ServicePreset,
    ServiceTimeSample,
)

logger = logging.getLogger("wrench.store")

SCHEMA_VERSION = "3"

# '' stands for "no options" in key columns; NULL would defeat the primary key
_MODELS_SQL = """\
CREATE TABLE IF NOT EXISTS models (
    target_id     TEXT NOT NULL,
    options_key   TEXT NOT NULL DEFAULT '',
    bias          REAL NOT NULL,
    weights       TEXT NOT NULL,
    means         TEXT NOT NULL,
    stds          TEXT NOT NULL,
    sample_count  INTEGER NOT NULL,
    r_squared     REAL NOT NULL DEFAULT 0.0,
    fitted_at     TEXT NOT NULL,
    PRIMARY KEY (target_id, options_key)
)"""


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _migrate_v2(conn: sqlite3.Connection) -> None:
    """Version 2 records the weighted R-squared of every fit."""
    if "r_squared" not in _columns(conn, "models"):
        conn.execute("ALTER TABLE models ADD COLUMN r_squared REAL NOT NULL DEFAULT 0.0")


def _migrate_v3(conn: sqlite3.Connection) -> None:
    """Version 3 keys samples and models by option set as well as target."""
    if "options_key" not in _columns(conn, "samples"):
        conn.execute("ALTER TABLE samples ADD COLUMN options_key TEXT NOT NULL DEFAULT ''")
    if "options_key" not in _columns(conn, "models"):
        # The primary key changes, so the table is rebuilt
        conn.execute("ALTER TABLE models RENAME TO models_v2")
        conn.execute(_MODELS_SQL)
        conn.execute(
            """INSERT INTO models(target_id, options_key, bias, weights, means, stds,
                                  sample_count, r_squared, fitted_at)
               SELECT target_id, '', bias, weights, means, stds,
                      sample_count, r_squared, fitted_at
               FROM models_v2"""
        )
        conn.execute("DROP TABLE models_v2")


# Migration functions keyed by target version.
# Each function receives a sqlite3.Connection and migrates from (version - 1).
_MIGRATIONS: dict[str, Callable[[sqlite3.Connection], None]] = {
    "2": _migrate_v2,
    "3": _migrate_v3,
}

_SCHEMA_SQL = f"""\
CREATE TABLE IF NOT EXISTS wrench_meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS samples (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    target_id         TEXT NOT NULL,
    fingerprint       TEXT NOT NULL,
    duration_seconds  REAL NOT NULL CHECK (duration_seconds > 0),
    recorded_at       TEXT NOT NULL,
    options_key       TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_samples_target_time
    ON samples(target_id, recorded_at);

{_MODELS_SQL};

CREATE TABLE IF NOT EXISTS custom_presets (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    entries      TEXT NOT NULL DEFAULT '[]',
    saved_at     TEXT NOT NULL
);
"""


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def _entries_to_json(entries: tuple[PresetEntry, ...]) -> str:
    return json.dumps(
        [
            {"service_id": e.service_id, "options": dict(e.options), "enabled": e.enabled}
            for e in entries
        ]
    )


def _entries_from_json(s: str) -> tuple[PresetEntry, ...]:
    return tuple(
        PresetEntry(d["service_id"], d.get("options", {}), d.get("enabled", True))
        for d in json.loads(s)
    )


def _sample_from_row(row: tuple) -> ServiceTimeSample:
    return ServiceTimeSample(
        target_id=row[0],
        fingerprint=PcFingerprint.from_dict(json.loads(row[1])),
        duration_seconds=row[2],
        recorded_at=datetime.fromisoformat(row[3]),
        options_key=row[4] or None,
    )


def _model_from_row(row: tuple) -> ServiceModelWeights:
    return ServiceModelWeights(
        target_id=row[0],
        options_key=row[1] or None,
        bias=row[2],
        weights=tuple(json.loads(row[3])),
        normalization=FeatureNormalization(
            means=tuple(json.loads(row[4])), stds=tuple(json.loads(row[5]))
        ),
        sample_count=row[6],
        r_squared=row[7],
        fitted_at=datetime.fromisoformat(row[8]),
    )


_MODEL_COLUMNS = (
    "target_id, options_key, bias, weights, means, stds, sample_count, r_squared, fitted_at"
)


class WrenchStore:
    """SQLite-backed store shared by the estimator and the preset catalog.

    The connection is used from the coordinator's worker thread as well as the
    caller's, so every access goes through one re-entrant lock.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def __enter__(self) -> WrenchStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        with self._lock:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA_SQL)
            self._ensure_schema_version()
            self._run_migrations()

    def _ensure_schema_version(self) -> None:
        """Set schema version on first run."""
        cur = self.conn.execute("SELECT value FROM wrench_meta WHERE key='schema_version'")
        if cur.fetchone() is None:
            self.conn.execute(
                "INSERT INTO wrench_meta(key, value) VALUES ('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            self.conn.commit()

    def _run_migrations(self) -> None:
        """Apply any pending migrations sequentially."""
        current = self.get_meta("schema_version") or "0"
        if current == SCHEMA_VERSION:
            return

        for version_num in range(int(current) + 1, int(SCHEMA_VERSION) + 1):
            version_key = str(version_num)
            migrate_fn = _MIGRATIONS.get(version_key)
            if migrate_fn is None:
                raise RuntimeError(f"Missing migration for schema version {version_key}")
            logger.info("Migrating store schema to version %s", version_key)
            migrate_fn(self.conn)
            self.conn.execute(
                "INSERT OR REPLACE INTO wrench_meta(key, value) VALUES ('schema_version', ?)",
                (version_key,),
            )
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Store is not open")
        return self._conn

    # --- Samples ---

    def add_sample(self, sample: ServiceTimeSample) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO samples(
                       target_id, fingerprint, duration_seconds, recorded_at, options_key)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    sample.target_id,
                    json.dumps(sample.fingerprint.to_dict()),
                    sample.duration_seconds,
                    _iso(sample.recorded_at),
                    sample.options_key or "",
                ),
            )
            self.conn.commit()

    def samples_for(self, target_id: str) -> list[ServiceTimeSample]:
        """All samples for a target, with any options, oldest first."""
        with self._lock:
            cur = self.conn.execute(
                """SELECT target_id, fingerprint, duration_seconds, recorded_at, options_key
                   FROM samples WHERE target_id=? ORDER BY recorded_at, id""",
                (target_id,),
            )
            return [_sample_from_row(r) for r in cur.fetchall()]

    def sample_targets(self) -> list[str]:
        with self._lock:
            cur = self.conn.execute("SELECT DISTINCT target_id FROM samples ORDER BY target_id")
            return [r[0] for r in cur.fetchall()]

    def count_samples(self, target_id: str | None = None) -> int:
        with self._lock:
            if target_id is None:
                cur = self.conn.execute("SELECT COUNT(*) FROM samples")
            else:
                cur = self.conn.execute(
                    "SELECT COUNT(*) FROM samples WHERE target_id=?", (target_id,)
                )
            return cur.fetchone()[0]

    def trim_samples(self, target_id: str, keep: int) -> int:
        """Delete all but the newest ``keep`` samples of a target. Returns rows removed."""
        with self._lock:
            cur = self.conn.execute(
                """DELETE FROM samples WHERE target_id=? AND id NOT IN (
                       SELECT id FROM samples WHERE target_id=?
                       ORDER BY recorded_at DESC, id DESC LIMIT ?
                   )""",
                (target_id, target_id, keep),
            )
            self.conn.commit()
            return cur.rowcount

    def delete_samples(self, target_id: str | None = None) -> int:
        with self._lock:
            if target_id is None:
                cur = self.conn.execute("DELETE FROM samples")
            else:
                cur = self.conn.execute("DELETE FROM samples WHERE target_id=?", (target_id,))
            self.conn.commit()
            return cur.rowcount

    # --- Models ---

    def save_model(self, model: ServiceModelWeights) -> None:
        with self._lock:
            self.conn.execute(
                f"INSERT OR REPLACE INTO models({_MODEL_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    model.target_id,
                    model.options_key or "",
                    model.bias,
                    json.dumps(list(model.weights)),
                    json.dumps(list(model.normalization.means)),
                    json.dumps(list(model.normalization.stds)),
                    model.sample_count,
                    model.r_squared,
                    _iso(model.fitted_at),
                ),
            )
            self.conn.commit()

    def get_model(
        self, target_id: str, options_key: str | None = None
    ) -> ServiceModelWeights | None:
        with self._lock:
            cur = self.conn.execute(
                f"SELECT {_MODEL_COLUMNS} FROM models WHERE target_id=? AND options_key=?",
                (target_id, options_key or ""),
            )
            row = cur.fetchone()
        return _model_from_row(row) if row else None

    def list_models(self) -> list[ServiceModelWeights]:
        with self._lock:
            cur = self.conn.execute(
                f"SELECT {_MODEL_COLUMNS} FROM models ORDER BY target_id, options_key"
            )
            return [_model_from_row(r) for r in cur.fetchall()]

    def delete_model(self, target_id: str | None = None) -> int:
        """Delete every model of a target (all option sets), or all models."""
        with self._lock:
            if target_id is None:
                cur = self.conn.execute("DELETE FROM models")
            else:
                cur = self.conn.execute("DELETE FROM models WHERE target_id=?", (target_id,))
            self.conn.commit()
            return cur.rowcount

    # --- Custom presets ---

    def save_preset(self, preset: ServicePreset) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO custom_presets(id, name, description, entries, saved_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    preset.id,
                    preset.name,
                    preset.description,
                    _entries_to_json(preset.entries),
                    _iso(datetime.now(timezone.utc)),
                ),
            )
            self.conn.commit()

    def get_preset(self, preset_id: str) -> ServicePreset | None:
        with self._lock:
            cur = self.conn.execute(
                "SELECT id, name, description, entries FROM custom_presets WHERE id=?",
                (preset_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return ServicePreset(
            id=row[0], name=row[1], description=row[2], entries=_entries_from_json(row[3])
        )

    def list_presets(self) -> list[ServicePreset]:
        with self._lock:
            cur = self.conn.execute(
                "SELECT id, name, description, entries FROM custom_presets ORDER BY name"
            )
            rows = cur.fetchall()
        return [
            ServicePreset(id=r[0], name=r[1], description=r[2], entries=_entries_from_json(r[3]))
            for r in rows
        ]

    def delete_preset(self, preset_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM custom_presets WHERE id=?", (preset_id,))
            self.conn.commit()
            return cur.rowcount > 0

    # --- Meta ---

    def get_meta(self, key: str) -> str | None:
        with self._lock:
            cur = self.conn.execute("SELECT value FROM wrench_meta WHERE key=?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO wrench_meta(key, value) VALUES (?, ?)",
                (key, value),
            )
            self.conn.commit()
