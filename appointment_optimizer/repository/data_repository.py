"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from appointment_optimizer.domain.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    Priority,
    Resource,
    ResourceType,
)
from appointment_optimizer.domain.schedule import Schedule
from appointment_optimizer.utils.config import Settings, get_settings
from appointment_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

_REQUIRED = "REQUIRED"
_PREFERRED = "PREFERRED"


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


class DataRepository:
    """Encapsulates SQLite access so the optimizers stay storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS resources (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        resource_type TEXT NOT NULL,
                        cost_per_hour REAL NOT NULL CHECK (cost_per_hour >= 0),
                        capacity INTEGER NOT NULL CHECK (capacity >= 1),
                        is_active INTEGER NOT NULL CHECK (is_active IN (0,1)),
                        available_from TEXT,
                        available_to TEXT
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS resource_capabilities (
                        resource_id TEXT NOT NULL,
                        capability TEXT NOT NULL,
                        PRIMARY KEY (resource_id, capability),
                        FOREIGN KEY (resource_id) REFERENCES resources(id) ON DELETE CASCADE
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS resource_conflicts (
                        resource_id TEXT NOT NULL,
                        conflicting_resource_id TEXT NOT NULL,
                        PRIMARY KEY (resource_id, conflicting_resource_id),
                        FOREIGN KEY (resource_id) REFERENCES resources(id) ON DELETE CASCADE
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS appointments (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        start_time TEXT NOT NULL,
                        duration_minutes REAL NOT NULL CHECK (duration_minutes >= 0),
                        appointment_type TEXT NOT NULL,
                        priority TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        resource_id TEXT,
                        client_id TEXT,
                        is_flexible INTEGER NOT NULL DEFAULT 0,
                        flexibility_window_minutes REAL NOT NULL DEFAULT 0,
                        importance_score REAL NOT NULL DEFAULT 1.0 CHECK (importance_score > 0)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS appointment_capabilities (
                        appointment_id TEXT NOT NULL,
                        capability TEXT NOT NULL,
                        kind TEXT NOT NULL CHECK (kind IN ('REQUIRED','PREFERRED')),
                        PRIMARY KEY (appointment_id, capability, kind),
                        FOREIGN KEY (appointment_id) REFERENCES appointments(id) ON DELETE CASCADE
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schedules (
                        id TEXT PRIMARY KEY,
                        algorithm TEXT NOT NULL,
                        total_cost REAL NOT NULL,
                        total_score REAL NOT NULL,
                        conflict_count INTEGER NOT NULL,
                        efficiency_score REAL NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schedule_assignments (
                        schedule_id TEXT NOT NULL,
                        appointment_id TEXT NOT NULL,
                        resource_id TEXT,
                        PRIMARY KEY (schedule_id, appointment_id),
                        FOREIGN KEY (schedule_id) REFERENCES schedules(id) ON DELETE CASCADE
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_appointments_status_start
                    ON appointments(status, start_time);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def save_resources(self, resources: Iterable[Resource]) -> int:
        """Insert or replace resources together with capability and conflict sets."""
        saved = 0
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                for resource in resources:
                    cursor.execute(
                        """
                        INSERT OR REPLACE INTO resources (
                            id, name, resource_type, cost_per_hour, capacity,
                            is_active, available_from, available_to
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            resource.resource_id,
                            resource.name,
                            resource.resource_type.value,
                            resource.cost_per_hour,
                            resource.capacity,
                            1 if resource.is_active else 0,
                            _to_text(resource.available_from),
                            _to_text(resource.available_to),
                        ),
                    )
                    cursor.execute(
                        "DELETE FROM resource_capabilities WHERE resource_id = ?;",
                        (resource.resource_id,),
                    )
                    cursor.executemany(
                        """
                        INSERT INTO resource_capabilities (resource_id, capability)
                        VALUES (?, ?);
                        """,
                        [(resource.resource_id, item) for item in sorted(resource.capabilities)],
                    )
                    cursor.execute(
                        "DELETE FROM resource_conflicts WHERE resource_id = ?;",
                        (resource.resource_id,),
                    )
                    cursor.executemany(
                        """
                        INSERT INTO resource_conflicts (resource_id, conflicting_resource_id)
                        VALUES (?, ?);
                        """,
                        [(resource.resource_id, item) for item in sorted(resource.conflicts)],
                    )
                    saved += 1
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Saving resources failed: {exc}") from exc
        return saved

    def save_resource(self, resource: Resource) -> None:
        self.save_resources([resource])

    def list_resources(self, active_only: bool = False) -> list[Resource]:
        query = "SELECT * FROM resources"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query)
            rows = cursor.fetchall()
            capabilities = self._grouped(
                cursor, "SELECT resource_id AS owner, capability AS value FROM resource_capabilities;"
            )
            conflicts = self._grouped(
                cursor,
                "SELECT resource_id AS owner, conflicting_resource_id AS value FROM resource_conflicts;",
            )
        return [
            Resource(
                resource_id=str(row["id"]),
                name=str(row["name"]),
                resource_type=ResourceType(row["resource_type"]),
                capabilities=frozenset(capabilities.get(str(row["id"]), ())),
                cost_per_hour=float(row["cost_per_hour"]),
                capacity=int(row["capacity"]),
                is_active=bool(row["is_active"]),
                available_from=_from_text(row["available_from"]),
                available_to=_from_text(row["available_to"]),
                conflicts=frozenset(conflicts.get(str(row["id"]), ())),
            )
            for row in rows
        ]

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        for resource in self.list_resources():
            if resource.resource_id == resource_id:
                return resource
        return None

    def save_appointments(self, appointments: Iterable[Appointment]) -> int:
        saved = 0
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                for appointment in appointments:
                    cursor.execute(
                        """
                        INSERT OR REPLACE INTO appointments (
                            id, title, description, start_time, duration_minutes,
                            appointment_type, priority, status, resource_id, client_id,
                            is_flexible, flexibility_window_minutes, importance_score
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            appointment.appointment_id,
                            appointment.title,
                            appointment.description,
                            appointment.start.isoformat(),
                            appointment.duration_minutes,
                            appointment.appointment_type.value,
                            appointment.priority.value,
                            appointment.status.value,
                            appointment.assigned_resource_id,
                            appointment.client_id,
                            1 if appointment.is_flexible else 0,
                            appointment.flexibility_window.total_seconds() / 60.0,
                            appointment.importance_score,
                        ),
                    )
                    cursor.execute(
                        "DELETE FROM appointment_capabilities WHERE appointment_id = ?;",
                        (appointment.appointment_id,),
                    )
                    cursor.executemany(
                        """
                        INSERT INTO appointment_capabilities (appointment_id, capability, kind)
                        VALUES (?, ?, ?);
                        """,
                        [
                            (appointment.appointment_id, item, _REQUIRED)
                            for item in sorted(appointment.required_capabilities)
                        ]
                        + [
                            (appointment.appointment_id, item, _PREFERRED)
                            for item in sorted(appointment.preferred_capabilities)
                        ],
                    )
                    saved += 1
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Saving appointments failed: {exc}") from exc
        return saved

    def save_appointment(self, appointment: Appointment) -> None:
        self.save_appointments([appointment])

    def list_appointments(
        self,
        statuses: Optional[Sequence[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        """Load appointments ordered by start time, optionally filtered by status."""
        query = "SELECT * FROM appointments"
        params: tuple[str, ...] = ()
        if statuses:
            placeholders = ", ".join("?" for _ in statuses)
            query += f" WHERE status IN ({placeholders})"
            params = tuple(status.value for status in statuses)
        query += " ORDER BY start_time ASC, id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
            required = self._grouped(
                cursor,
                "SELECT appointment_id AS owner, capability AS value "
                "FROM appointment_capabilities WHERE kind = 'REQUIRED';",
            )
            preferred = self._grouped(
                cursor,
                "SELECT appointment_id AS owner, capability AS value "
                "FROM appointment_capabilities WHERE kind = 'PREFERRED';",
            )
        return [
            Appointment(
                appointment_id=str(row["id"]),
                title=str(row["title"]),
                description=str(row["description"]),
                start=datetime.fromisoformat(row["start_time"]),
                duration=timedelta(minutes=float(row["duration_minutes"])),
                appointment_type=AppointmentType(row["appointment_type"]),
                priority=Priority(row["priority"]),
                status=AppointmentStatus(row["status"]),
                assigned_resource_id=row["resource_id"],
                client_id=row["client_id"],
                required_capabilities=frozenset(required.get(str(row["id"]), ())),
                preferred_capabilities=frozenset(preferred.get(str(row["id"]), ())),
                is_flexible=bool(row["is_flexible"]),
                flexibility_window=timedelta(minutes=float(row["flexibility_window_minutes"])),
                importance_score=float(row["importance_score"]),
            )
            for row in rows
        ]

    def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        for appointment in self.list_appointments():
            if appointment.appointment_id == appointment_id:
                return appointment
        return None

    def delete_appointment(self, appointment_id: str) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM appointments WHERE id = ?;", (appointment_id,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise RuntimeError(f"Deleting appointment failed: {exc}") from exc

    def save_schedule(self, schedule: Schedule) -> str:
        """Persist a schedule and stamp status/resource onto its appointments."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO schedules (
                        id, algorithm, total_cost, total_score, conflict_count, efficiency_score
                    )
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        schedule.schedule_id,
                        schedule.algorithm,
                        schedule.total_cost,
                        schedule.total_score,
                        schedule.conflict_count,
                        schedule.efficiency_score,
                    ),
                )
                cursor.executemany(
                    """
                    INSERT INTO schedule_assignments (schedule_id, appointment_id, resource_id)
                    VALUES (?, ?, ?);
                    """,
                    [
                        (
                            schedule.schedule_id,
                            appointment.appointment_id,
                            schedule.assignments.get(appointment.appointment_id),
                        )
                        for appointment in schedule.appointments
                    ],
                )
                cursor.executemany(
                    "UPDATE appointments SET status = ?, resource_id = ? WHERE id = ?;",
                    [
                        (
                            AppointmentStatus.SCHEDULED.value
                            if appointment.appointment_id in schedule.assignments
                            else AppointmentStatus.UNSCHEDULED.value,
                            schedule.assignments.get(appointment.appointment_id),
                            appointment.appointment_id,
                        )
                        for appointment in schedule.appointments
                    ],
                )
                conn.commit()
            logger.info(
                "Schedule persisted | schedule_id=%s | algorithm=%s | assignments=%s",
                schedule.schedule_id,
                schedule.algorithm,
                len(schedule.assignments),
            )
            return schedule.schedule_id
        except sqlite3.Error as exc:
            raise RuntimeError(f"Saving schedule failed: {exc}") from exc

    def get_schedule_assignments(self, schedule_id: str) -> dict[str, Optional[str]]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT appointment_id, resource_id
                FROM schedule_assignments
                WHERE schedule_id = ?
                ORDER BY appointment_id ASC;
                """,
                (schedule_id,),
            )
            return {
                str(row["appointment_id"]): row["resource_id"]
                for row in cursor.fetchall()
            }

    def count_schedules(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM schedules;")
            return int(cursor.fetchone()["count"])

    @staticmethod
    def _grouped(cursor: sqlite3.Cursor, query: str) -> dict[str, set[str]]:
        cursor.execute(query)
        grouped: dict[str, set[str]] = {}
        for row in cursor.fetchall():
            grouped.setdefault(str(row["owner"]), set()).add(str(row["value"]))
        return grouped
