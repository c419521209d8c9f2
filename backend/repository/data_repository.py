"""Repository layer responsible for all database access."""

from __future__ import annotations

import random
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from backend.domain.models import (
    Assignment,
    DocumentStatus,
    EligibleStudent,
    RegistrationStatus,
    RoomState,
    StudentAllocationRecord,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class StudentDisplayRecord:
    student_id: int
    student_name: str
    matric_number: str


@dataclass(frozen=True)
class RoomOccupancyRecord:
    """Room capacity projection used by the pre-allocation check."""

    room_id: int
    block: str
    room_number: str
    capacity: int
    allocated: int


@dataclass(frozen=True)
class NotificationRecord:
    notification_id: int
    student_id: int
    title: str
    message: str
    type: str
    is_read: bool
    created_at: str


_ELIGIBILITY_FILTER = """
    LOWER(TRIM(reg.status)) = :submitted
    AND EXISTS (
        SELECT 1 FROM Documents AS d
        WHERE d.student_id = s.id AND LOWER(TRIM(d.status)) = :verified
    )
    AND NOT EXISTS (
        SELECT 1 FROM Allocations AS a WHERE a.student_id = s.id
    )
"""

_ELIGIBILITY_PARAMS = {
    "submitted": RegistrationStatus.SUBMITTED.value,
    "verified": DocumentStatus.VERIFIED.value,
}

_DEMO_ROOMS = (
    ("A", 4, 4),
    ("B", 3, 4),
    ("C", 3, 3),
    ("D", 3, 2),
)

_DEMO_LEVELS = (100, 200, 300, 400, 500)

_DEMO_FIRST_NAMES = (
    "Ada", "Tunde", "Ngozi", "Emeka", "Halima", "Bola", "Chidi", "Zainab",
    "Ifeoma", "Segun", "Amaka", "Kunle", "Funmi", "Yusuf", "Kemi", "Obinna",
)

_DEMO_LAST_NAMES = (
    "Okafor", "Adeyemi", "Bello", "Eze", "Abubakar", "Olawale", "Nwosu",
    "Ibrahim", "Ogunleye", "Okonkwo", "Balogun", "Mohammed",
)


def _normalize_status(value: str, enum_type):
    return enum_type(str(value).strip().lower())


class DataRepository:
    """Encapsulates SQLite access so allocation logic stays storage-agnostic."""

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
                    CREATE TABLE IF NOT EXISTS Students (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        firstname TEXT NOT NULL,
                        lastname TEXT NOT NULL,
                        matric_number TEXT NOT NULL UNIQUE,
                        level INTEGER NOT NULL CHECK (level > 0),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS HostelRegistrations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL UNIQUE,
                        status TEXT NOT NULL DEFAULT 'draft',
                        preferred_block TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES Students(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Documents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        document_type TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        uploaded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES Students(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        block TEXT NOT NULL,
                        room_number TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (block, room_number)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Allocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL UNIQUE,
                        room_id INTEGER NOT NULL,
                        allocated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES Students(id),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        type TEXT NOT NULL DEFAULT 'info',
                        is_read INTEGER NOT NULL DEFAULT 0 CHECK (is_read IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES Students(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_room
                    ON Allocations(room_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_documents_student_status
                    ON Documents(student_id, status);
                    """
                )

                # Legacy writers stored mixed-case statuses.
                cursor.execute(
                    """
                    UPDATE HostelRegistrations
                    SET status = LOWER(TRIM(status))
                    WHERE status != LOWER(TRIM(status));
                    """
                )
                migrated_registrations = cursor.rowcount
                cursor.execute(
                    """
                    UPDATE Documents
                    SET status = LOWER(TRIM(status))
                    WHERE status != LOWER(TRIM(status));
                    """
                )
                migrated_documents = cursor.rowcount
                conn.commit()
            if migrated_registrations or migrated_documents:
                logger.info(
                    "Normalized legacy statuses | registrations=%s | documents=%s",
                    migrated_registrations,
                    migrated_documents,
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data_if_empty(self) -> int:
        """Seed deterministic rooms and applicants only when Rooms is empty."""
        rng = random.Random(self._settings.demo_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return 0

                room_rows = [
                    (block, f"{block}{index + 1:02d}", capacity)
                    for block, room_count, capacity in _DEMO_ROOMS
                    for index in range(room_count)
                ]
                cursor.executemany(
                    "INSERT INTO Rooms (block, room_number, capacity) VALUES (?, ?, ?);",
                    room_rows,
                )

                blocks = sorted({block for block, _, _ in _DEMO_ROOMS})
                seeded = 0
                for level in _DEMO_LEVELS:
                    for index in range(self._settings.demo_students_per_level):
                        cursor.execute(
                            """
                            INSERT INTO Students (firstname, lastname, matric_number, level)
                            VALUES (?, ?, ?, ?);
                            """,
                            (
                                rng.choice(_DEMO_FIRST_NAMES),
                                rng.choice(_DEMO_LAST_NAMES),
                                f"DEMO/{level}/{index + 1:03d}",
                                level,
                            ),
                        )
                        student_id = int(cursor.lastrowid)
                        preferred_block = rng.choice(blocks) if rng.random() < 0.7 else None
                        cursor.execute(
                            """
                            INSERT INTO HostelRegistrations (student_id, status, preferred_block)
                            VALUES (?, ?, ?);
                            """,
                            (student_id, RegistrationStatus.SUBMITTED.value, preferred_block),
                        )
                        document_status = (
                            DocumentStatus.VERIFIED if rng.random() < 0.85 else DocumentStatus.PENDING
                        )
                        cursor.execute(
                            """
                            INSERT INTO Documents (student_id, document_type, status)
                            VALUES (?, ?, ?);
                            """,
                            (student_id, "admission_letter", document_status.value),
                        )
                        seeded += 1
                conn.commit()
            logger.info("Demo seed completed | rooms=%s | students=%s", len(room_rows), seeded)
            return seeded
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    def create_student(
        self,
        first_name: str,
        last_name: str,
        matric_number: str,
        level: int,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Students (firstname, lastname, matric_number, level)
                VALUES (?, ?, ?, ?);
                """,
                (first_name, last_name, matric_number, level),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_registration(
        self,
        student_id: int,
        status: RegistrationStatus | str = RegistrationStatus.SUBMITTED,
        preferred_block: Optional[str] = None,
    ) -> int:
        """Insert a registration, storing the canonical lower-case status."""
        canonical = _normalize_status(
            status.value if isinstance(status, RegistrationStatus) else status,
            RegistrationStatus,
        )
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO HostelRegistrations (student_id, status, preferred_block)
                VALUES (?, ?, ?);
                """,
                (student_id, canonical.value, preferred_block),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def add_document(
        self,
        student_id: int,
        status: DocumentStatus | str = DocumentStatus.VERIFIED,
        document_type: str = "admission_letter",
    ) -> int:
        canonical = _normalize_status(
            status.value if isinstance(status, DocumentStatus) else status,
            DocumentStatus,
        )
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Documents (student_id, document_type, status)
                VALUES (?, ?, ?);
                """,
                (student_id, document_type, canonical.value),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_room(self, block: str, room_number: str, capacity: int) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Rooms (block, room_number, capacity) VALUES (?, ?, ?);",
                (block, room_number, capacity),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_eligible_students(self) -> list[EligibleStudent]:
        """Return applicants with a submitted registration, a verified document and no room."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT
                    s.id,
                    s.firstname,
                    s.lastname,
                    s.matric_number,
                    s.level,
                    reg.preferred_block
                FROM Students AS s
                INNER JOIN HostelRegistrations AS reg ON reg.student_id = s.id
                WHERE {_ELIGIBILITY_FILTER}
                ORDER BY s.id ASC;
                """,
                _ELIGIBILITY_PARAMS,
            )
            return [
                EligibleStudent(
                    student_id=int(row["id"]),
                    first_name=str(row["firstname"]),
                    last_name=str(row["lastname"]),
                    matric_number=str(row["matric_number"]),
                    level=int(row["level"]),
                    preferred_block=(
                        str(row["preferred_block"])
                        if row["preferred_block"] is not None
                        else None
                    ),
                )
                for row in cursor.fetchall()
            ]

    def count_eligible_students(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT COUNT(*) AS count
                FROM Students AS s
                INNER JOIN HostelRegistrations AS reg ON reg.student_id = s.id
                WHERE {_ELIGIBILITY_FILTER};
                """,
                _ELIGIBILITY_PARAMS,
            )
            return int(cursor.fetchone()["count"])

    def list_room_states(self) -> list[RoomState]:
        """Return every room with its current occupants in allocation order."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, block, room_number, capacity FROM Rooms ORDER BY id ASC;"
            )
            rooms = {
                int(row["id"]): RoomState(
                    room_id=int(row["id"]),
                    block=str(row["block"]),
                    room_number=str(row["room_number"]),
                    capacity=int(row["capacity"]),
                )
                for row in cursor.fetchall()
            }
            cursor.execute(
                """
                SELECT
                    a.room_id,
                    s.id,
                    s.firstname,
                    s.lastname,
                    s.matric_number,
                    s.level,
                    reg.preferred_block
                FROM Allocations AS a
                INNER JOIN Students AS s ON s.id = a.student_id
                LEFT JOIN HostelRegistrations AS reg ON reg.student_id = s.id
                ORDER BY a.id ASC;
                """
            )
            for row in cursor.fetchall():
                room = rooms.get(int(row["room_id"]))
                if room is None:
                    continue
                room.occupants.append(
                    EligibleStudent(
                        student_id=int(row["id"]),
                        first_name=str(row["firstname"]),
                        last_name=str(row["lastname"]),
                        matric_number=str(row["matric_number"]),
                        level=int(row["level"]),
                        preferred_block=row["preferred_block"],
                    )
                )
            return list(rooms.values())

    def list_room_occupancy(self) -> list[RoomOccupancyRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    r.id,
                    r.block,
                    r.room_number,
                    r.capacity,
                    COUNT(a.id) AS allocated
                FROM Rooms AS r
                LEFT JOIN Allocations AS a ON a.room_id = r.id
                GROUP BY r.id
                ORDER BY r.id ASC;
                """
            )
            return [
                RoomOccupancyRecord(
                    room_id=int(row["id"]),
                    block=str(row["block"]),
                    room_number=str(row["room_number"]),
                    capacity=int(row["capacity"]),
                    allocated=int(row["allocated"]),
                )
                for row in cursor.fetchall()
            ]

    def get_student_display_records(
        self,
        student_ids: Sequence[int],
    ) -> dict[int, StudentDisplayRecord]:
        if not student_ids:
            return {}
        placeholders = ",".join("?" for _ in student_ids)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT id, firstname, lastname, matric_number
                FROM Students
                WHERE id IN ({placeholders});
                """,
                tuple(student_ids),
            )
            return {
                int(row["id"]): StudentDisplayRecord(
                    student_id=int(row["id"]),
                    student_name=f"{row['firstname']} {row['lastname']}",
                    matric_number=str(row["matric_number"]),
                )
                for row in cursor.fetchall()
            }

    def get_room_ids_by_location(self) -> dict[tuple[str, str], int]:
        """Map (block, room_number) to the current room id."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, block, room_number FROM Rooms;")
            return {
                (str(row["block"]), str(row["room_number"])): int(row["id"])
                for row in cursor.fetchall()
            }

    def save_allocations(
        self,
        assignments: Iterable[Assignment],
        notifications: Optional[Mapping[int, tuple[str, str]]] = None,
    ) -> list[int]:
        """Insert allocations in one transaction, skipping students already allocated.

        A notification (title, message) keyed by student id is written only for
        rows that were actually inserted. Returns the inserted student ids.
        """
        rows = list(assignments)
        if not rows:
            return []
        notifications = notifications or {}
        inserted: list[int] = []
        with self._connect() as conn:
            cursor = conn.cursor()
            for assignment in rows:
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO Allocations (student_id, room_id)
                    VALUES (?, ?);
                    """,
                    (assignment.student_id, assignment.room_id),
                )
                if cursor.rowcount != 1:
                    continue
                inserted.append(assignment.student_id)
                notification = notifications.get(assignment.student_id)
                if notification is not None:
                    title, message = notification
                    cursor.execute(
                        """
                        INSERT INTO Notifications (student_id, title, message, type)
                        VALUES (?, ?, ?, 'success');
                        """,
                        (assignment.student_id, title, message),
                    )
            conn.commit()
        return inserted

    def create_allocation(self, student_id: int, room_id: int) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Allocations (student_id, room_id) VALUES (?, ?);",
                (student_id, room_id),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def _select_allocation_records(
        self,
        where_clause: str = "",
        params: tuple = (),
    ) -> list[StudentAllocationRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT
                    a.id AS allocation_id,
                    a.allocated_at,
                    s.id AS student_id,
                    s.firstname,
                    s.lastname,
                    s.matric_number,
                    r.id AS room_id,
                    r.block,
                    r.room_number,
                    r.capacity
                FROM Allocations AS a
                INNER JOIN Students AS s ON s.id = a.student_id
                INNER JOIN Rooms AS r ON r.id = a.room_id
                {where_clause}
                ORDER BY r.block ASC, r.room_number ASC, a.id ASC;
                """,
                params,
            )
            return [
                StudentAllocationRecord(
                    allocation_id=int(row["allocation_id"]),
                    student_id=int(row["student_id"]),
                    student_name=f"{row['firstname']} {row['lastname']}",
                    matric_number=str(row["matric_number"]),
                    room_id=int(row["room_id"]),
                    block=str(row["block"]),
                    room_number=str(row["room_number"]),
                    capacity=int(row["capacity"]),
                    allocated_at=str(row["allocated_at"]),
                )
                for row in cursor.fetchall()
            ]

    def get_student_allocation(self, student_id: int) -> Optional[StudentAllocationRecord]:
        records = self._select_allocation_records("WHERE a.student_id = ?", (student_id,))
        return records[0] if records else None

    def list_all_allocations(self) -> list[StudentAllocationRecord]:
        return self._select_allocation_records()

    def count_allocations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Allocations;")
            return int(cursor.fetchone()["count"])

    def list_notifications(self, student_id: int) -> list[NotificationRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, student_id, title, message, type, is_read, created_at
                FROM Notifications
                WHERE student_id = ?
                ORDER BY id DESC;
                """,
                (student_id,),
            )
            return [
                NotificationRecord(
                    notification_id=int(row["id"]),
                    student_id=int(row["student_id"]),
                    title=str(row["title"]),
                    message=str(row["message"]),
                    type=str(row["type"]),
                    is_read=bool(row["is_read"]),
                    created_at=str(row["created_at"]),
                )
                for row in cursor.fetchall()
            ]
