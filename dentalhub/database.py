"""SQLite helpers for the DentalHub backend."""
from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

DB_PATH = Path(__file__).resolve().parent / "dentalhub.db"

TENANT_FIELDS: List[str] = [
    "name",
    "address",
    "phone",
    "email",
    "clinic_code",
    "corporation_id",
]


def get_connection() -> sqlite3.Connection:
    """Return a connection with row results as dictionaries."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _create_tenants(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            address TEXT,
            phone TEXT,
            email TEXT,
            clinic_code TEXT NOT NULL UNIQUE,
            corporation_id TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def _create_module_permissions(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS module_permissions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id INTEGER NOT NULL,
            corporation_id TEXT,
            module_key TEXT NOT NULL,
            role TEXT NOT NULL,
            allowed INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (tenant_id, module_key, role),
            FOREIGN KEY(tenant_id) REFERENCES tenants(id) ON DELETE CASCADE
        )
        """
    )


def _create_users(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            role TEXT,
            tenant_id INTEGER,
            FOREIGN KEY(tenant_id) REFERENCES tenants(id) ON DELETE SET NULL
        )
        """
    )


def _create_kv_cache(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv_cache (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def init_db() -> None:
    """Create the tables for tenants, module permissions, users, and the local cache."""
    with closing(sqlite3.connect(DB_PATH)) as conn:
        _create_tenants(conn)
        _create_module_permissions(conn)
        _create_users(conn)
        _create_kv_cache(conn)
        conn.commit()


def seed_defaults(
    password_hash: str,
    username: str = "admin",
    clinic_name: str = "Main Clinic",
    clinic_code: str = "MAIN",
) -> None:
    """Ensure a default clinic and an admin user bound to it exist."""
    with closing(get_connection()) as conn:
        row = conn.execute("SELECT id FROM tenants ORDER BY id LIMIT 1").fetchone()
        if row:
            tenant_id = row["id"]
        else:
            cursor = conn.execute(
                "INSERT INTO tenants (name, clinic_code) VALUES (?, ?)",
                (clinic_name, clinic_code),
            )
            tenant_id = cursor.lastrowid
        existing = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
        if not existing:
            conn.execute(
                "INSERT INTO users (username, password_hash, role, tenant_id) VALUES (?, ?, 'admin', ?)",
                (username, password_hash, tenant_id),
            )
        conn.commit()


# Users ------------------------------------------------------------------------


def list_users() -> List[Dict[str, Any]]:
    with closing(get_connection()) as conn:
        cursor = conn.execute("SELECT id, username, role, tenant_id FROM users ORDER BY username")
        return [dict(row) for row in cursor.fetchall()]


def get_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            "SELECT id, username, password_hash, role, tenant_id FROM users WHERE username = ?",
            (username,),
        )
        row = cursor.fetchone()
        return dict(row) if row else None


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            "SELECT id, username, password_hash, role, tenant_id FROM users WHERE id = ?",
            (user_id,),
        )
        row = cursor.fetchone()
        return dict(row) if row else None


def create_user(
    username: str,
    password_hash: str,
    role: Optional[str] = None,
    tenant_id: Optional[int] = None,
) -> Dict[str, Any]:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            "INSERT INTO users (username, password_hash, role, tenant_id) VALUES (?, ?, ?, ?)",
            (username, password_hash, role, tenant_id),
        )
        conn.commit()
        return get_user(cursor.lastrowid)


def update_user_password(user_id: int, password_hash: str) -> bool:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?",
            (password_hash, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0


def update_user_role(user_id: int, role: Optional[str], tenant_id: Optional[int] = None) -> bool:
    with closing(get_connection()) as conn:
        if tenant_id is None:
            cursor = conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        else:
            cursor = conn.execute(
                "UPDATE users SET role = ?, tenant_id = ? WHERE id = ?",
                (role, tenant_id, user_id),
            )
        conn.commit()
        return cursor.rowcount > 0


def delete_user(user_id: int) -> bool:
    with closing(get_connection()) as conn:
        cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        conn.commit()
        return cursor.rowcount > 0


# Tenants (branch directory) ---------------------------------------------------


def _clean_optional(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _serialize_tenant_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    payload = {field: _clean_optional(data.get(field)) for field in TENANT_FIELDS}
    payload["name"] = payload["name"] or ""
    payload["clinic_code"] = (payload["clinic_code"] or "").upper()
    return payload


def list_tenants() -> List[Dict[str, Any]]:
    """Return every tenant row with the columns the branch directory needs."""
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            """
            SELECT id, name, address, phone, email, clinic_code, corporation_id
            FROM tenants
            ORDER BY name COLLATE NOCASE, id
            """
        )
        return [dict(row) for row in cursor.fetchall()]


def fetch_tenant(tenant_id: int) -> Optional[Dict[str, Any]]:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            """
            SELECT id, name, address, phone, email, clinic_code, corporation_id, created_at, updated_at
            FROM tenants
            WHERE id = ?
            """,
            (tenant_id,),
        )
        row = cursor.fetchone()
        return dict(row) if row else None


def create_tenant(data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a tenant; raises sqlite3.IntegrityError when the clinic code is taken."""
    payload = _serialize_tenant_payload(data)
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            """
            INSERT INTO tenants (name, address, phone, email, clinic_code, corporation_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                payload["name"],
                payload["address"],
                payload["phone"],
                payload["email"],
                payload["clinic_code"],
                payload["corporation_id"],
            ),
        )
        conn.commit()
        new_id = cursor.lastrowid
    created = fetch_tenant(new_id)
    if not created:
        raise RuntimeError("Failed to fetch tenant after creation")
    return created


def update_tenant(tenant_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Update only the provided tenant fields, keeping the rest."""
    existing = fetch_tenant(tenant_id)
    if not existing:
        return None
    merged = {field: existing.get(field) for field in TENANT_FIELDS}
    for key, value in data.items():
        if key in merged:
            merged[key] = value
    payload = _serialize_tenant_payload(merged)
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            """
            UPDATE tenants
            SET
                name = ?,
                address = ?,
                phone = ?,
                email = ?,
                clinic_code = ?,
                corporation_id = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (
                payload["name"],
                payload["address"],
                payload["phone"],
                payload["email"],
                payload["clinic_code"],
                payload["corporation_id"],
                tenant_id,
            ),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
    return fetch_tenant(tenant_id)


def delete_tenant(tenant_id: int) -> bool:
    with closing(get_connection()) as conn:
        cursor = conn.execute("DELETE FROM tenants WHERE id = ?", (tenant_id,))
        conn.commit()
        return cursor.rowcount > 0


# Module permission rules ------------------------------------------------------


def _row_to_permission(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "tenant_id": row["tenant_id"],
        "corporation_id": row["corporation_id"],
        "module_key": row["module_key"],
        "role": row["role"],
        "allowed": bool(row["allowed"]),
    }


def list_module_permissions(tenant_id: int) -> List[Dict[str, Any]]:
    with closing(get_connection()) as conn:
        cursor = conn.execute(
            """
            SELECT id, tenant_id, corporation_id, module_key, role, allowed
            FROM module_permissions
            WHERE tenant_id = ?
            ORDER BY module_key, role
            """,
            (tenant_id,),
        )
        return [_row_to_permission(row) for row in cursor.fetchall()]


def upsert_module_permission(
    tenant_id: int,
    corporation_id: Optional[str],
    module_key: str,
    role: str,
    allowed: bool,
) -> Dict[str, Any]:
    """Insert or update the single rule for (tenant_id, module_key, role)."""
    with closing(get_connection()) as conn:
        conn.execute(
            """
            INSERT INTO module_permissions (tenant_id, corporation_id, module_key, role, allowed)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, module_key, role) DO UPDATE SET
                corporation_id = excluded.corporation_id,
                allowed = excluded.allowed,
                updated_at = CURRENT_TIMESTAMP
            """,
            (tenant_id, corporation_id, module_key, role, 1 if allowed else 0),
        )
        conn.commit()
        cursor = conn.execute(
            """
            SELECT id, tenant_id, corporation_id, module_key, role, allowed
            FROM module_permissions
            WHERE tenant_id = ? AND module_key = ? AND role = ?
            """,
            (tenant_id, module_key, role),
        )
        return _row_to_permission(cursor.fetchone())


# Local key/value cache --------------------------------------------------------


def cache_get(key: str) -> Optional[str]:
    with closing(get_connection()) as conn:
        cursor = conn.execute("SELECT value FROM kv_cache WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None


def cache_set(key: str, value: str) -> None:
    with closing(get_connection()) as conn:
        conn.execute(
            """
            INSERT INTO kv_cache (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
            """,
            (key, value),
        )
        conn.commit()
