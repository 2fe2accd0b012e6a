from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from vcare_access.config import Config
from vcare_access.db import connect
from vcare_access.economics.shares import to_decimal
from vcare_access.errors import DuplicateRegistration, NotFound
from vcare_access.models import Identity
from vcare_access.util.time import utcnow_iso

from .security import hash_password, needs_rehash, verify_password


def _debug(msg: str) -> None:
    print(f"[crud] {msg}")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_role_names(roles: Iterable[Any]) -> List[str]:
    """Reduce role rows / dicts / bare strings to a de-duplicated list of names."""
    out: List[str] = []
    for r in roles or ():
        if isinstance(r, str):
            name = r
        elif isinstance(r, dict):
            name = r.get("name") or ""
        else:
            try:
                name = r["name"]
            except (KeyError, IndexError, TypeError):
                name = getattr(r, "name", "") or ""
        name = str(name).strip()
        if name and name not in out:
            out.append(name)
    return out


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute("SELECT * FROM users WHERE email=?", (e,)).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute("SELECT * FROM users WHERE user_id=?", (int(user_id),)).fetchone()


def get_roles_for(conn: Any, user_id: int) -> List[str]:
    rows = conn.execute(
        """
        SELECT r.name AS name
        FROM user_roles ur
        JOIN roles r ON r.role_id = ur.role_id
        WHERE ur.user_id=? AND r.is_active=1
        ORDER BY ur.assigned_at, r.name
        """,
        (int(user_id),),
    ).fetchall()
    return normalize_role_names(rows)


def identity_from_row(row: Any, roles: Iterable[Any] = ()) -> Identity:
    d = dict(row)
    primary = str(d.get("role") or "")
    names = normalize_role_names(roles)
    # The primary role always counts and always comes first, even without a user_roles row.
    if primary:
        names = [primary] + [n for n in names if n != primary]
    return Identity(
        id=int(d["user_id"]),
        email=str(d.get("email") or ""),
        name=str(d.get("name") or ""),
        status=str(d.get("status") or "active"),
        role=primary,
        roles=tuple(names),
        share_balance=to_decimal(d.get("share_balance"), default=Decimal(0)),
        source="session",
    )


def load_identity(conn: Any, user_id: int) -> Identity:
    """Fresh identity + roles + balance. Raises NotFound if the user is gone."""
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound(f"user {user_id} not found")
    return identity_from_row(row, get_roles_for(conn, int(row["user_id"])))


def public_identity(identity: Identity) -> Dict[str, Any]:
    return {
        "id": identity.id,
        "email": identity.email,
        "name": identity.name,
        "role": identity.role,
        "roles": list(identity.effective_roles),
        "shareBalance": float(identity.share_balance),
        "status": identity.status,
    }


def verify_user_credentials(conn: Any, email: str, password: str) -> Optional[Any]:
    row = get_user_by_email(conn, email)
    if row is None:
        return None
    if str(row["status"] or "active") != "active":
        return None
    stored = str(row["password_hash"] or "")
    if not verify_password(password, stored):
        return None
    if needs_rehash(stored):
        conn.execute(
            "UPDATE users SET password_hash=?, updated_at=? WHERE user_id=?",
            (hash_password(password), utcnow_iso(), int(row["user_id"])),
        )
        _debug(f"Rehashed password for user_id={row['user_id']}")
    return row


def get_role_by_name(conn: Any, name: str) -> Optional[Any]:
    return conn.execute("SELECT * FROM roles WHERE name=?", (name,)).fetchone()


def assign_role(conn: Any, user_id: int, role_name: str, *, display_name: str | None = None) -> None:
    """Attach a role to a user, creating the role row on first use."""
    name = (role_name or "").strip()
    if not name:
        raise ValueError("role_blank")
    now = utcnow_iso()
    role = get_role_by_name(conn, name)
    if role is None:
        conn.execute(
            "INSERT INTO roles (name, display_name, description, is_active, created_at) VALUES (?,?,?,1,?)",
            (name, display_name or name, None, now),
        )
        role = get_role_by_name(conn, name)
        assert role is not None
    conn.execute(
        """
        INSERT INTO user_roles (user_id, role_id, assigned_at) VALUES (?,?,?)
        ON CONFLICT(user_id, role_id) DO NOTHING
        """,
        (int(user_id), int(role["role_id"]), now),
    )


def create_user(
    conn: Any,
    *,
    email: str,
    password: str,
    name: str,
    role: str = "customer",
    status: str = "active",
    share_balance: Any = 0,
) -> Identity:
    e = normalize_email(email)
    if not e:
        raise ValueError("email_blank")
    role = (role or "").strip()
    if not role:
        raise ValueError("role_blank")

    if get_user_by_email(conn, e) is not None:
        raise DuplicateRegistration()

    now = utcnow_iso()
    try:
        conn.execute(
            """
            INSERT INTO users (email, password_hash, name, role, status, share_balance, created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?)
            """,
            (
                e,
                hash_password(password),
                (name or "").strip() or e,
                role,
                status,
                str(to_decimal(share_balance, default=Decimal(0))),
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError:
        # A concurrent registration for the same email won the UNIQUE constraint.
        _debug(f"Duplicate registration rejected by the store email={e}")
        raise DuplicateRegistration() from None
    row = get_user_by_email(conn, e)
    assert row is not None
    assign_role(conn, int(row["user_id"]), role)
    return load_identity(conn, int(row["user_id"]))


def set_share_balance(conn: Any, user_id: int, balance: Any) -> None:
    conn.execute(
        "UPDATE users SET share_balance=?, updated_at=? WHERE user_id=?",
        (str(to_decimal(balance)), utcnow_iso(), int(user_id)),
    )


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Identity]:
    """Create the first admin user if the users table is empty.

    Only runs when both AUTH_BOOTSTRAP_ADMIN_EMAIL and AUTH_BOOTSTRAP_ADMIN_PASSWORD are set
    and there are 0 rows in `users`.
    """
    email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL or "")
    password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD or ""
    if not email or not password:
        return None

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None
        return create_user(conn, email=email, password=password, name="Administrator", role="admin")
