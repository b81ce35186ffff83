#!/usr/bin/env python3
"""
Create the first platform admin and, optionally, a demo brand/store/employee so
a terminal can be paired right away.

    BOOTSTRAP_ADMIN=1 DATABASE_URL=... python -m backend.scripts.bootstrap_admin
"""
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_password, hash_pin


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _ensure_admin(cur, email: str, password: str) -> bool:
    cur.execute("SELECT id FROM users WHERE lower(email) = %s", (email,))
    if cur.fetchone():
        return False
    cur.execute(
        """
        INSERT INTO users (id, email, hashed_password, role, is_active)
        VALUES (gen_random_uuid(), %s, %s, 'admin', true)
        """,
        (email, hash_password(password)),
    )
    return True


def _ensure_demo_store(cur, tenant_name: str, store_name: str, mode: str, pin: str) -> dict:
    cur.execute("SELECT id FROM tenants WHERE name = %s", (tenant_name,))
    row = cur.fetchone()
    if row:
        tenant_id = row["id"]
    else:
        cur.execute(
            "INSERT INTO tenants (id, name, mode) VALUES (gen_random_uuid(), %s, %s) RETURNING id",
            (tenant_name, mode),
        )
        tenant_id = cur.fetchone()["id"]

    cur.execute("SELECT id FROM stores WHERE tenant_id = %s AND name = %s", (tenant_id, store_name))
    row = cur.fetchone()
    if row:
        store_id = row["id"]
    else:
        cur.execute(
            "INSERT INTO stores (id, tenant_id, name) VALUES (gen_random_uuid(), %s, %s) RETURNING id",
            (tenant_id, store_name),
        )
        store_id = cur.fetchone()["id"]

    cur.execute("SELECT 1 FROM employees WHERE store_id = %s LIMIT 1", (store_id,))
    if not cur.fetchone():
        cur.execute(
            """
            INSERT INTO employees (id, tenant_id, store_id, name, role, pin_hash)
            VALUES (gen_random_uuid(), %s, %s, 'Demo Manager', 'store_manager', %s)
            """,
            (tenant_id, store_id, hash_pin(pin)),
        )
    return {"tenant_id": tenant_id, "store_id": store_id}


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@velopos.local").strip().lower()
    if not email:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_EMAIL is empty", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    generated_password = not password
    if generated_password:
        password = secrets.token_urlsafe(16)

    demo = None
    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                created = _ensure_admin(cur, email, password)
                if _truthy(os.getenv("BOOTSTRAP_DEMO_STORE", "")):
                    demo = _ensure_demo_store(
                        cur,
                        os.getenv("BOOTSTRAP_TENANT_NAME", "Demo Brand"),
                        os.getenv("BOOTSTRAP_STORE_NAME", "Demo Store"),
                        os.getenv("BOOTSTRAP_TENANT_MODE", "multi"),
                        os.getenv("BOOTSTRAP_EMPLOYEE_PIN", "1234"),
                    )

    if created:
        print("BOOTSTRAP_ADMIN_CREATED")
        print(f"email: {email}")
        print(f"password: {password}" if generated_password else "password: (provided via BOOTSTRAP_ADMIN_PASSWORD)")
    if demo:
        print(f"demo store: {demo['store_id']} (tenant {demo['tenant_id']})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
