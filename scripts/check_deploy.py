#!/usr/bin/env python3
"""Pre-flight checks for a bot-link deployment."""

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from typing import List

import httpx
from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


REQUIRED_ENV_VARS = [
    "ENV",
    "SECRET_KEY",
    "DATABASE_URL",
    "RESEND_API_KEY",
    "BOT_HANDLE",
    "BOT_API_KEY",
]

BASE_URL = os.getenv("CHECK_DEPLOY_BASE_URL", "http://127.0.0.1:8000")


def check_env_variables() -> List[str]:
    issues: List[str] = []

    for key in REQUIRED_ENV_VARS:
        if not os.getenv(key):
            issues.append(f"Missing environment variable: {key}")

    backend = os.getenv("RATE_LIMIT_BACKEND", "database").strip().lower()
    if backend not in {"database", "memory"}:
        issues.append(f"Unknown RATE_LIMIT_BACKEND: {backend}")
    elif backend == "memory":
        issues.append("RATE_LIMIT_BACKEND=memory does not share counts across instances")

    return issues


async def check_database_connection(database_url: str) -> List[str]:
    """Run SELECT 1 against the configured database."""

    issues: List[str] = []

    try:
        make_url(database_url)
    except ArgumentError as exc:
        issues.append(f"Invalid DATABASE_URL: {exc}")
        return issues

    engine: AsyncEngine | None = None
    try:
        engine = create_async_engine(database_url, future=True)
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:  # pragma: no cover - runtime only
        issues.append(f"Could not connect to the database: {exc}")
    finally:
        if engine is not None:
            await engine.dispose()

    return issues


def check_alembic_status() -> List[str]:
    """`alembic current` must report head."""

    issues: List[str] = []
    try:
        result = subprocess.run(
            ["alembic", "current"],
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        issues.append("'alembic' command not found on PATH")
        return issues

    if result.returncode != 0:
        output = result.stderr.strip() or result.stdout.strip()
        issues.append(f"'alembic current' failed: {output}")
        return issues

    stdout = result.stdout.strip()
    if "(head)" not in stdout:
        issues.append("Migrations are not at head: " + (stdout or "no output"))

    return issues


async def check_health_endpoint() -> List[str]:
    issues: List[str] = []

    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.get(f"{BASE_URL}/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            issues.append(f"GET /health failed: {exc}")
            return issues

    payload = response.json()
    if payload.get("database") != "ok":
        issues.append(f"/health reports database={payload.get('database')}")
    if not payload.get("botLinking"):
        issues.append("/health reports bot linking is not configured")

    return issues


async def main() -> int:
    issues: List[str] = []

    issues.extend(check_env_variables())

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        issues.extend(await check_database_connection(database_url))

    issues.extend(check_alembic_status())
    issues.extend(await check_health_endpoint())

    if issues:
        print("ISSUES FOUND:")
        for issue in issues:
            print(f"- {issue}")
        return 1

    print("OK")
    return 0


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:  # pragma: no cover - interactive
        print("Interrupted", file=sys.stderr)
        exit_code = 130
    sys.exit(exit_code)
