"""
context.py
Per-process wiring of settings, database, repository and service.
"""

from __future__ import annotations

from dataclasses import dataclass

import auth
from config import Settings, settings as default_settings
from db import Database, MemberRepository
from service import MembershipService


@dataclass
class AppContext:
    settings: Settings
    database: Database
    members: MemberRepository
    service: MembershipService


def build_context(settings: Settings | None = None) -> AppContext:
    """Create tables, seed the default admin if needed and wire the service."""
    settings = settings or default_settings
    database = Database(settings.DB_FILE)
    default_hash = auth.hash_password(settings.ADMIN_DEFAULT_PASSWORD, rounds=settings.BCRYPT_ROUNDS)
    database.init_db(settings.ADMIN_USERNAME, default_hash)

    members = MemberRepository(database, settings.APP_ID)
    service = MembershipService(members, poll_interval=settings.SNAPSHOT_POLL_SECONDS)
    return AppContext(settings=settings, database=database, members=members, service=service)
