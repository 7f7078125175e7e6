#!/usr/bin/env python
"""Seed development database with a chat-ready profile.

Creates one profile whose webhook points at a local AI backend, opens a
week-long free access window for every user, and issues the profile's API
key (printed once, so the backend can call /functions/*).

Constraints:
- Refuses to run in staging or prod (COMPANION_ENV check)
- Idempotent: the profile is keyed by a fixed id; a key is only issued
  when the profile has no active one
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py [WEBHOOK_URL]
"""

import os
import sys
from datetime import timedelta
from uuid import UUID

SEED_PROFILE_ID = UUID("00000000-0000-4000-8000-00000000c0de")
DEFAULT_WEBHOOK_URL = "http://localhost:8787/webhook"


def main():
    # 1. Environment check (hard fail in staging/prod)
    companion_env = os.getenv("COMPANION_ENV", "local")
    if companion_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in COMPANION_ENV={companion_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    webhook_url = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_WEBHOOK_URL

    from sqlalchemy import select

    from companion.db.engine import create_db_engine
    from companion.db.models import FreeAccessPeriod, Profile, ProfileApiKey, utcnow
    from companion.db.session import create_session_factory, transaction
    from companion.services.profile_keys import create_profile_api_key

    db = create_session_factory(create_db_engine(database_url))()
    try:
        # 3. Profile
        profile = db.get(Profile, SEED_PROFILE_ID)
        if profile is None:
            with transaction(db):
                profile = Profile(
                    id=SEED_PROFILE_ID,
                    name="Lena",
                    age=27,
                    description="Seed profile for local development",
                    personality="Warm, curious, answers in short messages.",
                    webhook_url=webhook_url,
                )
                db.add(profile)
                now = utcnow()
                db.add(
                    FreeAccessPeriod(
                        profile_id=SEED_PROFILE_ID,
                        user_id=None,
                        start_time=now,
                        end_time=now + timedelta(days=7),
                    )
                )
            print(f"Created profile {SEED_PROFILE_ID} with a 7-day free access window")
        else:
            print(f"Profile {SEED_PROFILE_ID} already exists (no-op)")

        # 4. API key
        has_key = db.scalar(
            select(ProfileApiKey.id).where(
                ProfileApiKey.profile_id == SEED_PROFILE_ID, ProfileApiKey.active.is_(True)
            )
        )
        if has_key is None:
            _, plaintext = create_profile_api_key(db, SEED_PROFILE_ID)
            print(f"Issued API key (shown once): {plaintext}")
        else:
            print("Profile already has an active API key (no-op)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
