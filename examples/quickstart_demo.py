#!/usr/bin/env python3
"""
Quickstart — track events and people updates against Mixpanel
=============================================================

Tracks a few events, updates the user's profile, and flushes the queue.
Messages are persisted under MIXPANEL_STORAGE_DIR (default
~/.mixpanel_analytics), so anything that fails to send is retried on the
next run.

Run:
    MIXPANEL_TOKEN=your-project-token python examples/quickstart_demo.py
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime

from mixpanel_analytics import MixpanelConfiguration, MixpanelTracker

TOKEN = os.environ.get("MIXPANEL_TOKEN", "your-project-token")


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    config = MixpanelConfiguration.from_env()

    async with MixpanelTracker(token=TOKEN, config=config) as tracker:
        await tracker.register_super_properties({"app_version": "1.0.0"})
        await tracker.register_super_properties_once({"first_launch": datetime.now()})
        await tracker.identify("demo-user")

        await tracker.track_event("App Opened")
        await tracker.track_event("Signed Up", {"plan": "free"})

        await tracker.set_profile_properties({"$name": "Demo User", "plan": "free"})
        await tracker.set_once_profile_property("signup_date", datetime.now())
        await tracker.increment_profile_property("logins")

        sent = await tracker.flush()
        print(f"Delivered {sent} messages; {len(tracker.message_queue)} still queued")


if __name__ == "__main__":
    asyncio.run(main())
