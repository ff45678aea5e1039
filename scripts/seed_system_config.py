"""
Seed System Configuration — default scoring, AI, performance and validation settings.

Usage:
    python scripts/seed_system_config.py              # Uses development DB
    python scripts/seed_system_config.py --env prod   # Uses production DB
    python scripts/seed_system_config.py --list       # Show the resulting rows

This script is idempotent — existing values are never overwritten; only the
validation contract, description and tags of existing rows are refreshed.
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# One-shot script: no queue workers
os.environ.setdefault("AI_QUEUE_AUTOSTART", "false")

from flowvision import create_app
from flowvision.services.system_config_service import get_system_config

logger = logging.getLogger("seed_system_config")

ENV_MAP = {"dev": "development", "prod": "production", "test": "testing"}


def main():
    parser = argparse.ArgumentParser(description="Seed default system configuration")
    parser.add_argument("--env", default="dev", choices=sorted(ENV_MAP), help="App config to use")
    parser.add_argument("--user", default="system", help="Recorded as changed_by in history")
    parser.add_argument("--list", action="store_true", help="Print configurations after seeding")
    args = parser.parse_args()

    app = create_app(ENV_MAP[args.env])
    with app.app_context():
        service = get_system_config()
        summary = service.seed_defaults(args.user)
        logger.info(
            "Seeded system configuration: %s created, %s refreshed (%s defaults)",
            summary["created"], summary["updated"], summary["total"],
        )
        if args.list:
            for cfg in service.list_configs():
                print(f"  {cfg['category']}.{cfg['key']} [{cfg['environment']}] v{cfg['version']}")


if __name__ == "__main__":
    main()
