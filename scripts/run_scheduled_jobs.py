#!/usr/bin/env python3
"""
Trigger the scheduled maintenance jobs over HTTP.

Meant to be run from cron or a platform scheduler.

Usage:
    python scripts/run_scheduled_jobs.py reminders [--window-hours 24]
    python scripts/run_scheduled_jobs.py cleanup
    python scripts/run_scheduled_jobs.py maintenance "Message" 2026-01-01T02:00:00Z --exclude-role admin

Environment Variables:
    ADMIN_NOTIFICATION_SECRET: Admin secret shared with the API
    API_URL: Base API URL (default: http://localhost:8000)
"""

import argparse
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()


def call_job(path: str, payload: dict | None = None, params: dict | None = None) -> dict:
    """POST to a job endpoint and return its JSON body."""
    admin_secret = os.getenv("ADMIN_NOTIFICATION_SECRET")
    if not admin_secret:
        print("Error: ADMIN_NOTIFICATION_SECRET environment variable not set", file=sys.stderr)
        sys.exit(1)

    api_url = os.getenv("API_URL", "http://localhost:8000")
    url = f"{api_url}/api/v1/jobs/{path}"

    headers = {
        "X-Admin-Secret": admin_secret,
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(url, json=payload, params=params, headers=headers, timeout=60)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Trigger scheduled telemed jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Hourly reminder sweep
  python run_scheduled_jobs.py reminders

  # Nightly cleanup
  python run_scheduled_jobs.py cleanup

  # Announce a maintenance window to everyone but admins
  python run_scheduled_jobs.py maintenance "Planned upgrade" 2026-01-01T02:00:00Z --exclude-role admin
        """,
    )
    subparsers = parser.add_subparsers(dest="job", required=True)

    reminders = subparsers.add_parser("reminders", help="Send appointment reminders")
    reminders.add_argument(
        "--window-hours",
        type=int,
        default=None,
        help="Look-ahead window in hours (default: server setting)",
    )

    subparsers.add_parser("cleanup", help="Delete expired notifications")

    maintenance = subparsers.add_parser("maintenance", help="Announce scheduled maintenance")
    maintenance.add_argument("message", help="Maintenance message")
    maintenance.add_argument("scheduled_for", help="ISO 8601 start of the maintenance window")
    maintenance.add_argument(
        "--exclude-role",
        action="append",
        default=[],
        choices=["patient", "doctor", "admin"],
        help="Role to leave out (repeatable)",
    )

    args = parser.parse_args()

    if args.job == "reminders":
        params = {"window_hours": args.window_hours} if args.window_hours else None
        result = call_job("send-reminders", params=params)
    elif args.job == "cleanup":
        result = call_job("cleanup-expired-notifications")
    else:
        result = call_job(
            "maintenance-notification",
            payload={
                "message": args.message,
                "scheduled_for": args.scheduled_for,
                "exclude_roles": args.exclude_role,
            },
        )

    print(f"{args.job}: {result['message']} (affected: {result['affected']})")


if __name__ == "__main__":
    main()
