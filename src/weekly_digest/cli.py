#!/usr/bin/env python3
# Admin CLI for the weekly digest service
# Talks to the service's /api/admin endpoints with an admin API key

import argparse
import json
import os
import sys
from typing import Any

import httpx
from dotenv import load_dotenv

DEFAULT_BASE_URL = "http://localhost:8000"


class AdminApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class AdminClient:
    """Thin wrapper over the admin HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 330.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._http.request(method, f"/api/admin{path}", **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise AdminApiError(response.status_code, str(detail))
        return response.json()

    def trigger(self, week: int | None = None, year: int | None = None) -> dict:
        return self._request("POST", "/weekly-summaries", json={"week": week, "year": year})

    def list_jobs(self) -> dict:
        return self._request("GET", "/batches")

    def show(self, batch_id: str) -> dict:
        return self._request("GET", f"/batches/{batch_id}")

    def status(self, batch_id: str) -> dict:
        return self._request("GET", f"/batches/{batch_id}/status")

    def consume(self, batch_id: str) -> dict:
        return self._request("POST", f"/batches/{batch_id}/consume")

    def poll(self) -> dict:
        return self._request("POST", "/poll-cycle")

    def preview(self, user_id: str, year: int, week: int) -> dict:
        return self._request("GET", f"/users/{user_id}/weeks/{year}/{week}/summary-data")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_job_table(data: dict) -> None:
    jobs = data.get("jobs", [])
    if not jobs:
        print("No batch jobs found")
        return
    print(f"{'BATCH ID':<40} {'WEEK':>9} {'STATUS':<12} {'OK':>5} {'ERR':>5}  SUBMITTED")
    for job in jobs:
        period = f"{job['week']}/{job['year']}"
        ok = "-" if job.get("success_count") is None else job["success_count"]
        err = "-" if job.get("error_count") is None else job["error_count"]
        print(f"{job['id']:<40} {period:>9} {job['status']:<12} {ok:>5} {err:>5}  {job['submitted_at']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Weekly Digest - admin commands for the summary pipeline"
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("WEEKLY_DIGEST_URL", DEFAULT_BASE_URL),
        help="Service URL (or set WEEKLY_DIGEST_URL)",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("WEEKLY_DIGEST_API_KEY"),
        help="Admin API key (or set WEEKLY_DIGEST_API_KEY)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    trigger = sub.add_parser("trigger", help="Submit weekly summaries (default: previous week)")
    trigger.add_argument("--week", type=int)
    trigger.add_argument("--year", type=int)

    sub.add_parser("list", help="List recent batch jobs")

    for name, help_text in (
        ("show", "Show a batch job record"),
        ("status", "Check live provider status of a batch"),
        ("consume", "Consume a finished batch"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("batch_id")

    sub.add_parser("poll", help="Run one poll cycle now")

    preview = sub.add_parser("preview", help="Show a user's week and the request it would produce")
    preview.add_argument("user_id")
    preview.add_argument("year", type=int)
    preview.add_argument("week", type=int)

    return parser


def run(args: argparse.Namespace, client: AdminClient) -> int:
    """Execute one parsed command. Returns the process exit code."""
    try:
        if args.command == "trigger":
            result = client.trigger(args.week, args.year)
            if result.get("batch_id"):
                print(f"Submitted batch {result['batch_id']} for week {result['week']}/{result['year']}")
            else:
                print(f"Nothing to submit for week {result['week']}/{result['year']}")
            print(f"  Eligible users: {result['total_users']}")
            print(f"  Requests submitted: {result['requests_submitted']}")
            print(f"  Skipped users: {len(result['skipped_users'])}")
        elif args.command == "list":
            _print_job_table(client.list_jobs())
        elif args.command == "show":
            _print_json(client.show(args.batch_id))
        elif args.command == "status":
            _print_json(client.status(args.batch_id))
        elif args.command == "consume":
            result = client.consume(args.batch_id)
            print(f"Consumed {result['batch_id']}: {result['success_count']} ok, {result['error_count']} failed")
            for item in result["errors"]:
                print(f"  - {item['customId']}: {item['error']}")
        elif args.command == "poll":
            _print_json(client.poll())
        elif args.command == "preview":
            _print_json(client.preview(args.user_id, args.year, args.week))
    except AdminApiError as e:
        print(f"Error: {e}")
        return 1
    except httpx.HTTPError as e:
        print(f"Error: could not reach {args.base_url}: {e}")
        return 1
    return 0


def main(argv: list[str] | None = None):
    """CLI entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    if not args.api_key:
        print("Error: an admin API key is required (--api-key or WEEKLY_DIGEST_API_KEY)")
        sys.exit(2)

    client = AdminClient(args.base_url, args.api_key)
    try:
        code = run(args, client)
    finally:
        client.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
