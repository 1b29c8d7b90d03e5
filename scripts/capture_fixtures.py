"""
Capture real GitHub API responses and save them as test fixtures.

Run this script with a personal access token in GITHUB_TOKEN:

    GITHUB_TOKEN=... python scripts/capture_fixtures.py [--repo OWNER/NAME]

If no repo is given, the most recently starred repository is used.

Outputs (overwrite tests/fixtures/):
    github_starred_repo.json   one item from /user/starred
    github_commit.json         one item from /repos/{repo}/commits
    github_issue.json          one item from /repos/{repo}/issues (PRs dropped)
    github_pull_request.json   one item from /repos/{repo}/pulls

These fixtures are used by the normalizer tests to ensure the normalizer
handles real API response schemas, not hand-crafted guesses.
"""
import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Allow running from repo root without installing the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from starsync.github.client import GitHubClient


FIXTURES_DIR = Path(__file__).parent.parent / "tests" / "fixtures"


def _save(name: str, data: object) -> None:
    path = FIXTURES_DIR / name
    path.write_text(json.dumps(data, indent=2, default=str))
    print(f"  Saved {path.relative_to(Path.cwd())} ({path.stat().st_size} bytes)")


async def _capture(token: str, repo: str) -> None:
    async with GitHubClient(token) as gh:
        page = await gh.get_starred_repos(page=1, per_page=1)
        if not page.items:
            print("No starred repositories found.")
            sys.exit(1)
        _save("github_starred_repo.json", page.items[0])

        full_name = repo or page.items[0]["full_name"]
        owner, name = full_name.split("/", 1)
        print(f"   Using repository: {full_name}\n")

        for fixture, fetch in (
            ("github_commit.json", gh.get_recent_commits),
            ("github_issue.json", gh.get_recent_issues),
            ("github_pull_request.json", gh.get_recent_pull_requests),
        ):
            items = await fetch(owner, name, 5)
            if items:
                _save(fixture, items[0])
            else:
                print(f"  Skipped {fixture} (nothing returned)")

        if page.rate_limit:
            print(
                f"\n   Rate limit: {page.rate_limit.remaining}/{page.rate_limit.limit} "
                f"remaining, resets at {page.rate_limit.reset_at.isoformat()}"
            )


def main() -> None:
    parser = argparse.ArgumentParser(description="Capture real GitHub API fixtures")
    parser.add_argument("--repo", help="OWNER/NAME (default: most recently starred)")
    args = parser.parse_args()

    token = os.environ.get("GITHUB_TOKEN")
    if not token:
        print("GITHUB_TOKEN is not set.")
        sys.exit(1)

    FIXTURES_DIR.mkdir(parents=True, exist_ok=True)
    asyncio.run(_capture(token, args.repo))

    print("\nCheck the saved files for any PII before committing.")


if __name__ == "__main__":
    main()
