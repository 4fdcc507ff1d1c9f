#!/usr/bin/env python3
"""
Quick diagnostic script to check release-stats setup
"""

import os
import glob
from datetime import datetime
from typing import List, Optional

from github_client import GitHubAPIError, GitHubClient
from releasestats import LOG_DIR


def latest_log_file(log_dir: str = LOG_DIR) -> Optional[str]:
    log_files = glob.glob(os.path.join(log_dir, "release_stats_*.log"))
    if not log_files:
        return None
    return max(log_files, key=os.path.getmtime)


def tail(path: str, lines: int = 10) -> List[str]:
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        return [line.rstrip() for line in f.readlines()[-lines:]]


def main(client: Optional[GitHubClient] = None) -> bool:
    print("="*60)
    print("🔍 Release Stats Status Check")
    print("="*60)

    token = os.getenv("GITHUB_TOKEN")
    print("\n1. Token:")
    if token and token.strip():
        print("   ✓ GITHUB_TOKEN is set")
    else:
        print("   ⚠️ GITHUB_TOKEN not set - requests will be anonymous (60/hour)")

    ok = True
    print("\n2. GitHub Rate Limit:")
    client = client or GitHubClient(token=token)
    try:
        rate = client.get_rate_limit()
        reset = rate["reset_time"].strftime('%Y-%m-%d %H:%M:%S') if rate["reset_time"] else "N/A"
        print(f"   📊 {rate['remaining']}/{rate['limit']} requests remaining")
        print(f"   ⏰ Resets at: {reset} UTC")
        if rate["remaining"] == 0:
            print("   ❌ Rate limit exhausted - a run would fail now")
            ok = False
    except GitHubAPIError as e:
        print(f"   ❌ Could not reach GitHub: {e}")
        ok = False

    print("\n3. Latest Log File:")
    latest_log = latest_log_file()
    if latest_log:
        mod_time = datetime.fromtimestamp(os.path.getmtime(latest_log))
        time_ago = datetime.now() - mod_time
        print(f"   📝 {latest_log}")
        print(f"   ⏰ Last modified: {mod_time.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"   ⌛ {int(time_ago.total_seconds()) // 60} minutes ago")
        print("\n   Last 10 lines:")
        for line in tail(latest_log):
            print(f"   {line}")
    else:
        print("   ⚠️ No log files found")

    print("\n" + "="*60)
    return ok


if __name__ == "__main__":
    raise SystemExit(0 if main() else 1)
