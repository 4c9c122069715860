"""
Display Verification Script

Checks the public display of a running board against the raw order
list of the same store.
Run from project root: python scripts/verify.py --store <store_id>
"""

import argparse
import sys
from datetime import datetime

import httpx

API_BASE_URL = "http://localhost:8001"
STALE_AFTER_SECONDS = 30


def check(ok: bool, message: str, problems: list[str]) -> None:
    print(f"   {'✅' if ok else '❌'} {message}")
    if not ok:
        problems.append(message)


def verify_display(store_id: str) -> bool:
    """Verify grouping, ordering and staleness of a store's display."""

    print("=" * 60)
    print("🔍 DISPLAY VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🏪 Store: {store_id}")
    print("=" * 60)

    try:
        with httpx.Client(base_url=API_BASE_URL, timeout=10.0) as client:
            board = client.get(f"/api/display/{store_id}").raise_for_status().json()
            orders = client.get(f"/api/stores/{store_id}/orders").raise_for_status().json()["orders"]
    except httpx.HTTPError as e:
        print(f"\n❌ Could not reach the board: {e}")
        return False

    preparing, completed = board["preparing"], board["completed"]
    problems: list[str] = []

    print("\n📊 STATISTICS:")
    print(f"   Orders: {len(orders)}")
    print(f"   Sedang di Masak: {len(preparing)}")
    print(f"   Selesai: {len(completed)}")
    print(f"   Hidden: {len(orders) - len(preparing) - len(completed)}")

    print("\n🧮 GROUPING:")
    check(all(o["status"] == "preparing" for o in preparing), "Preparing column holds only preparing orders", problems)
    check(all(o["status"] == "completed" for o in completed), "Completed column holds only completed orders", problems)
    check(not {o["id"] for o in preparing} & {o["id"] for o in completed}, "No order appears in both columns", problems)
    expected = {o["id"] for o in orders if o["status"] in ("preparing", "completed")}
    shown = {o["id"] for o in preparing} | {o["id"] for o in completed}
    check(shown == expected, "Every visible order is shown exactly once", problems)

    print("\n🕒 ORDERING:")
    for name, column in (("Preparing", preparing), ("Completed", completed)):
        stamps = [o["updated_at"] for o in column]
        check(
            all(datetime.fromisoformat(a) >= datetime.fromisoformat(b) for a, b in zip(stamps, stamps[1:])),
            f"{name} column is most recent first",
            problems,
        )

    print("\n📡 FRESHNESS:")
    elapsed = board["seconds_since_update"]
    print(f"   Seconds since update: {elapsed}")
    if board["last_error"]:
        print(f"   ⚠️ Last fetch failed: {board['last_error']}")
    check(
        board["is_stale"] == (elapsed is None or elapsed > STALE_AFTER_SECONDS),
        "Stale flag matches the data age",
        problems,
    )

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if not problems else f"❌ {len(problems)} CHECK(S) FAILED")
    print("=" * 60)

    return not problems


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Display Verification Script")
    parser.add_argument("--store", required=True, help="Store id")
    args = parser.parse_args()

    sys.exit(0 if verify_display(args.store) else 1)
