"""
Kitchen Simulation Script

Drives a running board like a busy kitchen: signs in as an admin, fires
a burst of new orders at a store and then completes them one by one
while the customer display is open.
Run from project root: python scripts/simulate.py --store <store_id>

Without --store the first store of the admin is used.
"""

import argparse
import asyncio
import random
import re
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20

CUSTOMER_NAMES = [
    "Budi", "Siti", "Andi", "Dewi", "Rina", "Agus", "Putri", "Eko", "Wati", "Joko",
    "Ayu", "Bayu", "Citra", "Dimas", "Fitri", "Gilang", "Hana", "Indra", "Lestari", "Rizky",
]

STORE_LINK = re.compile(r'href="/admin/([^"/?]+)"')


# =============================================================================
# SESSION
# =============================================================================

async def sign_in(client: httpx.AsyncClient, email: str, password: str) -> bool:
    """Sign in through the admin form; the session cookies stay on the client."""
    response = await client.post(
        "/auth",
        data={"email": email, "password": password},
        follow_redirects=False,
    )
    return response.status_code == 303


async def first_store_id(client: httpx.AsyncClient) -> Optional[str]:
    response = await client.get("/admin")
    response.raise_for_status()
    match = STORE_LINK.search(response.text)
    return match.group(1) if match else None


# =============================================================================
# ORDER FLOW
# =============================================================================

async def create_order(client: httpx.AsyncClient, store_id: str, order_num: int) -> dict[str, Any]:
    """Submit the new-order form once."""
    start_time = time.time()
    try:
        response = await client.post(
            f"/admin/{store_id}/orders",
            data={"customer_name": random.choice(CUSTOMER_NAMES)},
            follow_redirects=False,
        )
        elapsed = round(time.time() - start_time, 3)
        location = response.headers.get("location", "")
        return {
            "order_num": order_num,
            "success": response.status_code == 303 and "dibuat" in httpx.URL(location).params.get("notice", ""),
            "error": None if response.status_code == 303 else response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def preparing_orders(client: httpx.AsyncClient, store_id: str) -> list[dict]:
    response = await client.get(f"/api/stores/{store_id}/orders")
    response.raise_for_status()
    return [o for o in response.json()["orders"] if o["status"] == "preparing"]


async def complete_order(client: httpx.AsyncClient, store_id: str, order: dict) -> bool:
    response = await client.post(
        f"/admin/{store_id}/orders/{order['id']}/status",
        data={"status": "completed"},
        follow_redirects=False,
    )
    return response.status_code == 303


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    email: str,
    password: str,
    store_id: Optional[str],
    num_orders: int = TOTAL_ORDERS,
    cook_seconds: float = 3.0,
) -> dict[str, Any]:
    """
    Run the kitchen simulation.

    Args:
        num_orders: Number of orders to create in the burst
        cook_seconds: Average pause before the next order is completed
    """
    async with httpx.AsyncClient(base_url=API_BASE_URL, timeout=30.0) as client:
        if not await sign_in(client, email, password):
            print("❌ Sign-in rejected. Check --email/--password.")
            return {"success": False}

        store_id = store_id or await first_store_id(client)
        if store_id is None:
            print("❌ The admin has no store yet. Create one at /admin first.")
            return {"success": False}

        print("=" * 70)
        print("🍳 KITCHEN SIMULATION")
        print("=" * 70)
        print(f"📋 Orders: {num_orders}")
        print(f"🏪 Store: {store_id}")
        print(f"📺 Display: {API_BASE_URL}/{store_id}")
        print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
        print("=" * 70)

        start_time = time.time()
        print("\n🚀 Firing orders...\n")
        results = await asyncio.gather(*(create_order(client, store_id, i + 1) for i in range(num_orders)))

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]
        print(f"✅ Created: {len(successful)}/{num_orders}")
        if failed:
            print("⚠️  Failed (showing first 5):")
            for f in failed[:5]:
                print(f"   Order #{f['order_num']}: {f.get('error') or 'Unknown error'}")

        print("\n👨‍🍳 Completing orders...\n")
        completed = 0
        while True:
            pending = await preparing_orders(client, store_id)
            if not pending:
                break
            # Oldest order leaves the kitchen first
            order = min(pending, key=lambda o: o["created_at"])
            await asyncio.sleep(random.uniform(0.5, 1.5) * cook_seconds)
            if await complete_order(client, store_id, order):
                completed += 1
                print(f"   ✅ #{order['order_number']} {order['customer_name']} selesai ({len(pending) - 1} left)")

    total_time = round(time.time() - start_time, 2)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"✅ Created: {len(successful)}  ✅ Completed: {completed}")
    print(f"⏱️  Total Time: {total_time}s")
    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"📈 Average create response: {avg_time}s")
    print("=" * 70)
    print("🔍 Next: python scripts/verify.py --store", store_id)
    print("=" * 70)

    return {
        "success": not failed,
        "created": len(successful),
        "completed": completed,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Kitchen Simulation Script")
    parser.add_argument("--store", help="Store id (defaults to the admin's first store)")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--cook-seconds", type=float, default=3.0, help="Average time to complete one order")
    parser.add_argument("--email", default="admin@example.com")
    parser.add_argument("--password", default="admin123")
    args = parser.parse_args()

    summary = asyncio.run(
        run_simulation(args.email, args.password, args.store, args.orders, args.cook_seconds)
    )
    sys.exit(0 if summary.get("success") else 1)
