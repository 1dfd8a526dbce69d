"""
Claim Race Simulation Script

Places customer orders and lets a crowd of waiters race to claim each one
over HTTP, then checks every order ended up with exactly one owner and one
claim record in its history.
Run from project root (API running): python scripts/simulate.py

Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from collections import Counter
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20
TOTAL_WAITERS = 8

# Sample data for random orders
WAITER_NAMES = ["Aziz", "Dilnoza", "Bekzod", "Madina", "Jasur", "Nilufar", "Sardor", "Kamola", "Otabek", "Zarina"]
MENU_ITEMS = [
    {"catalog_id": "menu_plov", "name": "Plov", "unit_price": 45000.0, "category": "Main"},
    {"catalog_id": "menu_lagman", "name": "Lagman", "unit_price": 38000.0, "category": "Main"},
    {"catalog_id": "menu_samsa", "name": "Samsa", "unit_price": 12000.0, "category": "Bakery"},
    {"catalog_id": "menu_shashlik", "name": "Shashlik", "unit_price": 25000.0, "category": "Grill"},
    {"catalog_id": "menu_salad", "name": "Achichuk Salad", "unit_price": 15000.0, "category": "Salad"},
    {"catalog_id": "menu_tea", "name": "Green Tea", "unit_price": 8000.0, "category": "Drinks"},
]


def generate_random_items() -> list[dict]:
    """Generate random order items (unique catalog ids)."""
    picked = random.sample(MENU_ITEMS, random.randint(1, 4))
    return [{**item, "quantity": random.randint(1, 3)} for item in picked]


def generate_order_payload() -> dict[str, Any]:
    """Customer order for a random table or room."""
    payload: dict[str, Any] = {
        "floor": random.randint(1, 3),
        "items": generate_random_items(),
    }
    if random.random() < 0.8:
        payload["table_number"] = random.randint(1, 40)
        payload["seating_type"] = "Table"
    else:
        payload["room_number"] = random.randint(1, 12)
        payload["seating_type"] = "Room"
    return payload


def generate_waiters(count: int) -> list[dict[str, str]]:
    return [
        {"worker_id": f"waiter_{i + 1}", "worker_name": WAITER_NAMES[i % len(WAITER_NAMES)]}
        for i in range(count)
    ]


# =============================================================================
# HTTP CALLS
# =============================================================================

async def place_order(client: httpx.AsyncClient) -> str:
    response = await client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload(), timeout=30.0)
    response.raise_for_status()
    return response.json()["order"]["id"]


async def attempt_claim(
    client: httpx.AsyncClient,
    order_id: str,
    waiter: dict[str, str],
) -> dict[str, Any]:
    """One waiter tries to claim one order."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/claim",
            json=waiter,
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        data = response.json()
        return {
            "order_id": order_id,
            "worker_id": waiter["worker_id"],
            "status_code": response.status_code,
            "success": response.status_code == 200 and data.get("success", False),
            "outcome": data.get("outcome") or data.get("error"),
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_id": order_id,
            "worker_id": waiter["worker_id"],
            "status_code": None,
            "success": False,
            "outcome": f"transport error: {str(e)[:80]}",
            "time": round(time.time() - start_time, 3),
        }


async def verify_order(client: httpx.AsyncClient, order_id: str) -> dict[str, Any]:
    """Owner and number of claim records for one order."""
    order = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}")).json()
    history = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}/history")).json()
    claims = [r for r in history["records"] if r["modification_type"] == "claim"]
    return {
        "order_id": order_id,
        "claimed_by": order.get("claimed_by"),
        "claim_records": len(claims),
        "claim_record_owner": claims[0]["modified_by"] if claims else None,
    }


# =============================================================================
# SIMULATION
# =============================================================================

async def run_claim_race(num_orders: int, num_waiters: int) -> dict[str, Any]:
    """
    Place orders, then fire every waiter at every order at once.
    """
    print("=" * 70)
    print("🔥 CLAIM RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}")
    print(f"👥 Waiters: {num_waiters}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    waiters = generate_waiters(num_waiters)
    start_time = time.time()

    async with httpx.AsyncClient() as client:
        order_ids = await asyncio.gather(*[place_order(client) for _ in range(num_orders)])
        print(f"\n🆕 Placed {len(order_ids)} orders\n🚀 Racing claims...\n")

        tasks = []
        for order_id in order_ids:
            for waiter in random.sample(waiters, len(waiters)):
                tasks.append(attempt_claim(client, order_id, waiter))
        attempts = await asyncio.gather(*tasks)

        checks = await asyncio.gather(*[verify_order(client, order_id) for order_id in order_ids])

    total_time = round(time.time() - start_time, 2)

    # Analyze results
    winners = Counter(a["order_id"] for a in attempts if a["success"])
    outcomes = Counter(a["outcome"] for a in attempts)
    violations = [
        c for c in checks
        if winners[c["order_id"]] != 1
        or c["claim_records"] != 1
        or c["claimed_by"] != c["claim_record_owner"]
    ]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n⏱️  Total Time: {total_time}s")
    print(f"📨 Claim attempts: {len(attempts)}")
    for outcome, count in outcomes.most_common():
        print(f"   {outcome}: {count}")

    times = [a["time"] for a in attempts]
    if times:
        print(f"\n📈 Average Response: {round(sum(times) / len(times), 3)}s")
        print(f"   Slowest: {max(times)}s")

    if violations:
        print(f"\n❌ Ownership violations: {len(violations)}")
        for v in violations[:5]:
            print(f"   Order {v['order_id']}: {v}")
    else:
        print(f"\n✅ Every order has exactly one owner and one claim record")

    print("=" * 70)

    return {
        "orders": num_orders,
        "attempts": len(attempts),
        "violations": len(violations),
        "total_time": total_time,
    }


async def preflight() -> bool:
    """Check the API is reachable before racing."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health", timeout=5.0)
        except httpx.HTTPError as e:
            print(f"❌ API not reachable: {e}")
            return False
        data = response.json()
        print(f"✅ Health: {data.get('status')} (store: {data.get('store_provider')})")
        return response.status_code == 200


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Claim Race Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--waiters", type=int, default=TOTAL_WAITERS, help="Number of racing waiters")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url

    if not asyncio.run(preflight()):
        sys.exit(1)

    summary = asyncio.run(run_claim_race(args.orders, args.waiters))
    sys.exit(1 if summary["violations"] else 0)
