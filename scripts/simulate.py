"""
Lifecycle Simulation Script

Drives many orders through their full lifecycle against a running server,
with deliberately conflicting requests to exercise per-order serialization.
Run from project root (after scripts/seed.py): python scripts/simulate.py

Requires ENV_MODE=development so payment webhooks are accepted unsigned.
"""

import argparse
import asyncio
import json
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20

KITCHEN = {"x-actor-id": "kitchen-1", "x-actor-role": "kitchen"}
ADMIN = {"x-actor-id": "admin-1", "x-actor-role": "admin"}
DRIVERS = ["driver-1", "driver-2", "driver-3"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave"]


def customer_headers(customer_id: str) -> dict[str, str]:
    return {"x-actor-id": customer_id, "x-actor-role": "customer"}


def driver_headers(driver_id: str) -> dict[str, str]:
    return {"x-actor-id": driver_id, "x-actor-role": "driver"}


def payment_event(order: dict[str, Any], event_type: str) -> bytes:
    """Stripe-shaped event the mock payment service accepts."""
    return json.dumps({
        "id": f"evt_sim_{uuid.uuid4().hex[:16]}",
        "type": event_type,
        "data": {"object": {
            "id": order["payment_intent_id"],
            "metadata": {"order_id": str(order["id"])},
        }},
    }).encode()


# =============================================================================
# ONE ORDER
# =============================================================================

async def run_order(client: httpx.AsyncClient, order_num: int, product_ids: list[int]) -> dict[str, Any]:
    """Place, pay, race, prepare, deliver."""
    customer_id = f"cust-{order_num}"
    driver_id = random.choice(DRIVERS)
    start_time = time.time()
    conflicts = 0

    response = await client.post(
        f"{API_BASE_URL}/api/orders",
        headers=customer_headers(customer_id),
        json={
            "customer_name": f"Customer {order_num}",
            "delivery_address": f"{random.randint(1, 999)} {random.choice(STREETS)}",
            "items": [
                {"product_id": random.choice(product_ids), "quantity": random.randint(1, 3)}
            ],
        },
    )
    if response.status_code != 201:
        return {"order_num": order_num, "success": False, "error": response.text[:100]}
    order = response.json()["order"]

    # the provider delivers the same event twice
    event = payment_event(order, "payment_intent.succeeded")
    for _ in range(2):
        await client.post(f"{API_BASE_URL}/webhook/payment", content=event)

    # kitchen and admin race to start the order; exactly one may win
    race = await asyncio.gather(
        client.put(f"{API_BASE_URL}/api/orders/{order['id']}/status",
                   headers=KITCHEN, json={"status": "preparing"}),
        client.put(f"{API_BASE_URL}/api/orders/{order['id']}/status",
                   headers=ADMIN, json={"status": "preparing"}),
    )
    winners = [r for r in race if r.status_code == 200]
    conflicts += len(race) - len(winners)

    steps = [
        ("put", f"/api/orders/{order['id']}/status", KITCHEN, {"status": "ready"}),
        ("post", f"/api/orders/{order['id']}/assign-driver", ADMIN, {"driver_id": driver_id}),
        ("put", f"/api/orders/{order['id']}/status", driver_headers(driver_id),
         {"status": "out_for_delivery"}),
    ]
    for method, path, headers, body in steps:
        response = await client.request(method, f"{API_BASE_URL}{path}", headers=headers, json=body)
        if response.status_code != 200:
            return {"order_num": order_num, "success": False, "error": response.text[:100]}

    for _ in range(3):
        await client.post(
            f"{API_BASE_URL}/api/driver/location",
            headers=driver_headers(driver_id),
            json={
                "latitude": 40.75 + random.uniform(-0.01, 0.01),
                "longitude": -73.98 + random.uniform(-0.01, 0.01),
                "speed": random.uniform(0, 12),
                "heading": random.uniform(0, 360),
            },
        )

    response = await client.post(
        f"{API_BASE_URL}/api/driver/orders/{order['id']}/complete",
        headers=driver_headers(driver_id),
        json={"deliveredBy": driver_id, "notes": "Left with doorman"},
    )
    if response.status_code != 200:
        return {"order_num": order_num, "success": False, "error": response.text[:100]}

    tracking = await client.get(
        f"{API_BASE_URL}/api/orders/{order['id']}/tracking",
        headers=customer_headers(customer_id),
    )
    history = [entry["status"] for entry in tracking.json()["history"]]

    return {
        "order_num": order_num,
        "success": len(winners) == 1 and len(history) == 5,
        "history": history,
        "conflicts": conflicts,
        "time": round(time.time() - start_time, 3),
        "total": order["total_amount"],
    }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 LIFECYCLE SIMULATION - CONCURRENT ORDERS")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient(timeout=30.0) as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\n🩺 Health: {health.json().get('status')}")

        items = await client.get(f"{API_BASE_URL}/api/inventory/items", headers=ADMIN)
        before = {item["name"]: item["current_stock"] for item in items.json()}

        product_ids = [1, 2, 3]
        start_time = time.time()
        results = await asyncio.gather(
            *(run_order(client, i + 1, product_ids) for i in range(num_orders))
        )
        total_time = round(time.time() - start_time, 2)

        items = await client.get(f"{API_BASE_URL}/api/inventory/items", headers=ADMIN)
        after = {item["name"]: (item["current_stock"], item["status"]) for item in items.json()}

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Clean lifecycles: {len(successful)}/{num_orders}")
    print(f"❌ Problems: {len(failed)}/{num_orders}")
    print(f"⚔️  Rejected racing requests: {sum(r.get('conflicts', 0) for r in results)}")
    print(f"⏱️  Total Time: {total_time}s")

    print("\n📦 Inventory:")
    for name, (stock, status) in sorted(after.items()):
        print(f"   {name}: {before.get(name)} → {stock} ({status})")

    if failed:
        print("\n⚠️  Problem details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error') or f.get('history')}")

    print("=" * 70)
    return {"total": num_orders, "successful": len(successful), "failed": len(failed)}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Lifecycle Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(args.orders))
