import os
import sys

import requests

base_url = os.getenv("CLOUDPOS_INVENTORY_BASE_URL", "http://localhost:8000").rstrip("/")
access_token = os.getenv("CLOUDPOS_ACCESS_TOKEN")
product_id = os.getenv("CLOUDPOS_PRODUCT_ID")

if not access_token:
    raise RuntimeError("CLOUDPOS_ACCESS_TOKEN is required")
if not product_id:
    raise RuntimeError("CLOUDPOS_PRODUCT_ID is required")

headers = {"Authorization": f"Bearer {access_token}"}


def main() -> int:
    adjust_response = requests.post(
        f"{base_url}/inventory/adjust",
        headers=headers,
        json={
            "product_id": product_id,
            "quantity": 1,
            "type": "in",
            "reason": "Smoke test receipt",
        },
        timeout=15,
    )
    adjust_response.raise_for_status()

    stock_response = requests.get(f"{base_url}/inventory/stock/{product_id}", headers=headers, timeout=15)
    stock_response.raise_for_status()

    movements_response = requests.get(
        f"{base_url}/inventory/movements",
        headers=headers,
        params={"product_id": product_id, "limit": 5, "offset": 0},
        timeout=15,
    )
    movements_response.raise_for_status()

    movement = adjust_response.json()
    stock = stock_response.json()
    movements = movements_response.json()
    print(f"Movement: {movement['id']} ({movement['previous_quantity']} -> {movement['new_quantity']})")
    print(f"On hand: {stock['quantity']} (available {stock['available_quantity']})")
    print(f"Movements total: {movements['pagination']['total']}")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except requests.RequestException as exc:
        print(f"Inventory API smoke check failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
