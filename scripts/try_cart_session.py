from __future__ import annotations

import argparse
import json
import os

import requests


def main() -> None:
    parser = argparse.ArgumentParser(description="Manual cart session helper")
    parser.add_argument(
        "command",
        choices=["show", "intent", "retry", "refresh", "clear", "online", "offline"],
        help="Action to send to the local cart session surface",
    )
    parser.add_argument("--tier", choices=["plus", "business"], default="plus")
    parser.add_argument("--billing-period", choices=["monthly", "annual"], default="monthly")
    parser.add_argument("--seats", type=int, default=2)
    parser.add_argument("--base-url", default=os.getenv("CART_BASE_URL", "http://127.0.0.1:8000"))
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    if args.command == "show":
        response = requests.get(f"{base_url}/cart/session", timeout=20)
    elif args.command == "intent":
        response = requests.put(
            f"{base_url}/cart/intent",
            json={"tier": args.tier, "billing_period": args.billing_period, "seat_count": args.seats},
            timeout=20,
        )
    elif args.command in {"online", "offline"}:
        response = requests.post(
            f"{base_url}/cart/connectivity",
            json={"online": args.command == "online"},
            timeout=20,
        )
    else:
        response = requests.post(f"{base_url}/cart/{args.command}", timeout=20)

    print(f"status={response.status_code}")
    print(json.dumps(response.json(), indent=2))


if __name__ == "__main__":
    main()
