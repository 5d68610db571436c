"""
Dev Script: Send a signed Paystack webhook
Signs a charge event with PAYSTACK_SECRET_KEY and posts it to a running API.

Usage:
    python scripts/send_test_webhook.py <reference> [success|failed]
"""

import json
import os
import sys

import httpx
from dotenv import load_dotenv

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.paystack_service import SIGNATURE_HEADER, compute_signature

load_dotenv()

BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")


def build_event(reference: str, outcome: str) -> dict:
    if outcome == "failed":
        return {
            "event": "charge.failed",
            "data": {"reference": reference, "gateway_response": "Declined"},
        }
    return {
        "event": "charge.success",
        "data": {"reference": reference, "id": 1000001, "status": "success"},
    }


def send(reference: str, outcome: str = "success") -> None:
    secret = os.getenv("PAYSTACK_SECRET_KEY", "")
    if not secret:
        print("PAYSTACK_SECRET_KEY is not set")
        sys.exit(1)

    body = json.dumps(build_event(reference, outcome)).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: compute_signature(body, secret),
    }

    print(f"\n📍 Sending charge.{outcome} for {reference} to {BASE_URL}...")
    response = httpx.post(f"{BASE_URL}/webhooks/paystack", content=body, headers=headers, timeout=30.0)
    print(f"   Status: {response.status_code}")
    print(f"   Response: {response.text}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    send(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "success")
