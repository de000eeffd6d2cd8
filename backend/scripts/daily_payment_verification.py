"""
Daily payment verification — asks the API to re-check every pending payment
with MercadoPago and prints the summary.

Run: python scripts/daily_payment_verification.py
Cron: 0 6 * * * cd /srv/casa-pinon/backend && python scripts/daily_payment_verification.py
Uses API_URL from the environment (default http://127.0.0.1:8000).
"""
import os
import sys
import time

import httpx

API_URL = os.environ.get("API_URL", "http://127.0.0.1:8000").rstrip("/")
ENDPOINT = f"{API_URL}/api/payment/verify-pending"


def main() -> int:
    started = time.monotonic()
    print(f"Calling {ENDPOINT}")

    try:
        r = httpx.post(ENDPOINT, timeout=120)
        r.raise_for_status()
        result = r.json()
    except (httpx.HTTPError, ValueError) as e:
        print(f"  [FAIL] verification request failed: {e}")
        return 1

    if not result.get("success"):
        print(f"  [FAIL] API reported an error: {result.get('error')}")
        return 1

    elapsed_ms = int((time.monotonic() - started) * 1000)
    print("Daily verification completed")
    print(f"  - Total payments checked: {result['total']}")
    print(f"  - Successfully verified:  {result['verified']}")
    print(f"  - Errors:                 {result['errors']}")
    print(f"  - Duration:               {elapsed_ms}ms")

    for i, item in enumerate(result.get("results", []), start=1):
        if item.get("error") and not item.get("outcome"):
            print(f"  {i}. {item.get('paymentId')} ({item.get('orderNumber')}): ERROR - {item['error']}")
        else:
            changed = "changed" if item.get("statusChanged") else "unchanged"
            print(
                f"  {i}. {item.get('paymentId')} ({item.get('orderNumber')}): "
                f"{item.get('gatewayStatus')} -> {item.get('paymentStatus')} ({changed})"
            )
    return 0


if __name__ == "__main__":
    sys.exit(main())
