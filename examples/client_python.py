"""
Python Example - Calling the Amazon Product Fetcher

Installation: pip install requests
Usage: python client_python.py https://www.amazon.co.uk/dp/B0EXAMPLE1
"""

import os
import sys
from typing import Dict

import requests

# Configuration: Switch between local and production
FETCHER_URL = (
    "https://your-cloud-run-url.run.app/fetch-amazon-product"  # Replace with your deployment
    if os.environ.get("ENV") == "production"
    else "http://localhost:8080/fetch-amazon-product"
)

FIELDS = ["title", "price", "image_url", "description", "category",
          "brand", "material", "colour", "rating", "video_url"]


def fetch_product(url: str) -> Dict:
    """
    Fetch product details for an Amazon URL or ASIN.

    Raises:
        ValueError: If the fetcher reports an error in the body
        requests.RequestException: If the fetcher service is unreachable
    """
    response = requests.post(FETCHER_URL, json={"url": url}, timeout=120)
    response.raise_for_status()

    # The service always answers 200; failures are reported in the body
    data = response.json()
    if data.get("error"):
        raise ValueError(data.get("message") or data["error"])
    return data


def main():
    target = sys.argv[1] if len(sys.argv) > 1 else "B0EXAMPLE1"

    try:
        product = fetch_product(target)
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except requests.exceptions.ConnectionError:
        print("❌ Error: Cannot connect to the fetcher service. Is `python start_dev.py` running?")
        sys.exit(1)

    print(f"\n📦 {product['asin']}  {product['amazon_url']}")
    for name in FIELDS:
        value = product.get(name)
        mark = "✅" if value not in (None, "") else "❌"
        print(f"   {mark} {name}: {str(value)[:80] if value is not None else ''}")


if __name__ == "__main__":
    main()
