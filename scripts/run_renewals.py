"""Run the subscription renewal pass manually.

Usage:
    python -m scripts.run_renewals [YYYY-MM-DD]
"""

import asyncio
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from schoolpay.core.config import settings
from schoolpay.core.logging import setup_logging
from schoolpay.modules.billing.tasks import run_renewals


async def main():
    """Run one renewal pass and print the outcome."""
    as_of = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else None

    print("\n" + "=" * 60)
    print("Running Subscription Renewals")
    print("=" * 60)

    summary = await run_renewals(as_of)

    print(f"\nResults:")
    print(f"  Processed: {summary['processed']}")
    print(f"  Succeeded: {summary['succeeded']}")
    print(f"  Failed: {summary['failed']}")
    for failure in summary["failures"]:
        print(f"    - {failure['id']}: {failure['error']}")


if __name__ == "__main__":
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    asyncio.run(main())
