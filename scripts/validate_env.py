from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from shirtforge.config import REQUIRED_SETTINGS, Settings, missing_required_settings  # noqa: E402

OPTIONAL_SETTINGS = ("STRIPE_WEBHOOK_SECRET", "HUGGINGFACE_API_TOKEN")


def main(*, strict: bool) -> int:
    current = Settings()
    print(f"Environment: {current.ENVIRONMENT}")
    missing = missing_required_settings(current)
    for name in REQUIRED_SETTINGS:
        print(f"  {'ok     ' if name not in missing else 'MISSING'} {name}")
    for name in OPTIONAL_SETTINGS:
        print(f"  {'ok     ' if getattr(current, name) else 'unset  '} {name} (optional)")

    problems = list(missing)
    if current.is_production and current.ADMIN_PASSWORD == "admin123":
        problems.append("ADMIN_PASSWORD")
        print("  WARNING ADMIN_PASSWORD is still the default value")
    if current.STRIPE_SECRET_KEY and current.is_production and current.STRIPE_SECRET_KEY.startswith("sk_test_"):
        print("  WARNING STRIPE_SECRET_KEY is a test key in production")
        if strict:
            problems.append("STRIPE_SECRET_KEY")

    if problems:
        print(f"Environment is not ready: {', '.join(problems)}")
        return 1
    print("Environment is ready.")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Check that the storefront environment variables are configured.")
    parser.add_argument("--strict", action="store_true", help="Treat test Stripe keys in production as errors.")
    args = parser.parse_args()
    sys.exit(main(strict=args.strict))
