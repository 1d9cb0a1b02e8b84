from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from shirtforge.printify_api import PrintifyApiClient, PrintifyApiError  # noqa: E402
from shirtforge.services.catalog_search import normalize_variant  # noqa: E402


async def main(*, blueprint_id: int, sample_size: int, match: str | None) -> None:
    client = PrintifyApiClient()
    blueprint = await client.get_blueprint(blueprint_id=blueprint_id)
    print(f"Blueprint {blueprint.get('id')}: {blueprint.get('title')} ({blueprint.get('brand')} {blueprint.get('model')})")

    providers = await client.list_print_providers(blueprint_id=blueprint_id)
    print(f"{len(providers)} print providers")
    for provider in providers:
        print(f"- {provider.get('id')}: {provider.get('title')} [{provider.get('location')}]")
        try:
            raw_variants = await client.list_variants(blueprint_id=blueprint_id, provider_id=provider["id"])
        except PrintifyApiError as exc:
            print(f"    variants unavailable ({exc.status_code})")
            continue
        variants = [normalize_variant(raw) for raw in raw_variants if "id" in raw]
        print(f"    {len(variants)} variants")
        for variant in variants[:sample_size]:
            print(
                f"    {variant.id} {variant.title} "
                f"({variant.options.color or 'N/A'}, {variant.options.size or 'N/A'}) "
                f"${variant.price / 100:.2f}"
            )

    if match:
        found = [provider for provider in providers if match.lower() in str(provider.get("title", "")).lower()]
        if found:
            print(f"Matching '{match}': {', '.join(str(provider.get('id')) for provider in found)}")
        else:
            print(f"No provider matches '{match}'")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="List print providers and sample variants for a Printify blueprint.")
    parser.add_argument("--blueprint-id", type=int, default=6, help="Catalog blueprint to inspect.")
    parser.add_argument("--sample-size", type=int, default=3, help="Variants to print per provider.")
    parser.add_argument("--match", type=str, default=None, help="Highlight providers whose title contains this text.")
    args = parser.parse_args()
    asyncio.run(main(blueprint_id=args.blueprint_id, sample_size=args.sample_size, match=args.match))
