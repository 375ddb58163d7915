#!/usr/bin/env python3
"""
Basic Usage Example - Agricultural images with caching and fallbacks

This example demonstrates the core image system:
- Configuration from defaults, YAML and environment
- Hero, category and section images with provider fallback
- Cache reuse, attribution credits and health reporting

Run this example:
    pip install -e .
    python examples/basic_usage.py

Prerequisites:
    - UNSPLASH_ACCESS_KEY and/or PEXELS_API_KEY environment variables
      (without keys every request is served by the static fallbacks)
"""

import asyncio
import json

from image_system import ConfigManager, ImageSystem, setup_logging_from_config


async def run() -> None:
    config = ConfigManager().load_config()
    setup_logging_from_config(config.logging)

    print("🌾 Agricultural Image System Example")
    print("=" * 50)

    async with ImageSystem.from_config(config) as system:
        active = list(system.providers) or ["none (fallbacks only)"]
        print(f"✅ Active providers: {', '.join(active)}")

        # 1. Hero image
        hero = await system.service.get_theme_image("harvest")
        print(f"\n🖼️  Hero image ({hero.source.value}): {hero.url}")
        print(f"   {system.attribution.format_attribution(hero) or 'No attribution required'}")

        # 2. Same request again is served from the cache
        await system.service.get_theme_image("harvest")
        print(f"   Cache hit rate: {system.event_log.cache_stats()['hit_rate']:.0%}")

        # 3. Category images, padded with fallbacks when needed
        livestock = await system.service.get_category_images("livestock", count=4)
        print(f"\n🐄 Livestock images: {len(livestock)}")
        for image in livestock:
            print(f"   - [{image.source.value}] {image.alt_text}")
        print(f"   Credits: {system.attribution.bulk_attribution(livestock) or 'none'}")

        # 4. Section background
        testimonials = await system.service.get_section_image("testimonials")
        print(f"\n💬 Testimonials background ({testimonials.source.value}): {testimonials.url}")

        # 5. Warm the cache for upcoming pages
        await system.service.preload(["tractor", "dairy farm", "orchard"])
        print(f"\n🔥 Preloaded, cache now holds {len(system.cache)} entries")

        # 6. Health and alerts
        health = system.monitoring.health()
        print(f"\n🩺 Overall health: {health['overall']}")
        for name, component in health["components"].items():
            print(f"   {name}: {component['status']} - {component['message']}")

        alerts = system.monitoring.evaluate_alerts()
        print(f"🚨 Alerts raised: {len(alerts)}")

        print("\n📊 Metrics snapshot:")
        print(json.dumps(system.service.metrics()["performance"], indent=2))


def main():
    """Run the basic usage example."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
