import argparse
import asyncio
import json
import sys
from pathlib import Path

# Allow running as `python scripts/provider_health.py` from a source checkout.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.config import get_settings  # noqa: E402
from core.errors import ConfigError  # noqa: E402
from relay.router import build_router  # noqa: E402


def parse_args(argv=None):
    """Parses command-line arguments."""
    parser = argparse.ArgumentParser(description="Probe every configured AI provider once.")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Provider list YAML file. Default: RELAY_CONFIG_PATH or configs/providers.yml, "
             "falling back to API keys from the environment.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging."
    )
    return parser.parse_args(argv)


async def run_checks(router) -> dict:
    """Runs the health probes and collects status plus counters per provider."""
    results = await router.check_health()
    stats = router.get_provider_stats()
    report = {}
    for kind, healthy in results.items():
        entry = {"healthy": healthy}
        entry.update(stats[kind].as_dict())
        report[kind.value] = entry
    return report


def main(argv=None) -> int:
    """Main execution function."""
    args = parse_args(argv)
    try:
        settings = get_settings()
        if args.verbose:
            settings = settings.model_copy(update={"LOG_LEVEL": "DEBUG"})
        router = build_router(settings, settings_path=args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    report = asyncio.run(run_checks(router))

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print("--- Provider Health ---")
        if not report:
            print("No providers configured. Set an API key such as GEMINI_API_KEY.")
        for provider, entry in report.items():
            status = "OK" if entry["healthy"] else "FAIL"
            print(
                f"{provider:<12} {status:<5} requests={entry['request_count']} "
                f"errors={entry['error_count']} error_rate={entry['error_rate']:.2f}"
            )

    return 0 if any(entry["healthy"] for entry in report.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
