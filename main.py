#!/usr/bin/env python3
"""
GenRoute - Main Entry Point

Credit-metered routing of video generation jobs across providers.

Usage:
    # Price a job
    python main.py estimate --duration 30 --resolution 1080p

    # Dry-run provider selection
    python main.py route --plan ENTERPRISE --credits 500 --priority high

    # Run one job end-to-end against the configured providers
    python main.py submit --prompt "A cat on a skateboard" --duration 15 --credits 100

    # Show registered providers and their health
    python main.py providers
"""

import argparse
import asyncio
import json
import logging
import sys
from uuid import uuid4

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("genroute")


def estimate_cost(duration: float, resolution: str, provider: str = None):
    """Print the credit cost of a job, or the full price table."""
    from core.config import get_config
    from services.pricing import CostEstimator

    estimator = CostEstimator.from_config(get_config())

    if provider:
        cost = estimator.estimate(duration, resolution, provider)
        print(f"{provider}: {duration}s @ {resolution} = {cost} credits")
        return

    for provider_id in estimator.pricing.provider_multipliers:
        cost = estimator.estimate(duration, resolution, provider_id)
        print(f"{provider_id:<10} {duration}s @ {resolution:<6} {cost:>5} credits")


def dry_run_route(plan: str, credits: int, priority: str, provider: str = None):
    """Show which provider and rule the router would pick."""
    from core.config import get_config
    from services.health import ProviderHealthTracker
    from services.models import GenerationJob
    from services.routing import JobRouter

    config = get_config()
    provider_ids = list(config.pricing.provider_multipliers)
    health = ProviderHealthTracker(provider_ids, config.health)
    router = JobRouter(provider_ids, health, config.routing)

    job = GenerationJob(
        job_id="dry-run",
        user_id="dry-run",
        prompt="",
        duration_seconds=1,
        priority=priority,
        user_plan=plan,
        explicit_provider=provider,
        user_credits=credits,
    )
    decision = router.decide(job)
    print(f"Provider: {decision.provider_id}")
    print(f"Rule:     {decision.rule}")


async def submit_job(
    prompt: str,
    duration: float,
    resolution: str,
    plan: str,
    credits: int,
    priority: str,
    provider: str = None,
    enhance: bool = False,
) -> bool:
    """
    Run a single job to completion with an in-memory ledger.

    Args:
        prompt: Generation prompt
        duration: Clip length in seconds
        resolution: 720p, 1080p or 4K
        plan: User plan (FREE, BASIC, PRO, ENTERPRISE)
        credits: Seed balance for the throwaway account
        priority: low, normal or high
        provider: Optional explicit provider
        enhance: Rewrite the prompt with Gemini before submitting
    """
    from core.config import get_config
    from services.enhancement import GeminiPromptEnhancer
    from services.ledger import InMemoryCreditLedger
    from services.models import GenerationJob, JobStatus
    from services.orchestrator import JobOrchestrator
    from services.providers import build_default_registry

    config = get_config()
    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    ledger = InMemoryCreditLedger()
    user_id = f"cli-{uuid4().hex[:8]}"
    await ledger.open_account(user_id, plan, initial_balance=credits)

    orchestrator = JobOrchestrator(
        build_default_registry(config),
        ledger,
        enhancer=GeminiPromptEnhancer(config) if enhance else None,
        config=config,
    )
    orchestrator.start()

    job = GenerationJob(
        job_id=str(uuid4()),
        user_id=user_id,
        prompt=prompt,
        duration_seconds=duration,
        resolution=resolution,
        priority=priority,
        user_plan=plan,
        explicit_provider=provider,
    )

    try:
        await orchestrator.submit_job(job)
        result = await orchestrator.wait_for_job(job.job_id)
        balance = await orchestrator.get_balance(user_id)
    finally:
        await orchestrator.close()

    print(json.dumps(result.to_dict(), indent=2))
    print(f"Remaining balance: {balance.balance} credits")
    return result.status == JobStatus.COMPLETED


def show_costs():
    """Print the published price list for every billable operation."""
    from core.config import get_config
    from services.pricing import CostEstimator

    print(json.dumps(CostEstimator.from_config(get_config()).credit_costs(), indent=2))


def show_providers():
    """Print the provider registry with pricing and health."""
    from core.config import get_config
    from services.health import ProviderHealthTracker
    from services.providers import build_default_registry

    config = get_config()
    registry = build_default_registry(config)
    health = ProviderHealthTracker(registry.ids(), config.health)
    stats = health.get_stats()

    for provider_id in registry.ids():
        multiplier = config.pricing.provider_multipliers.get(provider_id, "-")
        row = stats[provider_id]
        print(
            f"{provider_id:<10} x{multiplier:<4} "
            f"success={row['success_rate']:<7} latency={row['avg_response_time']:<8} "
            f"eligible={row['eligible']}"
        )


def main():
    parser = argparse.ArgumentParser(
        description="GenRoute - Credit-metered video generation routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Price a 30 second 4K clip on every provider
    python main.py estimate --duration 30 --resolution 4K

    # Which provider would a low-balance PRO user get?
    python main.py route --plan PRO --credits 20

    # Generate a video with a 200 credit balance
    python main.py submit --prompt "Sunset over Tokyo" --duration 15 --credits 200
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Estimate command
    est_parser = subparsers.add_parser("estimate", help="Price a job in credits")
    est_parser.add_argument("--duration", "-d", type=float, required=True, help="Seconds")
    est_parser.add_argument(
        "--resolution",
        "-r",
        choices=["720p", "1080p", "4K"],
        default="720p",
        help="Output resolution",
    )
    est_parser.add_argument("--provider", "-p", help="Price a single provider")

    # Route command
    route_parser = subparsers.add_parser("route", help="Dry-run provider selection")
    route_parser.add_argument("--plan", default="FREE", help="User plan")
    route_parser.add_argument("--credits", type=int, default=100, help="User balance")
    route_parser.add_argument(
        "--priority",
        choices=["low", "normal", "high"],
        default="normal",
        help="Job priority",
    )
    route_parser.add_argument("--provider", "-p", help="Explicit provider")

    # Submit command
    sub_parser = subparsers.add_parser("submit", help="Run one job end-to-end")
    sub_parser.add_argument("--prompt", required=True, help="Generation prompt")
    sub_parser.add_argument("--duration", "-d", type=float, default=15, help="Seconds")
    sub_parser.add_argument(
        "--resolution",
        "-r",
        choices=["720p", "1080p", "4K"],
        default="720p",
        help="Output resolution",
    )
    sub_parser.add_argument("--plan", default="FREE", help="User plan")
    sub_parser.add_argument("--credits", type=int, default=100, help="Seed balance")
    sub_parser.add_argument(
        "--priority",
        choices=["low", "normal", "high"],
        default="normal",
        help="Job priority",
    )
    sub_parser.add_argument("--provider", "-p", help="Explicit provider")
    sub_parser.add_argument("--enhance", action="store_true", help="Enhance prompt with Gemini")

    # Costs command
    subparsers.add_parser("costs", help="Show the credit price list")

    # Providers command
    subparsers.add_parser("providers", help="List providers and health")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "estimate":
        estimate_cost(args.duration, args.resolution, args.provider)

    elif args.command == "route":
        dry_run_route(args.plan, args.credits, args.priority, args.provider)

    elif args.command == "submit":
        ok = asyncio.run(
            submit_job(
                prompt=args.prompt,
                duration=args.duration,
                resolution=args.resolution,
                plan=args.plan,
                credits=args.credits,
                priority=args.priority,
                provider=args.provider,
                enhance=args.enhance,
            )
        )
        sys.exit(0 if ok else 1)

    elif args.command == "costs":
        show_costs()

    elif args.command == "providers":
        show_providers()


if __name__ == "__main__":
    main()
