"""
Command-line interface for httpguard.

Sends requests through a GuardedClient so interceptor behaviour can be
tried out from the shell. All commands use async operations under the hood.

Available commands:
- request: Send one or more requests with selected interceptors
- groups: List the preset interceptor groups
"""

import asyncio
import logging
import sys

import click

from httpguard.client import GuardedClient
from httpguard.config import GuardSettings
from httpguard.exceptions import HttpGuardError

logger = logging.getLogger("httpguard.cli")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """httpguard CLI"""
    _configure_logging(verbose)


@cli.command()
@click.argument("url")
@click.option("--method", default="GET", show_default=True, help="HTTP method")
@click.option("--repeat", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--retry/--no-retry", default=False, help="Retry transient failures")
@click.option("--cache", is_flag=True, help="Cache successful GET responses")
@click.option("--dedup", is_flag=True, help="Coalesce concurrent identical requests")
@click.option(
    "--rate-limit",
    nargs=2,
    type=(int, float),
    default=None,
    metavar="MAX WINDOW",
    help="Allow MAX requests per WINDOW seconds",
)
@click.option("--circuit-breaker", is_flag=True, help="Guard calls with a circuit breaker")
@click.option("--log/--no-log", default=True, help="Log requests and responses")
@click.option("--concurrent", is_flag=True, help="Send the repeated requests concurrently")
def request(url, method, repeat, retry, cache, dedup, rate_limit, circuit_breaker, log, concurrent):
    """Send requests to URL through the configured interceptors."""

    async def _run():
        settings = GuardSettings()
        client = GuardedClient(settings=settings)

        if log:
            client.use_logging()
        if retry:
            client.use_retry()
        if cache:
            client.use_cache()
        if dedup:
            client.use_dedup()
        if rate_limit:
            max_requests, window = rate_limit
            client.use_rate_limit(max_requests=max_requests, window=window)
        if circuit_breaker:
            client.use_circuit_breaker()

        failures = 0
        try:
            def send():
                return client.request(method=method.upper(), url=url)

            if concurrent:
                results = await asyncio.gather(
                    *(send() for _ in range(repeat)), return_exceptions=True
                )
            else:
                results = []
                for _ in range(repeat):
                    try:
                        results.append(await send())
                    except HttpGuardError as exc:
                        results.append(exc)

            for i, result in enumerate(results, start=1):
                if isinstance(result, BaseException):
                    failures += 1
                    code = getattr(result, "code", type(result).__name__)
                    click.echo(f"#{i}: error {code}: {result}")
                    continue
                flags = []
                if result.served_from_cache:
                    flags.append("cached")
                if result.deduplicated:
                    flags.append("deduplicated")
                if result.retry_attempt:
                    flags.append(f"attempt={result.retry_attempt}")
                suffix = f" [{', '.join(flags)}]" if flags else ""
                click.echo(f"#{i}: {result.status} {result.status_text}{suffix}")
        finally:
            await client.aclose()
        return failures

    failures = asyncio.run(_run())
    if failures:
        sys.exit(1)


@cli.command()
def groups():
    """List the preset interceptor groups."""

    async def _run():
        client = GuardedClient(settings=GuardSettings())
        try:
            client.setup_common_groups()
            return client.get_groups()
        finally:
            await client.aclose()

    for name, members in asyncio.run(_run()).items():
        click.echo(f"{name}: {', '.join(members)}")


if __name__ == "__main__":
    cli()
