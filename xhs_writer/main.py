"""
xhs-writer - CLI Entry Point.

Command-line interface for hot-post analysis, streamed post generation and
upkeep of the credential pools and the hot-post cache.

Usage:
    # Structured hot-post analysis for a keyword
    python -m xhs_writer.main analyze 防晒

    # Stream a generated post
    python -m xhs_writer.main generate 防晒 --info "油皮，夏天通勤，预算200以内"

    # Cache maintenance
    python -m xhs_writer.main cache list
    python -m xhs_writer.main cache show 防晒
    python -m xhs_writer.main cache invalidate 防晒
    python -m xhs_writer.main cache sweep

    # Credential pools
    python -m xhs_writer.main credentials status
    python -m xhs_writer.main credentials validate

    # Run the maintenance scheduler until Ctrl+C
    python -m xhs_writer.main maintain

Example:
    >>> python -m xhs_writer.main generate 防晒 --info "油皮"
    INFO     xhs_writer.orchestrator.cache_manager - Cache hit: 防晒
    INFO     xhs_writer.orchestrator.request_orchestrator - Structured request succeeded on gemini-2.5-flash (attempt 1)
    ## 1. 爆款标题创作（3个）
    ...
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import NoReturn, Optional

import orjson

from xhs_writer.config import AppConfig
from xhs_writer.orchestrator.scheduler import MaintenanceScheduler
from xhs_writer.services import Services
from xhs_writer.utils.exceptions import OrchestrationExhaustedError, XhsWriterError
from xhs_writer.utils.logger import setup_logger

# Package-level handlers; module loggers propagate to them
setup_logger("xhs_writer")
logger = logging.getLogger("xhs_writer.main")


class XhsWriterCLI:
    """
    Command-line interface for xhs-writer.

    Features:
        - Hot-post analysis (cache -> live fetch -> category fallback)
        - Streamed post generation with multi-backend failover
        - Cache inspection, invalidation and sweeping
        - Credential pool status and live revalidation
        - Maintenance scheduler with graceful shutdown
    """

    def __init__(self):
        """Initialize CLI with argument parser and signal handlers."""
        self.parser = self._create_parser()
        self.scheduler: Optional[MaintenanceScheduler] = None
        self.args = None

        # Setup signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create and configure argument parser.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="xhs-writer",
            description=(
                "Hot-post analysis and post generation with rotating credentials, "
                "a tiered cache and multi-backend failover."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Analyze hot posts for a keyword
  python -m xhs_writer.main analyze 防晒

  # Generate a post from your own material
  python -m xhs_writer.main generate 防晒 --info "油皮，夏天通勤"

  # Inspect the cache
  python -m xhs_writer.main cache list

  # Probe every configured cookie
  python -m xhs_writer.main credentials validate

Configuration:
  Set environment variables in .env file:
    - XHS_COOKIE / XHS_COOKIE_1..n: Search API cookies (required for scraping)
    - XHS_DETAIL_COOKIE_1..n: Detail API cookies (default: search cookies)
    - THIRD_PARTY_API_URL / THIRD_PARTY_API_KEY: Chat API (required)
    - AI_MODEL_NAME: Comma-separated backends, highest priority first
    - CACHE_TTL_HOURS: Cache freshness window (default: 6)
            """,
        )

        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Override default log level",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {AppConfig.VERSION}",
        )

        commands = parser.add_subparsers(dest="command", metavar="COMMAND")
        commands.required = True

        # analyze
        analyze = commands.add_parser("analyze", help="Structured hot-post analysis")
        analyze.add_argument("keyword", help="Topic keyword (e.g. 防晒)")
        analyze.add_argument(
            "--deadline",
            type=float,
            metavar="SECONDS",
            help="Overall time budget for the request",
        )

        # generate
        generate = commands.add_parser("generate", help="Stream a generated post")
        generate.add_argument("keyword", help="Topic keyword (e.g. 防晒)")
        generate.add_argument(
            "--info",
            required=True,
            metavar="TEXT",
            help="Your own material the post is based on",
        )
        generate.add_argument(
            "--deadline",
            type=float,
            metavar="SECONDS",
            help="Overall time budget for the streamed request",
        )

        # cache
        cache = commands.add_parser("cache", help="Inspect and maintain the hot-post cache")
        cache_actions = cache.add_subparsers(dest="cache_action", metavar="ACTION")
        cache_actions.required = True
        cache_actions.add_parser("list", help="List cached keywords")
        cache_actions.add_parser("sweep", help="Remove expired, corrupt and surplus files")
        show = cache_actions.add_parser("show", help="Print the cached summary for a keyword")
        show.add_argument("keyword")
        invalidate = cache_actions.add_parser("invalidate", help="Delete the entry for a keyword")
        invalidate.add_argument("keyword")

        # credentials
        credentials = commands.add_parser("credentials", help="Credential pool status and probes")
        credential_actions = credentials.add_subparsers(dest="credential_action", metavar="ACTION")
        credential_actions.required = True
        credential_actions.add_parser("status", help="Show pool state (secrets masked)")
        credential_actions.add_parser("validate", help="Probe every credential live")

        # maintain
        maintain = commands.add_parser("maintain", help="Run maintenance jobs until Ctrl+C")
        maintain.add_argument(
            "--revalidate-hours",
            type=int,
            default=6,
            metavar="HOURS",
            help="Hours between credential revalidation runs (default: 6)",
        )

        return parser

    def _validate_configuration(self) -> None:
        """
        Validate application configuration for the generation commands.

        Raises:
            SystemExit: If configuration is invalid
        """
        is_valid, errors = AppConfig.validate()

        if not is_valid:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")

            print("\n❌ Configuration Error\n", file=sys.stderr)
            print("Please fix the following issues:\n", file=sys.stderr)
            for error in errors:
                print(f"  • {error}", file=sys.stderr)

            print("\nCreate a .env file with required settings:", file=sys.stderr)
            print("  XHS_COOKIE_1=your_cookie_here", file=sys.stderr)
            print("  THIRD_PARTY_API_URL=https://api.example.com/v1", file=sys.stderr)
            print("  THIRD_PARTY_API_KEY=your_key_here", file=sys.stderr)

            sys.exit(1)

        logger.info("Configuration validated successfully")

    @staticmethod
    def _print_exhaustion(error: OrchestrationExhaustedError) -> None:
        print("\n❌ Generation failed\n", file=sys.stderr)
        print(f"  {error.message}", file=sys.stderr)
        print(f"  Backends tried:      {', '.join(error.backends_tried) or 'none'}", file=sys.stderr)
        print(f"  Attempts:            {len(error.attempts)}", file=sys.stderr)
        if error.last_error:
            print(f"  Last error:          {error.last_error}", file=sys.stderr)
        print(f"  Retry later:         {'yes' if error.retryable else 'no'}\n", file=sys.stderr)

    async def _run_analyze(self, services: Services) -> None:
        """Print the structured analysis for ``args.keyword``."""
        result = await services.source.analyze(self.args.keyword, self.args.deadline)

        print("\n" + "=" * 70)
        print(f"  HOT-POST ANALYSIS: {self.args.keyword}")
        print("=" * 70 + "\n")
        print(orjson.dumps(result.data, option=orjson.OPT_INDENT_2).decode("utf-8"))
        print(f"\n  Backend: {result.backend} | Attempts: {len(result.attempts)}\n")
        print("=" * 70 + "\n")

    async def _run_generate(self, services: Services) -> None:
        """Stream a generated post for ``args.keyword`` to stdout."""
        analysis = await services.source.analyze(self.args.keyword, self.args.deadline)

        def on_chunk(chunk: str) -> None:
            # Empty chunks are heartbeats
            if chunk:
                sys.stdout.write(chunk)
                sys.stdout.flush()

        failures: list[OrchestrationExhaustedError] = []

        result = await services.source.generate(
            self.args.keyword,
            self.args.info,
            on_chunk,
            on_error=failures.append,
            analysis=analysis.data,
            overall_deadline=self.args.deadline,
        )
        print()

        if result is None:
            self._print_exhaustion(failures[0])
            sys.exit(1)

        logger.info(
            f"Generated {len(result.text)} characters on {result.backend}",
            extra={"chunks": result.chunk_count, "attempts": len(result.attempts)},
        )

    async def _run_generation_command(self) -> None:
        services = Services.from_env()
        try:
            if self.args.command == "analyze":
                await self._run_analyze(services)
            else:
                await self._run_generate(services)
        except OrchestrationExhaustedError as e:
            self._print_exhaustion(e)
            sys.exit(1)
        except XhsWriterError as e:
            logger.error(f"{self.args.command} failed: {e}")
            print(f"\n❌ {e}\n", file=sys.stderr)
            sys.exit(1)
        finally:
            await services.close()

    def _run_cache_command(self) -> None:
        """Handle ``cache list|show|invalidate|sweep``."""
        services = Services.from_env()
        cache = services.cache
        action = self.args.cache_action

        if action == "list":
            entries = cache.list_entries()
            print("\n" + "=" * 70)
            print("  CACHED KEYWORDS")
            print("=" * 70 + "\n")
            if not entries:
                print("  (empty)\n")
            for entry in entries:
                expires = datetime.fromtimestamp(cache.expires_at(entry))
                print(
                    f"  {entry.key:20} {entry.category:10} "
                    f"notes={entry.metadata.total_notes:<4} "
                    f"expires {expires.strftime('%Y-%m-%d %H:%M:%S')}"
                )
            stats = cache.get_statistics()
            print(f"\n  Directory: {stats['cache_dir']} | Files: {stats['total_files']}\n")

        elif action == "show":
            entry = cache.get(self.args.keyword)
            if entry is None:
                print(f"\n❌ No fresh cache entry for '{self.args.keyword}'\n")
                sys.exit(1)
            print(entry.payload)

        elif action == "invalidate":
            removed = cache.invalidate(self.args.keyword)
            print(f"\n  {'Removed' if removed else 'Nothing cached for'} '{self.args.keyword}'\n")

        elif action == "sweep":
            report = cache.sweep()
            print(f"\n  Swept {report.cleaned} of {report.total_files} cache files\n")

    async def _run_credentials_command(self) -> None:
        """Handle ``credentials status|validate``."""
        services = Services.from_env()
        try:
            if self.args.credential_action == "validate":
                for pool in services.pools:
                    results = await pool.validate_all()
                    accepted = sum(results.values())
                    logger.info(f"Pool '{pool.name}': {accepted}/{len(results)} credentials accepted")
            self._display_pools(services)
        finally:
            await services.close()

    @staticmethod
    def _display_pools(services: Services) -> None:
        print("\n" + "=" * 70)
        print("  CREDENTIAL POOLS")
        print("=" * 70)
        for pool in services.pools:
            stats = pool.get_statistics()
            print(f"\n🔑 Pool '{pool.name}': {stats['valid']}/{stats['total']} valid")
            for info in pool.records_info():
                state = "🟢 valid" if info["valid"] else "🔴 invalid"
                print(
                    f"  {info['id']:22} {state:10} {info['masked']:24} "
                    f"failures={info['failure_count']}"
                )
        print("\n" + "=" * 70 + "\n")

    def _run_maintain(self) -> None:
        """Run the maintenance scheduler until interrupted."""
        services = Services.from_env()
        self.scheduler = services.create_scheduler(
            revalidate_interval_hours=self.args.revalidate_hours,
        )

        try:
            self.scheduler.start()

            print("\n" + "=" * 70)
            print(f"  {AppConfig.APP_NAME} v{AppConfig.VERSION} - maintenance")
            print("=" * 70)
            print(f"\n  🧹 Cache sweep every {self.scheduler.sweep_interval_hours}h")
            print(f"  🔑 Credential revalidation every {self.args.revalidate_hours}h")
            print(f"\n  Press Ctrl+C to stop gracefully...\n")
            print("=" * 70 + "\n")

            # Keep running until interrupted
            while self.scheduler.is_running():
                signal.pause()  # Wait for signal

        except KeyboardInterrupt:
            logger.info("Received interrupt signal - shutting down gracefully")
            self._shutdown()

        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
            self._shutdown()
            sys.exit(1)

    def _shutdown(self) -> None:
        """Graceful shutdown of the scheduler."""
        if self.scheduler and self.scheduler.is_running():
            print("\n\n🛑 Shutting down gracefully...\n")
            logger.info("Stopping scheduler...")

            self.scheduler.stop(wait=True)

            stats = self.scheduler.get_statistics()
            print("=" * 70)
            print("  SHUTDOWN SUMMARY")
            print("=" * 70)
            print(f"\n  Sweeps:              {stats['sweeps']}")
            print(f"  Files Cleaned:       {stats['files_cleaned']}")
            print(f"  Revalidations:       {stats['revalidations']}")
            print(f"  Errors:              {stats['errors']}")
            print("\n" + "=" * 70 + "\n")

            logger.info("Shutdown complete")

    def _signal_handler(self, signum: int, frame) -> None:
        """
        Handle interrupt signals for graceful shutdown.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        logger.info(f"Received signal {signum}")
        self._shutdown()
        sys.exit(0)

    def run(self, argv: Optional[list[str]] = None) -> NoReturn:
        """
        Main entry point for CLI execution.

        Parses arguments and executes the requested command.
        """
        self.args = self.parser.parse_args(argv)

        # Override log level if specified
        if self.args.log_level:
            level = getattr(logging, self.args.log_level)
            package_logger = logging.getLogger("xhs_writer")
            package_logger.setLevel(level)
            for handler in package_logger.handlers:
                handler.setLevel(level)

        logger.debug(f"Command: {self.args.command}", extra={"started": datetime.now().isoformat()})

        if self.args.command in ("analyze", "generate"):
            self._validate_configuration()
            asyncio.run(self._run_generation_command())
        elif self.args.command == "cache":
            self._run_cache_command()
        elif self.args.command == "credentials":
            asyncio.run(self._run_credentials_command())
        elif self.args.command == "maintain":
            self._run_maintain()

        sys.exit(0)


def main() -> NoReturn:
    """
    Application entry point.

    Creates and runs CLI instance.
    """
    try:
        cli = XhsWriterCLI()
        cli.run()
    except XhsWriterError as e:
        logger.error(f"{e}")
        print(f"\n❌ {e}\n", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        print(f"\n❌ Fatal Error: {e}\n", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
