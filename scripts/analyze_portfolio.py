"""
Portfolio analysis CLI: command-line interface for the analysis engine.

Creates and runs portfolio analysis jobs, analyzes single media items and
maintains the job table, separating the command-line logic from the service.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import argparse
import asyncio
import logging
from typing import List, Optional

from analysis.config import AnalysisConfig
from analysis.constants import JobStatus
from analysis.error_handler import AnalysisError
from analysis.service import AnalysisService, create_analysis_service
from utils.config import config
from utils.database import init_database
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _print_job(job) -> None:
    print(f"📋 Job {job.id}")
    print(f"    Portfolio: {job.portfolio_id}")
    print(f"    Status: {job.status.value}")
    print(f"    Progress: {job.progress:.1f}%")
    if job.error:
        label = "Error" if job.status is JobStatus.FAILED else "Note"
        print(f"    {label}: {job.error}")
    if job.completed_at:
        print(f"    Completed: {job.completed_at.isoformat()}")


async def _run_portfolio(service: AnalysisService, portfolio_id: str, creator_id: str,
                         job_id: Optional[str]) -> int:
    if job_id is None:
        job, decision = service.start_portfolio_analysis(portfolio_id, creator_id)
        if job is None:
            print(f"⛔ {decision.message}")
            if decision.next_available_time:
                print(f"    Next available: {decision.next_available_time.isoformat()}")
            return 2
        job_id = job.id
        print(f"🆕 Created job {job_id} ({decision.message})")

    result = await service.run_portfolio_job(job_id, portfolio_id, creator_id)
    print(f"\n📊 Media: {result.media_analyzed} analyzed, {result.media_failed} failed")
    print(f"📊 Projects: {result.projects_analyzed} analyzed, {result.projects_failed} failed")
    if result.status is JobStatus.COMPLETED:
        print(f"✅ Job {job_id} completed ({result.progress:.0f}%)" + (f": {result.message}" if result.message else ""))
        return 0
    print(f"❌ Job {job_id} {result.status.value}: {result.message}")
    return 1


async def _run_single_media(service: AnalysisService, kind: str, media_id: str) -> int:
    analyze = service.analyze_image if kind == 'image' else service.analyze_video
    text = await analyze(media_id)
    if text is None:
        print(f"⏭️ Nothing to analyze for {kind} {media_id}")
    else:
        print(f"✅ {kind.capitalize()} {media_id} analyzed:\n\n{text}")
    return 0


def run_cli(args: argparse.Namespace, service: Optional[AnalysisService] = None) -> int:
    """Execute the parsed command and return the process exit code."""
    if args.init_db:
        path = init_database()
        print(f"✅ Database schema ready at {path}")
        if not any([args.check, args.portfolio, args.status, args.image, args.video, args.sweep_stale]):
            return 0

    service = service or create_analysis_service(AnalysisConfig.from_env())

    try:
        if args.sweep_stale:
            swept = service.sweep_stale_jobs()
            print(f"🧹 Marked {len(swept)} stale jobs failed")
            for job_id in swept:
                print(f"    {job_id}")
            return 0

        if args.check:
            decision = service.can_reanalyze(args.check)
            print(f"{'✅' if decision.allowed else '⛔'} {decision.message}")
            return 0 if decision.allowed else 2

        if args.status:
            _print_job(service.get_job_status(args.status))
            return 0

        if args.image:
            return asyncio.run(_run_single_media(service, 'image', args.image))

        if args.video:
            return asyncio.run(_run_single_media(service, 'video', args.video))

        return asyncio.run(_run_portfolio(service, args.portfolio, args.creator, args.job_id))

    except AnalysisError as e:
        print(f"❌ {e.message}")
        logger.debug("Command failed", exc_info=True)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run AI analysis over creator portfolios",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/analyze_portfolio.py --init-db                               # Create the database schema
  python scripts/analyze_portfolio.py --check PORTFOLIO_ID                    # Is a new analysis allowed?
  python scripts/analyze_portfolio.py --portfolio PORTFOLIO_ID --creator ID  # Create and run a job
  python scripts/analyze_portfolio.py --portfolio P --creator C --job-id J   # Run an existing pending job
  python scripts/analyze_portfolio.py --status JOB_ID                         # Show job status
  python scripts/analyze_portfolio.py --image IMAGE_ID                        # Analyze one image
  python scripts/analyze_portfolio.py --video VIDEO_ID                        # Analyze one video
  python scripts/analyze_portfolio.py --sweep-stale                           # Fail jobs with expired leases
        """
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument('--check', metavar='PORTFOLIO_ID', help='Check whether a portfolio may be analyzed again')
    actions.add_argument('--portfolio', metavar='PORTFOLIO_ID', help='Analyze a portfolio (requires --creator)')
    actions.add_argument('--status', metavar='JOB_ID', help='Show the status of an analysis job')
    actions.add_argument('--image', metavar='IMAGE_ID', help='Analyze a single image')
    actions.add_argument('--video', metavar='VIDEO_ID', help='Analyze a single video')
    actions.add_argument('--sweep-stale', action='store_true', help='Mark processing jobs with expired leases failed')

    parser.add_argument('--creator', metavar='CREATOR_ID', help='Creator owning the portfolio')
    parser.add_argument('--job-id', help='Run an existing pending job instead of creating one')
    parser.add_argument('--init-db', action='store_true', help='Create the database schema before running')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: LOG_LEVEL or INFO)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.portfolio and not args.creator:
        parser.error("--portfolio requires --creator")
    if not any([args.init_db, args.check, args.portfolio, args.status, args.image, args.video, args.sweep_stale]):
        parser.error("nothing to do; pass an action such as --portfolio or --status")

    setup_logging(level=args.log_level or config.get_log_level())
    return run_cli(args)


if __name__ == '__main__':
    sys.exit(main())
