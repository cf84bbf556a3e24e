import asyncio
import json
import logging
import sys
import argparse
from datetime import datetime, timedelta, timezone
from pathlib import Path

from anonymous_voting_system import AnonymousVotingSystem, run_demo
from ballots.elections import Election, InMemoryElectionDirectory
from config.config import SystemConfig, load_config
from utils.utils import setup_logging, validate_environment, format_duration
from zk.errors import ZKError
from zk.setup_pipeline import SetupPipeline

logger = logging.getLogger(__name__)


def run_setup(config: SystemConfig, force: bool) -> bool:
    issues = validate_environment([
        config.zk_config.circom_bin, config.zk_config.snarkjs_bin, config.zk_config.node_bin])
    for issue in issues:
        logger.warning(issue)

    pipeline = SetupPipeline(config.zk_config)
    try:
        outcome = pipeline.run(force=force)
    except ZKError as e:
        logger.error(f"Setup failed: {e}")
        return False

    for stage, result in outcome.items():
        print(f"  {stage}: {result}")
    return True


def show_status(config: SystemConfig) -> bool:
    report = SetupPipeline(config.zk_config).status()

    print(f"Circuit: {report['circuit']}")
    for stage, info in report["stages"].items():
        mark = "OK " if info["complete"] else "MISSING"
        print(f"  [{mark}] {stage}")
        for label, artifact in info["artifacts"].items():
            state = "valid" if artifact["valid"] else (
                "undersized" if artifact["exists"] else "missing")
            print(f"        {label:<5} {artifact['size']:>10} bytes  {state}  {artifact['path']}")
    for tool, found in report["tools"].items():
        print(f"  tool {tool}: {'found' if found else 'NOT FOUND'}")

    print("Ready" if report["ready"] else "Setup incomplete: run with --mode setup")
    return report["ready"]


def demo_directory(election_id: int, candidate_ids) -> InMemoryElectionDirectory:
    now = datetime.now(timezone.utc)
    return InMemoryElectionDirectory([
        Election(
            election_id=election_id,
            start_date=now - timedelta(hours=1),
            end_date=now + timedelta(days=1),
            candidate_ids=frozenset(candidate_ids),
            title="Demo election",
        )
    ])


async def demo(config: SystemConfig, voters: int) -> bool:
    election_id, candidate_id = 789, 456
    system = AnonymousVotingSystem(
        config, elections=demo_directory(election_id, [candidate_id, 457, 458]))
    try:
        report = await run_demo(system, election_id, candidate_id, [123 + i for i in range(voters)])
    finally:
        system.close()

    print(json.dumps(report, indent=2))

    summary = system.get_system_metrics()
    for op, stats in summary["operations"].items():
        print(f"  {op}: {stats['count']} runs, avg {format_duration(stats['avg_duration'])}")

    accepted = sum(1 for vote in report["votes"] if vote["success"])
    return accepted == voters


def serve(config: SystemConfig):
    from api.app import create_app

    system = AnonymousVotingSystem(config)
    app = create_app(system, config.api_config)
    logger.info(f"Serving on {config.api_config.host}:{config.api_config.port}")
    try:
        app.run(host=config.api_config.host, port=config.api_config.port, threaded=True)
    finally:
        system.close()


def main():
    parser = argparse.ArgumentParser(
        description='Anonymous vote commitment and double-vote prevention service')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument(
        '--mode', choices=['setup', 'status', 'serve', 'demo'], default='status')
    parser.add_argument('--force', action='store_true',
                        help='Re-run every setup stage')
    parser.add_argument('--voters', type=int, default=3,
                        help='Number of demo voters')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(config.log_level, log_dir=config.log_dir)

    if args.mode == 'setup':
        sys.exit(0 if run_setup(config, args.force) else 1)
    elif args.mode == 'status':
        sys.exit(0 if show_status(config) else 1)
    elif args.mode == 'demo':
        sys.exit(0 if asyncio.run(demo(config, args.voters)) else 1)
    elif args.mode == 'serve':
        serve(config)


if __name__ == "__main__":
    main()
