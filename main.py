#!/usr/bin/env python3
"""
CRM Team Reporter - Main Entry Point

Usage:
    python main.py run              # Generate and upload all team reports
    python main.py run --mock       # Same, against the mock CRM snapshot
    python main.py setup            # Validate configuration
    python main.py chain USER_ID    # Show a user's management chain
    python main.py tree             # Print the filtered user hierarchy
    python main.py mock-data        # Write a generated mock CRM snapshot
"""
import os
import sys
import json
import argparse
import logging
from datetime import datetime
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import get_config
from crm_reporter.core.error_taxonomy import ConfigurationError, FatalConnectionError

logger = logging.getLogger(__name__)

def configure_logging(level: str, log_file: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file),
        ]
    )

def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())

def get_gateway(config, use_mock: bool, mock_data: str = None):
    """Build the record-store gateway for this run."""
    if use_mock:
        from crm_reporter.tools.mock_crm import MockCrmGateway
        return MockCrmGateway.from_yaml(mock_data or config.mock_data_path)

    from crm_reporter.tools.crm_client import get_crm_gateway
    return get_crm_gateway(config)

def build_hierarchy(gateway, config):
    from crm_reporter.data.user_hierarchy import UserFilter, UserHierarchyBuilder

    criteria = UserFilter(
        segment=config.report.segment,
        lob=config.report.lob,
        roles=tuple(config.report.roles),
    )
    return UserHierarchyBuilder(gateway).build(criteria)

def cmd_run(args):
    """Generate and upload the team reports."""
    from crm_reporter.reporting.orchestrator import HierarchyReportOrchestrator
    from crm_reporter.reporting.report_emitter import ReportEmitter
    from crm_reporter.tools.excel_output import ReportWorkbookBuilder

    config = get_config()
    start_time = datetime.now()
    logger.info(f"Report Generation Started at: {start_time:%Y-%m-%d %H:%M:%S}")

    gateway = get_gateway(config, args.mock or config.use_mock_data, args.mock_data)
    gateway.check_connection()

    emitter = ReportEmitter(
        gateway,
        builder=ReportWorkbookBuilder(worksheet_name=config.report.worksheet_name),
        temp_dir=config.report.temp_dir,
    )
    orchestrator = HierarchyReportOrchestrator(gateway, emitter, config.report)
    summary = orchestrator.run()

    end_time = datetime.now()
    logger.info(f"Report Generation Completed at: {end_time:%Y-%m-%d %H:%M:%S}")
    logger.info(f"Total Execution Time: {(end_time - start_time).total_seconds()} seconds")

    print("\n" + "="*60)
    print("RUN SUMMARY")
    print("="*60)
    print(json.dumps(summary.to_dict(), indent=2))

def cmd_setup(args):
    """Validate configuration and setup."""
    config = get_config()

    print("\n" + "="*60)
    print("CONFIGURATION VALIDATION")
    print("="*60)

    print(f"\n📦 CRM Configuration:")
    crm = config.crm
    checks = [
        ("URL", crm.url),
        ("Tenant ID", crm.tenant_id),
        ("Client ID", crm.client_id),
        ("Client Secret", crm.client_secret),
    ]
    for name, value in checks:
        status = "✅" if value else "❌"
        print(f"   {status} {name}: {'Set' if value else 'MISSING'}")
    print(f"   API base: {crm.api_base_url}")

    print(f"\n📊 Report Filters:")
    report = config.report
    print(f"   Segment: {report.segment}")
    print(f"   LOB: {report.lob}")
    print(f"   Roles: {', '.join(str(r) for r in report.roles)}")
    print(f"   Seed role: {report.seed_role}")
    print(f"   Upload column: {report.file_attribute}")

    print(f"\n🧪 Mock Mode: {'ON' if config.use_mock_data else 'OFF'} ({config.mock_data_path})")

    print("\n" + "="*60)

def cmd_chain(args):
    """Print a user's management chain."""
    config = get_config()
    gateway = get_gateway(config, args.mock or config.use_mock_data, args.mock_data)
    gateway.check_connection()
    hierarchy = build_hierarchy(gateway, config)

    user = hierarchy.record_of(args.user_id)
    if user is None:
        print(f"User {args.user_id} is not in the filtered user list")
        sys.exit(1)

    print(f"{user.full_name} ({user.user_id})")
    for depth, manager in enumerate(hierarchy.management_chain(user.user_id), 1):
        print(f"{'  ' * depth}↑ {manager.full_name} ({manager.user_id})")

def cmd_tree(args):
    """Print the filtered user hierarchy."""
    from crm_reporter.data.user_hierarchy import format_hierarchy

    config = get_config()
    gateway = get_gateway(config, args.mock or config.use_mock_data, args.mock_data)
    gateway.check_connection()
    print(format_hierarchy(build_hierarchy(gateway, config)))

def cmd_mock_data(args):
    """Generate a random organization snapshot for mock runs."""
    from crm_reporter.tools.mock_crm import generate_mock_snapshot, save_mock_snapshot

    snapshot = generate_mock_snapshot(
        heads=args.heads,
        managers_per_head=args.managers,
        hprs_per_manager=args.hprs,
        products_per_user=args.products,
        seed=args.seed,
    )
    path = save_mock_snapshot(snapshot, args.output)
    print(f"Wrote {len(snapshot['users'])} users and {len(snapshot['products'])} products to {path}")
    print(f"Run against it with: python main.py run --mock --mock-data {path}")

def add_source_arguments(parser):
    parser.add_argument('--mock', action='store_true',
                        help='Use the mock CRM snapshot instead of the Web API')
    parser.add_argument('--mock-data', default=None,
                        help='Path to a mock CRM YAML snapshot')

def main():
    setup_environment()
    try:
        config = get_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)
    configure_logging(config.log_level, config.log_file)

    parser = argparse.ArgumentParser(
        description="CRM Team Reporter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run                      Generate all team reports
  python main.py run --mock               Run against the mock snapshot
  python main.py chain <user-guid>        Show a user's managers
  python main.py setup                    Check configuration
  python main.py mock-data --seed 7       Generate a mock organization

Environment Variables:
  CRM_URL               Organization URL (https://yourorg.crm.dynamics.com)
  CRM_TENANT_ID         Azure AD tenant
  CRM_CLIENT_ID         App registration client id
  CRM_CLIENT_SECRET     App registration secret
  REPORT_SEED_ROLE      Role code of the users that start a pass
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    run_parser = subparsers.add_parser('run', help='Generate and upload reports')
    add_source_arguments(run_parser)
    run_parser.set_defaults(func=cmd_run)

    setup_parser = subparsers.add_parser('setup', help='Validate setup')
    setup_parser.set_defaults(func=cmd_setup)

    chain_parser = subparsers.add_parser('chain', help="Show a user's management chain")
    chain_parser.add_argument('user_id', help='systemuser id')
    add_source_arguments(chain_parser)
    chain_parser.set_defaults(func=cmd_chain)

    tree_parser = subparsers.add_parser('tree', help='Print the user hierarchy')
    add_source_arguments(tree_parser)
    tree_parser.set_defaults(func=cmd_tree)

    mock_parser = subparsers.add_parser('mock-data', help='Generate a mock CRM snapshot')
    mock_parser.add_argument('--output', default='mock_org.yaml',
                             help='Where to write the YAML snapshot')
    mock_parser.add_argument('--seed', type=int, default=None, help='Random seed')
    mock_parser.add_argument('--heads', type=int, default=1)
    mock_parser.add_argument('--managers', type=int, default=2, help='Managers per head')
    mock_parser.add_argument('--hprs', type=int, default=3, help='HPR users per manager')
    mock_parser.add_argument('--products', type=int, default=4, help='Products per HPR user')
    mock_parser.set_defaults(func=cmd_mock_data)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except (FatalConnectionError, ConfigurationError) as e:
        logger.error(f"Fatal Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)

if __name__ == "__main__":
    main()
