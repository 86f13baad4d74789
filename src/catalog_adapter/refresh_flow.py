"""
Prefect Orchestration for the catalog refresh
Wraps the APIOrchestrator refresh run in Prefect tasks and a flow so a scheduler can trigger it

python -m catalog_adapter.refresh_flow --config configs/catalog.toml --parents data/input/parents.txt
"""

import argparse
import sys
import traceback
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from prefect import flow, get_run_logger, task
from prefect.tasks import task_input_hash

from catalog_adapter.api_orchestrator import APIOrchestrator
from catalog_adapter.config_loader import ConfigLoader, ConfigurationError, EnvironmentError, configure_logging
from catalog_adapter.database_manager import DatabaseConnectionError

# ===================================================================
# PREFECT TASKS
# ===================================================================


@task(
    name="validate_configuration",
    description="Validate TOML configuration and environment overrides",
    cache_key_fn=task_input_hash,
    cache_expiration=timedelta(hours=1),
    retries=0  # Configuration validation should not retry
)
def validate_configuration(config_path: str) -> Dict[str, Any]:
    """
    Validate TOML configuration and environment overrides

    Args:
        config_path: Path to TOML configuration file

    Returns:
        Validation results and config summary
    """
    logger = get_run_logger()
    logger.info(f"Validating configuration: {config_path}")

    try:
        config = ConfigLoader.apply_environment_overrides(ConfigLoader.load_toml_config(Path(config_path)))
    except (ConfigurationError, EnvironmentError) as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    logger.info("Configuration validation passed")
    return {
        'status': 'valid',
        'config_summary': {
            'api_name': config.name,
            'base_url': config.base_url,
            'max_retries': config.transport['max_retries'],
            'cache_database': config.cache.get('database', 'in-memory')
        }
    }


@task(
    name="load_parent_list",
    description="Load parent ids from input file",
    retries=0  # File loading should not retry
)
def load_parent_list(parent_file_path: str) -> List[str]:
    """
    Load parent ids from input file

    Args:
        parent_file_path: Path to file containing parent ids (one per line)

    Returns:
        List of parent id strings
    """
    logger = get_run_logger()
    logger.info(f"Loading parents from: {parent_file_path}")

    file_path = Path(parent_file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Parent file not found: {parent_file_path}")

    with open(file_path, 'r', encoding='utf-8') as file:
        parent_ids = [line.strip() for line in file if line.strip() and not line.strip().startswith('#')]

    if not parent_ids:
        raise ValueError(f"Parent file is empty: {parent_file_path}")

    logger.info(f"Loaded {len(parent_ids)} parents")
    return parent_ids


@task(
    name="refresh_parents",
    description="Refresh cached item collections for a batch of parents",
    retries=1,
    retry_delay_seconds=30
)
def refresh_parents(config_path: str, parent_ids: List[str], force: bool = False) -> Dict[str, Any]:
    """
    Run one refresh pass through the orchestrator

    Args:
        config_path: Path to TOML configuration file
        parent_ids: Parents to refresh
        force: Refetch collections even when cached and unexpired

    Returns:
        Refresh run summary
    """
    logger = get_run_logger()
    config = ConfigLoader.apply_environment_overrides(ConfigLoader.load_toml_config(Path(config_path)))

    try:
        orchestrator = APIOrchestrator.from_config(config)
    except DatabaseConnectionError as e:
        logger.error(f"Cache database initialisation failed: {e}")
        raise

    try:
        summary = orchestrator.run_refresh(parent_ids, force=force)
    finally:
        orchestrator.close()

    for result in summary['parent_results']:
        if result['status'] in ('stale', 'not_found'):
            logger.warning(f"Parent {result['parent_id']} not refreshed ({result['status']})")

    logger.info(
        f"Refreshed {summary['refreshed_parents']}/{summary['total_parents']} parents, "
        f"{summary['total_items']} items, {summary['total_requests']} requests"
    )
    return summary


# ===================================================================
# PREFECT FLOW
# ===================================================================


@flow(
    name="catalog_refresh_flow",
    description="Refresh cached catalog items from the upstream paginated API",
    log_prints=True
)
def catalog_refresh_flow(config_path: str, parent_file_path: str, force: bool = False) -> Dict[str, Any]:
    """
    Main catalog refresh flow

    Args:
        config_path: Path to TOML configuration file
        parent_file_path: Path to parent id list file
        force: Refetch every collection regardless of expiry

    Returns:
        Flow execution results
    """
    logger = get_run_logger()
    logger.info("Starting catalog refresh")
    logger.info(f"Configuration: {config_path}")
    logger.info(f"Parent file: {parent_file_path}")

    validation = validate_configuration(config_path)
    parent_ids = load_parent_list(parent_file_path)
    summary = refresh_parents(config_path, parent_ids, force)

    logger.info(f"Catalog refresh finished with status {summary['status']}")
    return {
        'pipeline_status': summary['status'],
        'config_summary': validation['config_summary'],
        **summary
    }


# ===================================================================
# COMMAND LINE INTERFACE
# ===================================================================


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point"""
    parser = argparse.ArgumentParser(
        description="Prefect catalog refresh",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Refresh collections that are missing or expired
  python -m catalog_adapter.refresh_flow --config configs/catalog.toml --parents data/input/parents.txt

  # Refetch everything
  python -m catalog_adapter.refresh_flow --config configs/catalog.toml --parents data/input/parents.txt --force
        """
    )

    parser.add_argument("--config", required=True, help="Path to TOML configuration file")
    parser.add_argument("--parents", required=True, help="Path to parent id list file")
    parser.add_argument("--force", action="store_true", help="Refetch collections even when cached")
    parser.add_argument("--verbose", action="store_true", help="Print tracebacks on failure")

    args = parser.parse_args(argv)

    try:
        config = ConfigLoader.apply_environment_overrides(ConfigLoader.load_toml_config(Path(args.config)))
        configure_logging(config.logging)

        result = catalog_refresh_flow(
            config_path=args.config,
            parent_file_path=args.parents,
            force=args.force
        )

        print("\n" + "=" * 70)
        print("CATALOG REFRESH SUMMARY")
        print("=" * 70)
        print(f"Status: {result['pipeline_status']}")
        print(f"Run ID: {result['run_id']}")
        print(f"Parents refreshed: {result['refreshed_parents']}/{result['total_parents']}")
        print(f"Served from cache: {result['cached_parents']}")
        print(f"Served stale: {result['stale_parents']}")
        print(f"Failed: {result['failed_parents']}")
        print(f"Items: {result['total_items']}")
        print("=" * 70)

        return 0 if result['failed_parents'] == 0 else 1

    except Exception as e:
        print(f"\nExecution failed: {e}")
        if args.verbose:
            print(f"Traceback: {traceback.format_exc()}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
