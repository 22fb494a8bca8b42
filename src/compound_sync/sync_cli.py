#!/usr/bin/env python3
"""
CLI entry point for compound synchronization.

Keeps a compound store in sync with a remote delta feed or release server,
or replaces a dataset with a local directory of SD files.

Usage:
    compound-sync --config config/pubchem.yaml sync
    compound-sync --config config/chembl.yaml load --directory /data/chembl --version 33
    compound-sync --config config/drugbank.yaml --verbose sync
"""

import argparse
import importlib
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv

from .config import SyncConfig
from .core.exceptions import CompoundSyncError, SyncConfigError
from .core.source import UpdateSource
from .core.store import CompoundStore
from .delta import FtpDeltaSource, HttpReleaseSource
from .loading import EnrichmentStage
from .parsing import CompressedContainerReader, RecordPolicy, SdfRecordParser
from .runner import SyncOrchestrator, run_directory_load
from .state import create_compound_store


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> None:
    """Configure logging to console and optionally to file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"compound_sync_{timestamp}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        ))
        root_logger.addHandler(file_handler)

        logging.info(f"Logging to file: {log_file}")


def build_store(config: SyncConfig) -> CompoundStore:
    """Build the compound store from configuration."""
    db_config = config.get_database_config()
    backend = db_config.get("backend")

    if backend == "sqlite":
        return create_compound_store(
            backend="sqlite",
            db_path=config.get("database.sqlite.db_path"),
        )

    sqlserver = db_config.get("sqlserver", {})
    return create_compound_store(
        backend="sqlserver",
        connection_string=sqlserver.get("connection_string"),
        host=sqlserver.get("host", "localhost"),
        port=int(sqlserver.get("port", 1433)),
        database=sqlserver.get("database", "Compounds"),
        username=sqlserver.get("user", "sa"),
        password=sqlserver.get("password"),
        driver=sqlserver.get("driver", "ODBC Driver 18 for SQL Server"),
        schema=sqlserver.get("schema", "compound_sync"),
    )


def build_parser(config: SyncConfig, id_tag: Optional[str] = None, id_prefix: Optional[str] = None) -> SdfRecordParser:
    """Build the record parser from configuration and command-line overrides."""
    return SdfRecordParser(
        id_tag=id_tag or config.get("sdf.id_tag"),
        id_prefix=id_prefix if id_prefix is not None else config.get("sdf.id_prefix", ""),
        policy=RecordPolicy(config.get("dataset.record_policy", "scanning")),
    )


def build_container_reader(config: SyncConfig) -> CompressedContainerReader:
    """Build the container reader from configuration."""
    return CompressedContainerReader(
        encoding=config.get("dataset.encoding", "latin-1"),
        member_suffix=config.get("sdf.member_suffix", ".sdf"),
    )


def build_source(config: SyncConfig) -> UpdateSource:
    """Build the remote update source from configuration."""
    source_config = config.get_source_config()
    source_type = source_config.get("type")
    timeout = int(source_config.get("timeout", 60))

    if source_type == "ftp":
        ftp = source_config.get("ftp", {})
        return FtpDeltaSource(
            host=ftp["host"],
            port=int(ftp.get("port", 21)),
            username=ftp.get("username") or "anonymous",
            password=ftp.get("password") or "",
            root_path=ftp.get("path") or "",
            file_pattern=config.get("sdf.file_pattern", r".*\.sdf\.gz"),
            base_directory=config.get("paths.base_directory"),
            base_version=config.get("paths.base_version"),
            timeout=timeout,
        )

    if source_type == "http":
        http = source_config.get("http", {})
        return HttpReleaseSource(
            server=http["server"],
            file_name=http["file_name"],
            username=http.get("username"),
            password=http.get("password"),
            timeout=timeout,
        )

    raise SyncConfigError(f"Unknown source type: {source_type}")


def build_enrichment(config: SyncConfig) -> Optional[EnrichmentStage]:
    """Build the enrichment stage if a transform is configured."""
    transform_path = config.get("enrichment.transform")
    if not transform_path:
        return None

    factory_path = config.get("enrichment.context_factory")
    return EnrichmentStage(
        transform=_import_callable(transform_path),
        context_factory=_import_callable(factory_path) if factory_path else None,
        workers=int(config.get("enrichment.workers", 1)),
    )


def _import_callable(path: str) -> Callable:
    """Import 'package.module:attribute'."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise SyncConfigError(f"Expected 'module:function', got {path!r}")
    try:
        return getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise SyncConfigError(f"Cannot import {path}: {e}") from e


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Synchronize a compound store with an external SD file corpus.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Apply the daily/weekly deltas published since the last run
    compound-sync --config config/pubchem.yaml sync

    # Replace the dataset with a local dump, stripping a CHEMBL id prefix
    compound-sync --config config/chembl.yaml load --directory /data/chembl \\
        --id-tag chembl_id --id-prefix CHEMBL --version 33
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML configuration file",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        help="Also write a timestamped log file to this directory",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "sync",
        help="Bring the store up to the latest remote version",
    )

    load_parser = subparsers.add_parser(
        "load",
        help="Replace the dataset with the containers of a local directory",
    )
    load_parser.add_argument(
        "--directory",
        type=Path,
        required=True,
        help="Directory of .sdf, .sdf.gz and .zip files",
    )
    load_parser.add_argument(
        "--version",
        type=str,
        help="Version to record in the dataset marker",
    )
    load_parser.add_argument(
        "--id-tag",
        type=str,
        help="Identifier data field (overrides sdf.id_tag)",
    )
    load_parser.add_argument(
        "--id-prefix",
        type=str,
        help="Literal identifier prefix to strip (overrides sdf.id_prefix)",
    )

    return parser.parse_args(argv)


def run_sync(config: SyncConfig, store: CompoundStore) -> int:
    """Run one synchronization against the configured source."""
    logger = logging.getLogger(__name__)
    dataset = config.get_dataset_config()
    source = build_source(config)
    enrichment = build_enrichment(config)

    try:
        orchestrator = SyncOrchestrator(
            store=store,
            source=source,
            parser=build_parser(config),
            dataset=dataset["name"],
            work_directory=Path(config.get("paths.work_directory", "local/work")),
            container_reader=build_container_reader(config),
            strategy=dataset.get("strategy", "stamped"),
            batch_size=int(dataset.get("batch_size", 1000)),
            delete_batch_size=int(dataset.get("delete_batch_size", 10000)),
            enrichment=enrichment,
        )
        result = orchestrator.run()
    finally:
        source.close()
        if enrichment is not None:
            enrichment.close()

    logger.info(f"Finished in phase {result.phase.value}: version {result.final_version}")
    for name in result.applied:
        logger.info(f"  applied {name}")
    return 0


def run_load(config: SyncConfig, store: CompoundStore, args: argparse.Namespace) -> int:
    """Replace the dataset with a local directory."""
    dataset = config.get_dataset_config()
    enrichment = build_enrichment(config)

    try:
        run_directory_load(
            store=store,
            parser=build_parser(config, id_tag=args.id_tag, id_prefix=args.id_prefix),
            directory=args.directory,
            dataset=dataset["name"],
            version=args.version,
            container_reader=build_container_reader(config),
            strategy=dataset.get("strategy", "stamped"),
            batch_size=int(dataset.get("batch_size", 1000)),
            delete_batch_size=int(dataset.get("delete_batch_size", 10000)),
            enrichment=enrichment,
        )
    finally:
        if enrichment is not None:
            enrichment.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    load_dotenv()
    setup_logging(verbose=args.verbose, log_dir=args.log_dir)
    logger = logging.getLogger(__name__)

    try:
        config = SyncConfig(config_path=args.config)
        if args.command == "load" and args.id_tag:
            config.set("sdf.id_tag", args.id_tag)
        config.validate(require_source=args.command == "sync")
    except SyncConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    logger.info("Configuration loaded")

    store = None
    try:
        store = build_store(config)
        if args.command == "sync":
            return run_sync(config, store)
        return run_load(config, store, args)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except CompoundSyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
