#!/usr/bin/env python3
"""
Attendance integrity engine entry point: serves the HTTP API with uvicorn.
"""
import argparse
import sys

import uvicorn

from api.api_server import create_app
from attendance.attendance_system import AttendanceStore
from attendance_integration import AttendanceIntegrityService
from geofence.zones import ZoneRegistry
from utils.config import config
from utils.errors import IntegrityError
from utils.logger import logger


def build_service(db_path: str = None, zones_file: str = None) -> AttendanceIntegrityService:
    """Construct the service from the global configuration plus command line overrides."""
    if db_path:
        config.attendance.db_path = db_path
        config._create_directories()
    if zones_file:
        config.attendance.zones_file = zones_file

    store = AttendanceStore(config.attendance.db_path)
    zones = ZoneRegistry.from_config(config.attendance.zones_file)
    return AttendanceIntegrityService(store=store, zones=zones, settings=config)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Self-service attendance integrity engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                              # Serve on 0.0.0.0:8080 with attendance.db
  python main.py --port 9000 --db ./data/attendance.db
  python main.py --zones ./zones.json         # Custom attendance zones
  python main.py --verbose                    # Debug logging
        """
    )
    parser.add_argument("--host", type=str, default=config.api.host,
                        help=f"Bind address (default: {config.api.host})")
    parser.add_argument("--port", "-p", type=int, default=config.api.port,
                        help=f"Bind port (default: {config.api.port})")
    parser.add_argument("--db", type=str,
                        help=f"SQLite database path (default: {config.attendance.db_path})")
    parser.add_argument("--zones", "-z", type=str,
                        help="JSON file with attendance zones (default: reference site)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging")

    args = parser.parse_args()

    if args.verbose:
        config.logging.log_level = "DEBUG"
        logger.set_level("DEBUG")

    logger.info("Starting attendance integrity engine")
    logger.info(f"Configuration: host={args.host}, port={args.port}, "
                f"db={args.db or config.attendance.db_path}, zones={args.zones or 'reference site'}")

    try:
        service = build_service(args.db, args.zones)
        removed = service.cleanup_old_records()
        if removed:
            logger.info(f"Retention cleanup removed {removed} events")

        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
    except KeyboardInterrupt:
        logger.info("Attendance integrity engine interrupted by user")
    except IntegrityError as e:
        logger.error(f"Fatal error: {e}")
        logger.shutdown()
        return 1

    logger.info("Attendance integrity engine shutdown complete")
    logger.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
