"""
Logging configuration for Outflow Watcher.

Features:
- Separate log files for different event types (outflows, alerts, system)
- Rotating file handlers (max 50MB per file, keep 5 backups)
- Automatic cleanup of old logs (keeps last 7 days)
- Console output for real-time monitoring
"""
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from pathlib import Path
from typing import Union


# Separate log files for different purposes
SYSTEM_LOG = "system.log"
OUTFLOWS_LOG = "outflows.log"
ALERTS_LOG = "alerts.log"
ERRORS_LOG = "errors.log"

# Rotation settings
MAX_BYTES = 50 * 1024 * 1024  # 50 MB per file
BACKUP_COUNT = 5  # Keep 5 backup files (total ~250 MB per log type)

# Cleanup settings
LOG_RETENTION_DAYS = 7  # Keep logs for 7 days


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Union[str, Path] = "logs") -> dict:
    """
    Configure logging with rotation and cleanup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (created if missing)

    Returns:
        dict: Dictionary of specialized loggers
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (for real-time monitoring)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Configure root logger (catches all logs)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()  # Remove any existing handlers
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(log_dir / SYSTEM_LOG, level, formatter))
    # Critical errors only (easier to monitor)
    root_logger.addHandler(_rotating_handler(log_dir / ERRORS_LOG, logging.ERROR, formatter))

    # Every recorded outflow transaction
    outflows_logger = logging.getLogger('outflows')
    outflows_logger.handlers.clear()
    outflows_logger.addHandler(_rotating_handler(log_dir / OUTFLOWS_LOG, logging.INFO, formatter))
    outflows_logger.propagate = True  # Also log to root (console + system)

    # Triggers and delivery outcomes
    alerts_logger = logging.getLogger('alerts')
    alerts_logger.handlers.clear()
    alerts_logger.addHandler(_rotating_handler(log_dir / ALERTS_LOG, logging.INFO, formatter))
    alerts_logger.propagate = True

    cleanup_old_logs(log_dir)

    root_logger.info("=" * 80)
    root_logger.info("Outflow Watcher logging system initialized")
    root_logger.info(f"Log directory: {log_dir.absolute()}")
    root_logger.info(f"Log level: {log_level}")
    root_logger.info(f"Rotation: {MAX_BYTES // (1024*1024)} MB per file, {BACKUP_COUNT} backups")
    root_logger.info(f"Retention: {LOG_RETENTION_DAYS} days")
    root_logger.info("=" * 80)

    return {
        'system': root_logger,
        'outflows': outflows_logger,
        'alerts': alerts_logger,
    }


def cleanup_old_logs(log_dir: Union[str, Path] = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """
    Delete log files older than ``retention_days``.

    Runs automatically on startup to prevent disk space issues.

    Returns:
        Number of files deleted
    """
    log_dir = Path(log_dir)
    cutoff_time = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0
    total_size_freed = 0

    # Current logs and their backups (.log.1, .log.2, etc.)
    log_patterns = [
        log_dir / "*.log",
        log_dir / "*.log.*",
    ]

    for pattern in log_patterns:
        for log_file in glob.glob(str(pattern)):
            log_path = Path(log_file)

            # Skip if file doesn't exist (race condition)
            if not log_path.exists():
                continue

            try:
                mtime = datetime.fromtimestamp(log_path.stat().st_mtime)

                if mtime < cutoff_time:
                    file_size = log_path.stat().st_size
                    log_path.unlink()
                    deleted_count += 1
                    total_size_freed += file_size
            except OSError as e:
                # Log error but continue cleanup
                logging.error(f"Error cleaning up {log_path}: {e}")

    if deleted_count > 0:
        size_mb = total_size_freed / (1024 * 1024)
        logging.info(f"Cleaned up {deleted_count} old log files ({size_mb:.2f} MB freed)")

    return deleted_count
