"""
Logging setup for the attendance backend.
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from shared import config

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s'


def setup_logging(log_level=None, log_dir=None, max_log_size=10 * 1024 * 1024, backup_count=5):
    """
    Configure the root logger once at process start.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (defaults to LOG_LEVEL)
        log_dir: directory for the rotating log files (defaults to LOG_DIR)
        max_log_size: size in bytes before a log file rotates
        backup_count: number of rotated files kept
    """
    log_dir = Path(log_dir or config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, (log_level or config.LOG_LEVEL).upper(), logging.INFO)

    formatter = logging.Formatter(FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'attendance_backend.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    # Audit channels
    logging.getLogger('security').setLevel(logging.INFO)
    logging.getLogger('recognition').setLevel(logging.INFO)

    startup = logging.getLogger('startup')
    startup.info("=" * 50)
    startup.info("ATTENDANCE BACKEND STARTUP")
    startup.info(f"Timestamp: {datetime.now().isoformat()}")
    startup.info(f"Log Level: {logging.getLevelName(level)}")
    startup.info(f"Log Directory: {log_dir.absolute()}")
    startup.info("=" * 50)


class SecurityLogger:
    """Audit trail for logins and administrative actions"""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_login(self, email, role, success=True):
        status = "SUCCESS" if success else "FAILED"
        self.logger.info(f"LOGIN {status} - Role: {role}, Email: {email}")

    def log_login_blocked(self, email):
        self.logger.warning(f"LOGIN BLOCKED - Email: {email}, too many failed attempts")

    def log_admin_action(self, admin_id, action, details=None):
        details_info = f", Details: {details}" if details else ""
        self.logger.info(f"ADMIN ACTION - Admin: {admin_id}, Action: {action}{details_info}")


class RecognitionLogger:
    """Summary line for every face recognition attempt"""

    def __init__(self):
        self.logger = logging.getLogger('recognition')

    def log_attempt(self, student_id, confidence, success, distance=None):
        outcome = "MATCH" if success else "NO MATCH"
        distance_info = f", Distance: {distance:.4f}" if distance is not None else ""
        self.logger.info(
            f"Recognition {outcome} - Student: {student_id}, Confidence: {confidence:.2f}{distance_info}"
        )


security_logger = SecurityLogger()
recognition_logger = RecognitionLogger()
