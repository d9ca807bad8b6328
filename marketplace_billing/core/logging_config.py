"""
Logging configuration for the marketplace billing service.

Provides structured logging without exposing provider credentials or card data.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

# Operator-facing alerts (billing exposure) are emitted on this logger
ALERT_LOGGER_NAME = "marketplace_billing.alerts"


def setup_logging(log_level: str = "INFO"):
    """
    Configure application logging.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    
    # Create logs directory if it doesn't exist
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    
    # Configure root logger
    logger = logging.getLogger()
    logger.setLevel(level)
    
    # Remove existing handlers
    logger.handlers.clear()
    
    # Console handler with simple format
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(console_formatter)
    
    # File handler with detailed format
    file_handler = RotatingFileHandler(
        log_dir / "marketplace_billing.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)
    
    # Add handlers
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    
    # Set levels for third-party libraries
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_email(email) -> str:
    """Mask the local part of an email address (``j***@example.com``)."""
    if not email or "@" not in str(email):
        return "***"
    local, domain = str(email).split("@", 1)
    return f"{local[:1]}***@{domain}"


def mask_identifier(value) -> str:
    """Keep only the last four characters of a card/token identifier."""
    if not value:
        return "N/A"
    value = str(value)
    return "***" + value[-4:]


def sanitize_log_data(data: dict) -> dict:
    """
    Sanitize log data to remove sensitive information.
    
    Args:
        data: Dictionary to sanitize
        
    Returns:
        Sanitized dictionary without secrets
    """
    sanitized = data.copy()
    sensitive_keys = [
        "password", "token", "secret", "key", "api_key",
        "access_token", "card_id", "cardid", "card_token",
        "database_url"
    ]
    
    for key in sanitized:
        lowered = key.lower()
        if "email" in lowered:
            sanitized[key] = mask_email(sanitized[key])
        elif any(sensitive in lowered for sensitive in sensitive_keys):
            sanitized[key] = "***REDACTED***"
    
    return sanitized
