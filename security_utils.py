"""
Security utilities for MCP tool input validation and sanitization.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

security_logger = logging.getLogger("security")

MAX_SELECTION_VARIABLES = 30
MAX_VALUES_PER_VARIABLE = 2000


def sanitize_string(value: str, max_length: int = 1000) -> str:
    """Sanitize a string input by removing control characters and surrounding whitespace."""
    if not isinstance(value, str):
        raise ValueError("Value must be a string")

    # Limit length
    if len(value) > max_length:
        raise ValueError(f"String too long. Maximum {max_length} characters allowed.")

    # Remove null bytes and other control characters
    value = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", value)

    return value.strip()


def validate_table_id(table_id: str) -> str:
    """Validate and sanitize an SCB table ID (e.g. TAB638)."""
    if not table_id:
        raise ValueError("Table ID cannot be empty")

    table_id = sanitize_string(table_id, max_length=50)

    # Basic format validation - alphanumeric, hyphens, underscores
    if not re.match(r"^[a-zA-Z0-9_-]+$", table_id):
        raise ValueError("Table ID contains invalid characters. Only alphanumeric, hyphens, and underscores allowed.")

    return table_id


def validate_language(language: Optional[str], supported: Sequence[str] = ("en", "sv"), default: str = "en") -> str:
    """Normalize a language code, rejecting languages the API does not serve."""
    if not language:
        return default

    language = sanitize_string(language, max_length=10).lower()
    if language not in supported:
        raise ValueError(f"Unsupported language '{language}'. Use one of: {', '.join(supported)}")

    return language


def validate_search_query(query: Optional[str], max_length: int = 200) -> Optional[str]:
    """Sanitize a free-text search query. An empty query lists all tables."""
    if query is None:
        return None

    if not isinstance(query, str):
        raise ValueError("Query must be a string")

    return sanitize_string(query, max_length=max_length) or None


def validate_selection_arg(
    selection: Any,
    max_variables: int = MAX_SELECTION_VARIABLES,
    max_values: int = MAX_VALUES_PER_VARIABLE,
) -> Dict[str, List[str]]:
    """Validate a selection argument and normalize bare string values to lists."""
    if not isinstance(selection, dict):
        raise ValueError("Selection must be a dictionary of variable -> list of values")

    if len(selection) > max_variables:
        raise ValueError(f"Too many variables in selection. Maximum {max_variables} allowed.")

    sanitized: Dict[str, List[str]] = {}
    for key, values in selection.items():
        sanitized_key = sanitize_string(str(key), max_length=100)
        if not sanitized_key:
            raise ValueError("Selection variable names cannot be empty")

        if isinstance(values, str):
            values = [values]
        if not isinstance(values, (list, tuple)):
            raise ValueError(f"Values for '{sanitized_key}' must be a list of strings")
        if len(values) > max_values:
            raise ValueError(f"Too many values for '{sanitized_key}'. Maximum {max_values} allowed.")

        sanitized_values = []
        for value in values:
            if not isinstance(value, (str, int)) or isinstance(value, bool):
                raise ValueError(f"Values for '{sanitized_key}' must be strings")
            sanitized_value = sanitize_string(str(value), max_length=200)
            if sanitized_value:
                sanitized_values.append(sanitized_value)

        sanitized[sanitized_key] = sanitized_values

    return sanitized


def log_security_event(event_type: str, details: Dict[str, Any], severity: str = "INFO"):
    """Log security-related events for monitoring."""
    log_entry = {
        "timestamp": datetime.now().isoformat(),
        "event_type": event_type,
        "severity": severity,
        "details": details,
    }

    security_logger.log(logging.getLevelName(severity), "SECURITY_EVENT: %s", json.dumps(log_entry, default=str))
