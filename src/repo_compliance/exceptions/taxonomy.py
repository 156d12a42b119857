"""Stable, machine-readable error codes.

Codes are part of the public contract: callers (CLI, API layers) switch on
them, so existing values must never be renamed.

Convention:
    Client errors   - NOT_FOUND, VALIDATION_ERROR, CONFLICT
    Pipeline errors - CONTROL_MAPPING_ERROR, ANALYSIS_TIMEOUT, SIGNAL_SCAN_ERROR
    Service errors  - <OPERATION>_ERROR wrappers for unexpected failures
"""

from enum import Enum


class ErrorCode(Enum):
    """Structured error codes for observability and API responses."""

    # Client errors
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"

    # Configuration
    INVALID_CONFIG = "INVALID_CONFIG"

    # Pipeline errors
    SIGNAL_SCAN_ERROR = "SIGNAL_SCAN_ERROR"
    CONTROL_MAPPING_ERROR = "CONTROL_MAPPING_ERROR"
    ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"

    # Orchestrator wrappers
    ANALYSIS_START_ERROR = "ANALYSIS_START_ERROR"
    ANALYSIS_STATUS_ERROR = "ANALYSIS_STATUS_ERROR"

    # Findings store wrappers
    FINDINGS_CREATE_ERROR = "FINDINGS_CREATE_ERROR"
    FINDINGS_RETRIEVE_ERROR = "FINDINGS_RETRIEVE_ERROR"
    FINDING_RETRIEVE_ERROR = "FINDING_RETRIEVE_ERROR"
    FINDING_REVIEW_ERROR = "FINDING_REVIEW_ERROR"
    FINDINGS_SUMMARY_ERROR = "FINDINGS_SUMMARY_ERROR"
    FINDINGS_DELETE_ERROR = "FINDINGS_DELETE_ERROR"
