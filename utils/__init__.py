"""Utilities for the anonymous voting service."""

from .utils import (
    setup_logging,
    PerformanceMonitor,
    recommended_proof_workers,
    get_system_info,
    check_command_exists,
    validate_environment,
    format_duration,
    format_bytes,
    short_hash,
)

__all__ = [
    'setup_logging',
    'PerformanceMonitor',
    'recommended_proof_workers',
    'get_system_info',
    'check_command_exists',
    'validate_environment',
    'format_duration',
    'format_bytes',
    'short_hash',
]
