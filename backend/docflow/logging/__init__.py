"""
Run Logging Module

Provides per-run structured logging for workflow executions.
"""
from docflow.logging.run_logger import RunLogger

__all__ = ['RunLogger']
