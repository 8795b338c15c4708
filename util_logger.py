# ============================================================================
# CLAUDE CONTEXT - LOGGING
# ============================================================================
# STATUS: Core Infrastructure - Structured logging
# PURPOSE: JSON-only structured logging for Azure Functions with Application Insights
# EXPORTS: ComponentType, LogLevel, LogContext, JSONFormatter, LoggerFactory, log_exceptions
# INTERFACES: Dataclass models, enums, factory, JSON formatter, exception decorator
# DEPENDENCIES: enum, dataclasses, typing, datetime, logging, json, traceback (stdlib only!)
# SCOPE: All component loggers of the job engine (triggers, service, controller, stores)
# PATTERNS: JSON-only output, Azure Functions integration, Exception decorator pattern
# ENTRY_POINTS: LoggerFactory.create_logger(), @log_exceptions decorator
# ============================================================================

"""
Unified Logger System

Component-aware loggers that emit one JSON object per line so Application
Insights can index the ``customDimensions`` of every record. Job correlation
(job_id, process_id) travels through ``LogContext`` and is merged into the
custom dimensions of every message logged by a context-bound logger.

Design Principles:
- Strong typing with dataclasses (stdlib only)
- Enum safety for categories
- Component-specific loggers
- Clean factory pattern
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass
from functools import wraps
import logging
import os
import sys
import json
import traceback


# ============================================================================
# COMPONENT TYPES - Aligned with the engine layers
# ============================================================================

class ComponentType(Enum):
    """
    Component types aligned with the job engine layers.

    Each layer has specific logging needs and levels.
    """
    TRIGGER = "trigger"        # HTTP / timer entry points
    SERVICE = "service"        # Lifecycle API facade
    CONTROLLER = "controller"  # Job execution controller
    WORKER = "worker"          # Detached work units
    REPOSITORY = "repository"  # Job store / process registry
    HEALTH = "health"          # Health probes


# ============================================================================
# LOG LEVELS - Standard Python levels with enum safety
# ============================================================================

class LogLevel(Enum):
    """
    Standard Python log levels as enum for type safety.
    """
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level constant."""
        return getattr(logging, self.value)


# ============================================================================
# LOG CONTEXT - Correlation and tracking
# ============================================================================

@dataclass
class LogContext:
    """
    Context for log correlation across a job's lifetime.

    A job is submitted by one request and finished by a detached worker,
    so the job id is the only key that ties those records together.
    """
    job_id: Optional[str] = None
    process_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            k: v for k, v in {
                'job_id': self.job_id,
                'process_id': self.process_id
            }.items() if v is not None
        }


# ============================================================================
# JSON FORMATTER - Structured logging for Azure Functions
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in Azure Functions.
    Outputs logs in a format that Application Insights can automatically parse.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'custom_dimensions'):
            log_obj['customDimensions'] = record.custom_dimensions

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_obj, default=str)


# ============================================================================
# LOGGER FACTORY - Creates component-specific loggers
# ============================================================================

class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Adapter that merges component identity and LogContext into
    ``custom_dimensions`` without touching the underlying logger.
    """

    def process(self, msg, kwargs):
        extra = kwargs.get('extra') or {}
        custom_dims = dict(self.extra)
        if 'custom_dimensions' in extra:
            custom_dims.update(extra['custom_dimensions'])
        kwargs['extra'] = {**extra, 'custom_dimensions': custom_dims}
        return msg, kwargs


class LoggerFactory:
    """
    Factory for creating component-specific loggers.

    Example:
        logger = LoggerFactory.create_logger(
            ComponentType.CONTROLLER,
            "JobExecutionController"
        )
        logger.info("Job dispatched")
    """

    default_level = LogLevel.DEBUG if os.getenv('DEBUG_LOGGING', '').lower() == 'true' else LogLevel.INFO

    # Stores log every SQL round trip at DEBUG
    COMPONENT_LEVELS = {
        ComponentType.REPOSITORY: LogLevel.DEBUG,
    }

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        context: Optional[LogContext] = None,
        level: Optional[LogLevel] = None
    ) -> logging.LoggerAdapter:
        """
        Create a logger for a specific component.

        Args:
            component_type: Type of component
            name: Component name (e.g., "JobExecutionController")
            context: Optional log context for correlation
            level: Optional explicit level (defaults per component type)

        Returns:
            Logger adapter that injects custom dimensions
        """
        level = level or cls.COMPONENT_LEVELS.get(component_type, cls.default_level)

        logger = logging.getLogger(f"{component_type.value}.{name}")
        logger.setLevel(level.to_python_level())

        # One JSON handler per logger, even when called repeatedly
        if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter())
            logger.addHandler(handler)

        # Allow propagation to Azure's root logger for Application Insights
        logger.propagate = True

        dimensions = {
            'component_type': component_type.value,
            'component_name': name
        }
        if context:
            dimensions.update(context.to_dict())

        return ContextLoggerAdapter(logger, dimensions)

    @classmethod
    def create_with_context(
        cls,
        component_type: ComponentType,
        name: str,
        job_id: Optional[str] = None,
        process_id: Optional[str] = None
    ) -> logging.LoggerAdapter:
        """
        Create logger bound to a job.

        Convenience method for the worker path where every record
        must carry the job id.
        """
        context = LogContext(
            job_id=job_id,
            process_id=process_id
        ) if any([job_id, process_id]) else None

        return cls.create_logger(
            component_type=component_type,
            name=name,
            context=context
        )


# ============================================================================
# EXCEPTION DECORATOR - Automatic exception logging with context
# ============================================================================

def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[logging.LoggerAdapter] = None):
    """
    Decorator to automatically log exceptions with full context.

    The exception is always re-raised; this only guarantees that a failure
    in a detached code path (a worker thread) leaves a record behind.

    Example:
        @log_exceptions(ComponentType.WORKER, "JobRunner")
        def run(message):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if logger:
                    log = logger
                else:
                    log = LoggerFactory.create_logger(
                        component_type or ComponentType.SERVICE,
                        component_name or func.__module__ or "unknown"
                    )
                log.error(
                    f"Exception in {func.__name__}",
                    exc_info=True,
                    extra={
                        'custom_dimensions': {
                            'function_name': func.__name__,
                            'function_module': func.__module__,
                            'exception_type': type(e).__name__,
                            'exception_message': str(e),
                            'function_args': str(args)[:500],
                            'traceback': traceback.format_exc()
                        }
                    }
                )
                raise
        return wrapper
    return decorator
