"""Observability package for siteqa."""

from .logging import setup_logging, get_structured_logger, StructuredLogger
from .metrics import (
    setup_prometheus_metrics,
    record_page_indexed,
    record_question,
    record_upstream_failure,
    record_escalation,
    siteqa_registry
)

__all__ = [
    'setup_logging',
    'get_structured_logger',
    'StructuredLogger',
    'setup_prometheus_metrics',
    'record_page_indexed',
    'record_question',
    'record_upstream_failure',
    'record_escalation',
    'siteqa_registry'
]
