"""Configuration module for siteqa.

Provides configuration management for settings, retrieval tuning and the database.
"""

from .settings import Settings
from .retrieval import RetrievalConfig, TopicRule, load_retrieval_config
from .database import (
    DatabaseConfig,
    DatabaseFactory,
    db_factory,
    initialize_database,
    close_database
)

__all__ = [
    'Settings',
    'RetrievalConfig',
    'TopicRule',
    'load_retrieval_config',
    'DatabaseConfig',
    'DatabaseFactory',
    'db_factory',
    'initialize_database',
    'close_database'
]
