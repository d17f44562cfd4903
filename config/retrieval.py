"""Retrieval tuning for the query resolver and the corpus indexer.

Defaults live here in code. A YAML file can override any of them; nested keys
are merged over the defaults, lists replace lists.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TopicRule(BaseModel):
    """Force-include chunks from urls matching ``url_pattern`` when a trigger phrase is asked about."""
    triggers: List[str]
    url_pattern: str
    limit: int = 20


DEFAULT_SYNONYM_GROUPS: List[List[str]] = [
    ["start", "begin", "open", "commence"],
    ["end", "finish", "close", "conclude"],
    ["semester", "term"],
    ["schedule", "calendar", "dates"],
    ["tuition", "cost", "fees", "price"],
    ["deadline", "due", "cutoff"],
    ["apply", "application", "admission", "admissions"],
    ["class", "classes", "course", "courses"],
    ["professor", "faculty", "instructor"],
    ["scholarship", "scholarships", "financial", "aid"],
    ["contact", "email", "phone"],
    ["location", "address", "directions", "campus"],
]

DEFAULT_GENERIC_KEYWORDS: List[str] = [
    "admissions", "tuition", "calendar", "contact", "faculty",
    "students", "program", "programs", "deadline", "office",
]

DEFAULT_TOPIC_RULES: List[Dict[str, Any]] = [
    {
        "triggers": ["semester start", "classes start", "first day of class", "academic calendar"],
        "url_pattern": r"calendar",
    },
    {
        "triggers": ["tuition", "cost of attendance", "financial aid"],
        "url_pattern": r"tuition|financial-aid|cost",
    },
]


class RetrievalConfig(BaseModel):
    """Every knob of the retrieval and resolution pipeline."""

    # Chunking
    chunk_size: int = Field(default=2000)
    chunk_overlap: int = Field(default=250)
    max_chunks_per_page: int = Field(default=6)
    min_text_length: int = Field(default=80)

    # Override matching
    override_similarity: float = Field(default=0.82)

    # Ranking
    site_confidence: float = Field(default=0.45)
    min_similarity: float = Field(default=0.12)
    max_context_chunks: int = Field(default=12)

    # Candidate gathering
    min_token_length: int = Field(default=3)
    prefilter_limit: int = Field(default=400)
    sparse_candidate_threshold: int = Field(default=30)
    generic_pool_limit: int = Field(default=100)
    sample_limit: int = Field(default=400)

    # Escalation
    deep_scan_limit: int = Field(default=1500)
    narrow_scan_limit: int = Field(default=100)
    rescore_merge: int = Field(default=15)

    # Generation
    history_turns: int = Field(default=20)
    fallback_answer: str = Field(default="I couldn't find relevant info in the provided pages.")

    synonym_groups: List[List[str]] = Field(default_factory=lambda: [list(g) for g in DEFAULT_SYNONYM_GROUPS])
    generic_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_GENERIC_KEYWORDS))
    topic_rules: List[TopicRule] = Field(
        default_factory=lambda: [TopicRule(**rule) for rule in DEFAULT_TOPIC_RULES]
    )

    continuation_pattern: str = Field(
        default=r"\b(?:say|tell(?:\s+me)?|explain)\s+(?:a\s+(?:bit|little)\s+)?more\b"
    )
    dont_know_pattern: str = Field(default=r"\bI\s+(?:do\s+not|don['’]?t)\s+know\b")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_retrieval_config(path: Optional[str] = None) -> RetrievalConfig:
    """Load retrieval settings, overlaying a YAML file when one is given.

    Args:
        path: YAML file path, usually ``Settings.retrieval_config_path``.

    Returns:
        RetrievalConfig with file values applied over the defaults.
    """
    defaults = RetrievalConfig().model_dump()
    if not path:
        return RetrievalConfig(**defaults)

    config_file = Path(path)
    if not config_file.exists():
        logger.warning(f"Retrieval config {path} not found, using defaults")
        return RetrievalConfig(**defaults)

    with open(config_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Retrieval config {path} must be a mapping, got {type(data).__name__}")

    logger.info(f"Loaded retrieval config from {path}")
    return RetrievalConfig(**_deep_merge(defaults, data))
