"""Core services for siteqa: overrides, session journal, generation, retrieval and resolution."""
