"""HTTP API and background jobs for siteqa."""
