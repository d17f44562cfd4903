"""Storage, embeddings and similarity for siteqa."""
