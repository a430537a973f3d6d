"""Call session core: registry, correlation, transcripts, summaries and cleanup."""
