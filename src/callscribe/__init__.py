"""callscribe: call event ingestion, transcript ledger and end-of-call summaries."""

__version__ = "0.1.0"
