"""FundingIQ knowledge service: document ingestion and grounded chat queries."""

__version__ = "0.1.0"
