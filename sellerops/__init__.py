"""SellerOps automation core: rule engine and durable job execution."""

__version__ = "1.0.0"
