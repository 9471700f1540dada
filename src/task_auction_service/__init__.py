"""Task Auction Service - task marketplace with a bid auction engine."""

__version__ = "0.1.0"
