"""Draw and payout engine for time-boxed token raffles."""

__version__ = "0.1.0"
