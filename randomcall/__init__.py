"""Random video-call matchmaking: waiting pool, pairing and call session lifecycle."""

__version__ = "0.1.0"
