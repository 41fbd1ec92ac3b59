"""LiftLog - fitness tracker server with SQLite storage."""
