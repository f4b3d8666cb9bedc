"""TM WATCH order service."""
