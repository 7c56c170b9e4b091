"""Infrastructure layer for Record-Guard: configuration, logging and reports."""
