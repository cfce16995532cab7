"""SQLite persistence for task templates."""
