"""CLI command groups for team and member management."""
