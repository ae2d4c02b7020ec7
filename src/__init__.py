"""Spec-kit dashboard - parser, sync and watcher core package."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "analysis",
    "config",
    "feature_sync",
    "file_watcher",
    "markdown",
    "models",
    "parsers",
    "speckit_logging",
    "store",
]
