"""Core building blocks: data model, configuration, errors and logging."""
