import os

# Keep tracing out of unit tests; must be set before any project module is imported
os.environ.setdefault("DISABLE_TELEMETRY", "true")
