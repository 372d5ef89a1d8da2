"""Command line entrypoints for the telemetry notifier."""
