"""Face detection engine and worker pool."""
