"""API route modules, one router per domain."""
