# ABOUTME: Utilities package initialization for the Argo CD fleet client
# ABOUTME: Shared HTTP, logging, and safety helpers

"""
Shared utilities:
    - client.py: HTTP client, error hierarchy and response classification
    - safety.py: Read-only mode and destructive operation guards
    - logging.py: Structured logging with correlation IDs
"""
