"""Job handlers for the worker."""
