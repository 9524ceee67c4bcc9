"""Broker side of the write path.

``dispatch`` publishes task commands from the API process; ``consumer`` runs
in its own process (``python -m taskpipe.worker``) and persists them.
"""
