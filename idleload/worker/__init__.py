"""Standalone runner package.

The runner loads declared modules while an interactive terminal is idle:

    python -m idleload --declarations units.yaml

Every line typed on stdin counts as user input and interrupts the module
currently being imported; it is retried on the next idle period.
"""
