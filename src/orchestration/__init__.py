"""
Multi-step lab workflows.

Coordinates lab creation, configuration, execution polling and result
collection in a single sequential run.
"""
