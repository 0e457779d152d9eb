"""
Generic utility functions shared across modules.

Includes the clock abstraction used for lab polling and logging setup.
"""
