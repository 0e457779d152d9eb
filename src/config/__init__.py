"""
Configuration loading and validation.

Reads HaasOnline server address and credentials from the environment (.env)
into frozen, validated settings objects.
"""
