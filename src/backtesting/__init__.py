"""
Lab lifecycle management and backtest result retrieval.

Creates, configures and starts labs on the server, polls their status, and
pages through their backtest results.
"""
