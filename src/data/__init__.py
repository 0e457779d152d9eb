"""
Data contracts for entities exchanged with the server.

Dataclasses for markets, scripts, accounts, labs and backtest results, with
wire-format parsing and schema validation.
"""
