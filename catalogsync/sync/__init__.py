"""Sync engine: request execution, chunked orchestration and run coordination."""
