"""HTTP API for the contract extraction engine."""
