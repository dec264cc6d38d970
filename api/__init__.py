"""HTTP and WebSocket API for the solidity screener."""
