"""Command-line tooling for reward escrow state snapshots."""
