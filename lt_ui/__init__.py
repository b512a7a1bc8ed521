"""Command-line front end for loadtest-orchestrator."""
