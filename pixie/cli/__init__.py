"""Command-line interface for running and inspecting Pixie."""
