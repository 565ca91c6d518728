"""Command-line interface for Tideflow."""
