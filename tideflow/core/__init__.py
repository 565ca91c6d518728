"""Core workflow components for Tideflow."""
