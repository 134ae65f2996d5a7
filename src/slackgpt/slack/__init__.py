"""Slack Socket Mode event parsing and reply posting."""
