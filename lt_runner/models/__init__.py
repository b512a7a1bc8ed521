"""Data models shared between the runner and the controller."""
