"""Data structures shared by the correlation engine and its consumers."""
