"""Core value types and domain records."""
