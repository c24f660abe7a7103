"""Blob stores and the SQL image registry."""
