"""Filesystem services backing the exam media API."""
