"""Shared helpers for ptybridge."""
