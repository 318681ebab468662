"""
Utility functions and helpers.

This package contains reusable utilities for file operations, hashing,
polling, progress reporting, logging and template rendering.

Modules:
- files: Directory and text file helpers
- hashing: SHA256 helper used for mutation identifiers
- logging: Logging configuration
- polling: Bounded polling around eventually-consistent cluster state
- progress: Rich console status and progress helpers
- templates: Jinja2 fragment loader
"""
