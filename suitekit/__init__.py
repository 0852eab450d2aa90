"""
Suitekit - Test Orchestration Layer for Pytest.

This package contains the core logic for:
- Tags: tag model, filter expression parsing and evaluation.
- Configuration: base/environment overlay loading and resolution.
- Session: run-scoped cache of authenticated sessions.
- Plugin: pytest hooks and fixtures wiring the above into a run.
"""

__version__ = "0.1.0"
