"""Integration test fixtures.

Integration tests run the full supervisor loop with scripted phase handlers
and real on-disk persistence under tmp_path. Shared fixtures are inherited
from the root conftest.py.
"""
