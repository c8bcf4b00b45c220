"""
Vitae - Test Suite
==================

Structure:
    tests/
    ├── conftest.py   - Shared fixtures
    ├── fakes.py      - Fake extraction backend and PubMed client
    └── unit/         - Unit tests (no network, no database)

Running Tests:
    pip install -e ".[test]"
    pytest
"""
