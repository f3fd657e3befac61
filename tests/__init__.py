"""
KIPR SDK Test Suite.

This package contains:
- unit/: Unit tests (store rules, validation, errors, transport mapping)
- integration/: Contract tests run against both the memory and REST
  backends, plus wire-format tests against the reference service
"""
