"""Pyramid Guard Test Suite
=========================

Unit tests for all modules:
- test_entry_gates: Five-stage entry pipeline tests
- test_position_sizer: Kelly sizing tests
- test_position_ledger: Pyramiding, erosion and history tests
- test_momentum_failure: Early exit tests
- test_engine / test_scheduler: Per-tick orchestration tests

Usage:
    pytest tests/ -v
    pytest tests/test_position_ledger.py -v

Author: SURIOTA Team
"""
