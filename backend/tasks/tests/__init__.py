# tasks/tests/__init__.py
"""
Task App Test Suite
===================

This package contains unit and integration tests for the tasks application.

Modules:
--------
- test_engine: Keywords, insights, due dates, model-output parsing, proposal cache
- test_recurrence: Recurrence rule arithmetic and descriptions
- test_orchestration: Provider adapter, similarity scoring and the enrichment pipeline
- test_persistence: Stores, proposal application, execution history, usage, workers
- test_api: REST endpoints under /api/v1/tasks/

Running Tests:
--------------
    # Run all task tests
    python manage.py test tasks

    # Run specific test module
    python manage.py test tasks.tests.test_engine
    python manage.py test tasks.tests.test_orchestration

    # Run with verbose output
    python manage.py test tasks -v 2
"""
