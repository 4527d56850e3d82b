"""
WhatsApp Scheduler Tests

Unit tests run without PostgreSQL, Redis or any external API: repositories
are replaced by the in-memory fakes in ``tests.fakes`` and every external
client by ``unittest.mock`` doubles.

Running Tests:
    pip install -e ".[test]"
    pytest tests/unit -v
"""
