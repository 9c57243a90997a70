"""
Mathboard Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Fast tests against the in-memory Redis double and SQLite
- tests/integration/   : Testcontainers (real PostgreSQL and Redis), opt-in with
                         `pytest -m integration`

Testing Philosophy
------------------
- Unit tests exercise leaderboard semantics end to end without infrastructure
- Integration tests cover what the doubles cannot: MULTI/EXEC, ON CONFLICT
  on PostgreSQL, real connection handling
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
