"""
Revenue Potential Package.

FastAPI service that scores water utility accounts per monthly period:
revenue recovery potential and account risk, both driven by externally
calibrated or manually stored policies.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, exceptions and dependencies
    - models: Pydantic schemas and enums
    - services: Normalization, scoring, policies, parameters, persistence
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
