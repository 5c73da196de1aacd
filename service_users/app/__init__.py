"""
Users Service package for the User Access Layer.

Serves user records from PostgreSQL through a Redis read-through cache:

- app.main: API surface (GetUser, CreateUser) and health.
- app.coordinator: cache-aside decision rules for reads and writes.
- app.ports: collaborator protocols the coordinator depends on.
- app.cache: Redis-backed cache of user records.
- app.persistence: PostgreSQL storage of user records.

Guidelines:
- The service is stateless; rely on external cache/DB.
- The cache is advisory. PostgreSQL is the only source of truth.
"""
