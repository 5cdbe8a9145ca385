"""Service layer for business logic.

Services encapsulate certificate rules and export policy, keeping routes thin
and focused on HTTP handling.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)
                              \\-> Rendering (layout, markup, capture)

Services should:
- Own the certificate lifecycle (issue, revoke, purge, verify)
- Own the export fallback chain and bulk export
- Orchestrate calls to repositories and the render driver
- Not contain HTTP-specific logic (status codes, response formatting)

Services should NOT:
- Directly execute SQL queries (use repositories)
- Know about HTTP request/response details
"""
