"""Rally Core - Workspace resolution and relationship management for the Rally API.

Modules:
- config: Settings model and environment loading
- errors: Exception taxonomy shared by all modules
- client: HTTP client with workspace reference caching
- workspaces: Workspace token resolution with fallback
- relationships: Relationship kind table, mutation plans, snapshots
- stories: Story create/update/delete/read adapter
- connection: Staged credential and connectivity validation
"""

__version__ = "1.0.0"
