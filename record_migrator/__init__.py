"""
Record Migrator

Copies selected records, together with the related records they need,
from a source org into a target org that shares the schema.

Supports:
- Per-field relationship actions (include, skip, match by key)
- Stage-ordered creation with source -> target id remapping
- Deferred updates for self-referencing fields
- Batched, concurrent creates with per-record outcomes
- Dry runs that preview a migration without touching the target org
"""

__version__ = "0.1.0"
