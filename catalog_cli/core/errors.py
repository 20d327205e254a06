"""
Exceptions raised by catalog operations.

Every exception carries a short machine-readable ``reason`` so callers (the
CLI, or a web layer in front of this package) can report a structured failure
without parsing messages.
"""

from typing import Any, Dict, Iterable, Optional


class CatalogError(Exception):
    """Base class for all catalog errors."""

    reason = 'error'

    def to_dict(self) -> Dict[str, Any]:
        return {'success': False, 'error': self.reason, 'message': str(self)}


class ValidationError(CatalogError):
    """Input rejected before any storage access."""

    reason = 'invalid'


class InvalidEntityType(ValidationError):
    reason = 'invalid_type'

    def __init__(self, entity_type: Any, allowed: Iterable[str]):
        self.entity_type = entity_type
        self.allowed = tuple(allowed)
        super().__init__(
            f"Unsupported entity type: {entity_type!r} "
            f"(expected one of: {', '.join(self.allowed)})"
        )


class SameEntityError(ValidationError):
    reason = 'same_id'

    def __init__(self, entity_id: int, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"Cannot pair entity {entity_id} with itself")


class EntityNotFound(CatalogError):
    reason = 'not_found'

    def __init__(self, entity_type: str, entity_ids: Iterable[int], role: str = ''):
        self.entity_type = entity_type
        self.entity_ids = sorted(entity_ids)
        label = f"{role} {entity_type}".strip()
        ids = ', '.join(str(i) for i in self.entity_ids)
        super().__init__(f"{label.capitalize()} not found: {ids}")


class MergeError(CatalogError):
    """A merge failed part way and was rolled back."""

    reason = 'merge_failed'
