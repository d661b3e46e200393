"""Migration configuration and run status models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import os

from dotenv import load_dotenv

# Fields never migrated: owner/audit references and system-maintained values
DEFAULT_EXCLUDED_FIELDS = [
    "OwnerId",
    "CreatedById",
    "LastModifiedById",
    "CreatedDate",
    "LastModifiedDate",
    "SystemModstamp",
    "LastActivityDate",
    "LastViewedDate",
    "LastReferencedDate",
    "IsDeleted",
    "MasterRecordId",  # Set by merges, not writable
]

# Object types whose records are org-specific and never carried along
DEFAULT_EXCLUDED_OBJECTS = [
    "User",
    "Group",
    "Profile",
    "UserRole",
    "Organization",
]

# Business keys used when a match-by-key field has no explicit key field
DEFAULT_KEY_FIELDS = {
    "RecordType": "DeveloperName",
}

# Fields that scope a default key; a DeveloperName is only unique per SobjectType
DEFAULT_KEY_SCOPES = {
    "RecordType": ["SobjectType"],
}


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class OrgCredentials:
    """Connection settings for one org."""
    username: Optional[str] = None
    password: Optional[str] = None
    security_token: Optional[str] = None
    domain: str = "login"  # "test" for sandboxes
    instance_url: Optional[str] = None
    session_id: Optional[str] = None
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None

    @classmethod
    def from_env(cls, prefix: str) -> "OrgCredentials":
        """
        Read credentials from the environment (and a .env file, if present).

        Args:
            prefix: Variable prefix, e.g. "SOURCE_ORG" reads SOURCE_ORG_USERNAME etc.
        """
        load_dotenv(override=True)
        return cls(
            username=os.getenv(f"{prefix}_USERNAME"),
            password=os.getenv(f"{prefix}_PASSWORD"),
            security_token=os.getenv(f"{prefix}_SECURITY_TOKEN"),
            domain=os.getenv(f"{prefix}_DOMAIN", "login"),
            instance_url=os.getenv(f"{prefix}_INSTANCE_URL"),
            session_id=os.getenv(f"{prefix}_SESSION_ID"),
            consumer_key=os.getenv(f"{prefix}_CONSUMER_KEY"),
            consumer_secret=os.getenv(f"{prefix}_CONSUMER_SECRET"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, without secrets."""
        return {
            "username": self.username,
            "domain": self.domain,
            "instance_url": self.instance_url,
        }


@dataclass
class MigrationConfig:
    """Configuration for a migration session."""
    name: str = ""
    description: str = ""

    # Execution options
    dry_run: bool = False
    batch_size: int = 200
    max_workers: int = 4
    request_timeout: float = 120.0  # Seconds per call to an org
    rate_limit: float = 0.0  # Max target requests per second, 0 for unlimited
    api_version: str = "59.0"

    # Relationship options
    excluded_fields: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_FIELDS))
    excluded_objects: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_OBJECTS))
    default_key_fields: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_KEY_FIELDS))
    default_key_scopes: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_KEY_SCOPES.items()})

    # Output
    output_dir: str = "./data"
    save_report: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "description": self.description,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "max_workers": self.max_workers,
            "request_timeout": self.request_timeout,
            "rate_limit": self.rate_limit,
            "api_version": self.api_version,
            "excluded_fields": self.excluded_fields,
            "excluded_objects": self.excluded_objects,
            "default_key_fields": self.default_key_fields,
            "default_key_scopes": self.default_key_scopes,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            dry_run=data.get("dry_run", False),
            batch_size=data.get("batch_size", 200),
            max_workers=data.get("max_workers", 4),
            request_timeout=data.get("request_timeout", 120.0),
            rate_limit=data.get("rate_limit", 0.0),
            api_version=data.get("api_version", "59.0"),
            excluded_fields=data.get("excluded_fields", list(DEFAULT_EXCLUDED_FIELDS)),
            excluded_objects=data.get("excluded_objects", list(DEFAULT_EXCLUDED_OBJECTS)),
            default_key_fields=data.get("default_key_fields", dict(DEFAULT_KEY_FIELDS)),
            default_key_scopes=data.get(
                "default_key_scopes", {k: list(v) for k, v in DEFAULT_KEY_SCOPES.items()}
            ),
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", True),
        )
