"""
Privacy controls and retention policy.

Sensitive values (API keys, passwords, tokens, private keys, credentials
in connection strings) are redacted before a memory is written, and
<private>...</private> blocks are dropped entirely.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Pattern

from .config import PrivacyConfig
from .types import Memory, MemoryInput


logger = logging.getLogger(__name__)


REDACTED = "[REDACTED]"
PRIVATE = "[PRIVATE]"

# Longest content accepted by validate_for_storage
MAX_CONTENT_LENGTH = 10000

DEFAULT_SENSITIVE_PATTERNS: List[str] = [
    # API keys
    r"(?i)api[_-]?key\s*[:=]\s*[\"']?[\w-]+[\"']?",
    r"(?i)apikey\s*[:=]\s*[\"']?[\w-]+[\"']?",
    # Passwords and secrets
    r"(?i)password\s*[:=]\s*[\"']?[^\"'\s]+[\"']?",
    r"(?i)passwd\s*[:=]\s*[\"']?[^\"'\s]+[\"']?",
    r"(?i)secret\s*[:=]\s*[\"']?[\w.-]+[\"']?",
    # Tokens
    r"(?i)token\s*[:=]\s*[\"']?[\w.-]+[\"']?",
    r"(?i)bearer\s+[\w.-]+",
    r"(?i)authorization\s*:\s*[\"']?[\w.-]+[\"']?",
    # Private keys
    r"(?is)-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----.*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----",
    r"(?is)-----BEGIN\s+ENCRYPTED\s+PRIVATE\s+KEY-----.*?-----END\s+ENCRYPTED\s+PRIVATE\s+KEY-----",
    # SSH public keys
    r"(?i)ssh-(?:rsa|ed25519|dss)\s+[A-Za-z0-9+/=]+",
    # AWS credentials
    r"AKIA[0-9A-Z]{16}",
    r"(?i)aws_access_key_id\s*[:=]\s*[\"']?[A-Z0-9]+[\"']?",
    r"(?i)aws_secret_access_key\s*[:=]\s*[\"']?[\w/+=]+[\"']?",
    # Database connection strings
    r"(?i)(?:mongodb|mysql|postgres|redis)://[^\s\"']+",
    # Environment variables with sensitive names
    r"(?:DATABASE_URL|REDIS_URL|MONGO_URI)\s*[:=]\s*[\"']?[^\s\"']+[\"']?",
]

_PRIVATE_BLOCK = re.compile(r"<private>.*?</private>", re.IGNORECASE | re.DOTALL)
_PRIVATE_OPEN = re.compile(r"<private>", re.IGNORECASE)
# Markers separated only by spaces or tabs on the same line
_REPEATED_REDACTIONS = re.compile(r"\[REDACTED\](?:[ \t]*\[REDACTED\])+")


@dataclass
class PolicyResult:
    """Outcome of a retention policy run."""
    deleted: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"deleted": self.deleted, "reason": self.reason}


@dataclass
class StorageCheck:
    """Outcome of validate_for_storage."""
    sanitized_content: str
    warnings: List[str]


class PrivacyFilter:
    """
    Sanitizes memory content and enforces retention limits.

    A disabled filter passes content through unchanged and never deletes.
    """

    def __init__(self, config: Optional[PrivacyConfig] = None):
        self.config = config or PrivacyConfig()
        self._patterns: List[Pattern] = [
            re.compile(p) for p in DEFAULT_SENSITIVE_PATTERNS
        ]
        for pattern in self.config.strip_patterns:
            self.add_sensitive_pattern(pattern)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def add_sensitive_pattern(self, pattern: str) -> None:
        """
        Redact an additional regular expression on save.

        Raises:
            re.error: If the pattern does not compile
        """
        self._patterns.append(re.compile(pattern))

    def has_pattern(self, pattern: str) -> bool:
        return any(p.pattern == pattern for p in self._patterns)

    def strip_private_tags(self, text: str) -> str:
        """Replace <private>...</private> blocks with a marker."""
        return _PRIVATE_BLOCK.sub(PRIVATE, text)

    def sanitize(self, text: str) -> str:
        """
        Remove private blocks and redact sensitive values.

        Redactions adjacent on one line collapse into a single marker;
        line breaks and surrounding text are kept.
        """
        if not self.config.enabled or not text:
            return text

        sanitized = text
        if self.config.private_tag_enabled:
            sanitized = self.strip_private_tags(sanitized)

        for pattern in self._patterns:
            sanitized = pattern.sub(REDACTED, sanitized)

        if REDACTED in sanitized:
            sanitized = _REPEATED_REDACTIONS.sub(REDACTED, sanitized)
        return sanitized

    def contains_sensitive_data(self, text: str) -> bool:
        """Check if text matches any sensitive pattern."""
        return any(pattern.search(text) for pattern in self._patterns)

    def sanitize_input(self, memory_input: MemoryInput) -> MemoryInput:
        """Return a copy of the input with every text field sanitized."""
        if not self.config.enabled:
            return memory_input

        sanitized = replace(
            memory_input,
            title=self.sanitize(memory_input.title),
            content=self.sanitize(memory_input.content),
            facts=[self.sanitize(fact) for fact in memory_input.facts],
        )
        if sanitized != memory_input:
            logger.debug("Redacted sensitive content from memory input")
        return sanitized

    def validate_for_storage(self, content: str) -> StorageCheck:
        """
        Sanitize content and report what was changed.

        Content longer than MAX_CONTENT_LENGTH is truncated.
        """
        warnings: List[str] = []
        sanitized = content

        if self.contains_sensitive_data(content):
            warnings.append("Content contained sensitive data that was redacted")
            sanitized = self.sanitize(sanitized)

        if _PRIVATE_OPEN.search(content):
            warnings.append("Content contained <private> blocks that were removed")
            sanitized = self.strip_private_tags(sanitized)

        if len(content) > MAX_CONTENT_LENGTH:
            warnings.append(f"Content was truncated to {MAX_CONTENT_LENGTH} characters")
            sanitized = sanitized[:MAX_CONTENT_LENGTH]

        return StorageCheck(sanitized_content=sanitized, warnings=warnings)

    def anonymize_memory(self, memory: Memory) -> Memory:
        """Get a sanitized copy of a memory for export or debugging."""
        return replace(
            memory,
            title=self.sanitize(memory.title),
            content=self.sanitize(memory.content),
            facts=[self.sanitize(fact) for fact in memory.facts],
            session_id="[SESSION]" if memory.session_id else None,
        )

    def apply_retention(self, store: Any) -> PolicyResult:
        """Delete memories older than the retention window."""
        if not self.config.enabled:
            return PolicyResult(0, "Privacy disabled")

        days = self.config.retention_days
        deleted = store.delete_older_than(days)
        return PolicyResult(deleted, f"Deleted memories older than {days} days")

    def apply_max_limit(self, store: Any) -> PolicyResult:
        """Evict memories beyond the configured maximum."""
        if not self.config.enabled:
            return PolicyResult(0, "Privacy disabled")

        max_memories = self.config.max_memories
        deleted = store.trim_to_max(max_memories)
        return PolicyResult(deleted, f"Trimmed to max {max_memories} memories")

    def run_maintenance(self, store: Any) -> Dict[str, PolicyResult]:
        """Apply the retention window, then the size limit."""
        return {
            "retention": self.apply_retention(store),
            "max_limit": self.apply_max_limit(store),
        }
