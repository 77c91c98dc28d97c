from __future__ import annotations

from pathlib import Path
import re
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
import yaml

SUPPORTED_MANIFEST_VERSION = 1
REQUIRED_FIELDS = ("version", "name", "display_name", "description", "category")
NAME_RE = re.compile(r"^[a-z0-9-]+$")
MANIFEST_FILENAMES = ("manifest.yaml", "manifest.yml")


class TemplateValidationError(ValueError):
    pass


class ChecksumMismatch(TemplateValidationError):
    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Template checksum verification failed: expected {expected}, got {actual}"
        )


class VersionIncompatible(TemplateValidationError):
    def __init__(self, required: str, current: str) -> None:
        self.required = required
        self.current = current
        super().__init__(
            f"Template requires platform {required} or higher. Current version: {current}"
        )


class TemplateContents(BaseModel):
    tables: List[str] = Field(default_factory=list)
    policies: List[str] = Field(default_factory=list)
    functions: List[str] = Field(default_factory=list)
    assets: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class TemplateManifest(BaseModel):
    version: int
    name: str
    display_name: str
    description: str
    category: str
    tags: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    license: Optional[str] = None
    verified: bool = False
    min_platform_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("min_platform_version", "kickstack_min_version"),
    )
    contents: TemplateContents = Field(default_factory=TemplateContents)
    dependencies: List[str] = Field(default_factory=list)
    env_vars: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


def validate_manifest(data: Any) -> TemplateManifest:
    if not isinstance(data, dict):
        raise TemplateValidationError("Manifest must be a mapping")
    for name in REQUIRED_FIELDS:
        if not data.get(name):
            raise TemplateValidationError(f"Manifest is missing required field: {name}")
    version = data["version"]
    if isinstance(version, bool) or version != SUPPORTED_MANIFEST_VERSION:
        raise TemplateValidationError(
            f"Unsupported manifest version: {version}. Expected: {SUPPORTED_MANIFEST_VERSION}"
        )
    if not isinstance(data["name"], str) or not NAME_RE.match(data["name"]):
        raise TemplateValidationError(
            "Template name must contain only lowercase letters, numbers, and hyphens"
        )
    try:
        return TemplateManifest.model_validate(data)
    except ValidationError as exc:
        raise TemplateValidationError(str(exc)) from exc


def parse_manifest_text(text: str) -> TemplateManifest:
    try:
        data: Dict[str, Any] = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise TemplateValidationError(f"Failed to load template manifest: {exc}") from exc
    return validate_manifest(data)


def load_manifest(template_dir: Path) -> TemplateManifest:
    for filename in MANIFEST_FILENAMES:
        path = Path(template_dir) / filename
        if path.exists():
            return parse_manifest_text(path.read_text())
    raise TemplateValidationError(f"Template has no manifest.yaml: {template_dir}")
