from .manifest import (
    ChecksumMismatch,
    TemplateManifest,
    TemplateValidationError,
    VersionIncompatible,
    load_manifest,
    validate_manifest,
)
from .packager import (
    PLATFORM_VERSION,
    InstallResult,
    PackageResult,
    compare_versions,
    install_template,
    package_template,
    validate_template,
)

__all__ = [
    "ChecksumMismatch",
    "InstallResult",
    "PLATFORM_VERSION",
    "PackageResult",
    "TemplateManifest",
    "TemplateValidationError",
    "VersionIncompatible",
    "compare_versions",
    "install_template",
    "load_manifest",
    "package_template",
    "validate_manifest",
    "validate_template",
]
