"""Target discovery from SAM and CDK CloudFormation templates."""

from hotbuild.manifest.parser import (
    SUPPORTED_BUILD_METHODS,
    TemplateReport,
    detect_template_type,
    extract_targets,
    function_resources,
    load_template,
    parse_template,
    select_targets,
    validate_build_metadata,
    validate_template,
)

__all__ = [
    "SUPPORTED_BUILD_METHODS",
    "TemplateReport",
    "detect_template_type",
    "extract_targets",
    "function_resources",
    "load_template",
    "parse_template",
    "select_targets",
    "validate_build_metadata",
    "validate_template",
]
