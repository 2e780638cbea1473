"""SAM / CDK template parsing.

Reads a CloudFormation template, finds its Lambda functions and turns the
ones with usable build metadata into TargetDescriptors. Intrinsic function
tags (``!Ref``, ``!GetAtt``, ``!Sub``, ...) are loaded as their long-form
mappings so templates written in short form parse with a safe loader.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from hotbuild.build.models import BuildMethod, TargetDescriptor
from hotbuild.config.merge import deep_merge
from hotbuild.errors import ManifestError
from hotbuild.logging import get_logger

log = get_logger("manifest")

SAM_TRANSFORM = "AWS::Serverless-2016-10-31"
SAM_FUNCTION = "AWS::Serverless::Function"
LAMBDA_FUNCTION = "AWS::Lambda::Function"

SUPPORTED_BUILD_METHODS = tuple(m.value for m in BuildMethod)
REQUIRED_PROPERTIES = ("Handler", "Runtime")


class TemplateLoader(yaml.SafeLoader):
    """Safe loader that understands CloudFormation short-form tags."""


def _intrinsic(loader: yaml.Loader, tag_suffix: str, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {f"Fn::{tag_suffix}": value}


TemplateLoader.add_multi_constructor("!", _intrinsic)


def load_template(path: str | Path) -> dict[str, Any]:
    """Read and parse a template file.

    Raises:
        ManifestError: If the file cannot be read or is not a YAML/JSON mapping.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.load(f, Loader=TemplateLoader)
    except OSError as e:
        raise ManifestError(f"Failed to read template {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(f"Failed to parse template {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"Failed to parse template {path}: expected a mapping at top level")
    return data


def detect_template_type(template: Mapping[str, Any]) -> str:
    """Return "SAM" or "CDK"; templates without CDK metadata count as SAM."""
    transform = template.get("Transform")
    if transform == SAM_TRANSFORM or (
        isinstance(transform, list) and SAM_TRANSFORM in transform
    ):
        return "SAM"

    for resource in (template.get("Resources") or {}).values():
        metadata = resource.get("Metadata") if isinstance(resource, dict) else None
        if isinstance(metadata, dict) and (
            "aws:cdk:path" in metadata or "aws:asset:path" in metadata
        ):
            return "CDK"
    return "SAM"


def _sam_functions(template: Mapping[str, Any]) -> list[dict[str, Any]]:
    globals_ = ((template.get("Globals") or {}).get("Function")) or {}
    functions = []
    for name, resource in (template.get("Resources") or {}).items():
        if not isinstance(resource, dict) or resource.get("Type") != SAM_FUNCTION:
            continue
        merged = dict(resource)
        if globals_:
            merged["Properties"] = deep_merge(globals_, resource.get("Properties") or {})
        merged["Name"] = name
        functions.append(merged)
    return functions


def _cdk_functions(template: Mapping[str, Any]) -> list[dict[str, Any]]:
    functions = []
    for name, resource in (template.get("Resources") or {}).items():
        if not isinstance(resource, dict):
            continue
        kind = resource.get("Type")
        if kind == LAMBDA_FUNCTION:
            props = resource.get("Properties") or {}
            metadata = resource.get("Metadata") or {}
            functions.append(
                {
                    "Type": SAM_FUNCTION,
                    "Name": name,
                    "Properties": {
                        "CodeUri": metadata.get("aws:asset:path") or "./src",
                        "Handler": props.get("Handler", "index.handler"),
                        "Runtime": props.get("Runtime", "nodejs20.x"),
                        "Timeout": props.get("Timeout"),
                        "MemorySize": props.get("MemorySize"),
                        "Environment": props.get("Environment"),
                    },
                    "Metadata": metadata,
                }
            )
        elif kind == SAM_FUNCTION:
            functions.append({**resource, "Name": name})
    return functions


def function_resources(template: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Lambda function resources of a template, each tagged with its ``Name``."""
    if detect_template_type(template) == "CDK":
        return _cdk_functions(template)
    return _sam_functions(template)


def validate_build_metadata(function: Mapping[str, Any]) -> None:
    """Check that a function resource can be built.

    Raises:
        ManifestError: Naming the function and what is missing.
    """
    name = function.get("Name") or "Unknown"
    metadata = function.get("Metadata")
    if not metadata:
        raise ManifestError(
            f"Function '{name}' is missing Metadata section. "
            f"Add a Metadata section with a BuildMethod ({', '.join(SUPPORTED_BUILD_METHODS)})."
        )

    method = metadata.get("BuildMethod")
    if not method:
        raise ManifestError(
            f"Function '{name}' is missing BuildMethod in Metadata. "
            f"Supported values: {', '.join(SUPPORTED_BUILD_METHODS)}."
        )
    if method not in SUPPORTED_BUILD_METHODS:
        raise ManifestError(
            f"Function '{name}' has unsupported BuildMethod: '{method}'. "
            f"Supported methods are: {', '.join(SUPPORTED_BUILD_METHODS)}."
        )

    properties = function.get("Properties")
    if not properties:
        raise ManifestError(
            f"Function '{name}' is missing Properties section. "
            "Lambda functions require Properties with CodeUri, Handler and Runtime."
        )
    missing = [p for p in REQUIRED_PROPERTIES if not properties.get(p)]
    if missing:
        raise ManifestError(
            f"Function '{name}' is missing required properties: {', '.join(missing)}."
        )


@dataclass
class TemplateReport:
    """Structural check of a whole template."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    function_count: int = 0

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_template(template: Mapping[str, Any] | None) -> TemplateReport:
    report = TemplateReport()
    if not template:
        report.errors.append("Template is empty")
        return report

    resources = template.get("Resources")
    if resources is None:
        report.errors.append("Template is missing Resources section")
        return report
    if not resources:
        report.warnings.append("Template has no resources defined")

    report.function_count = sum(
        1
        for r in resources.values()
        if isinstance(r, dict) and r.get("Type") in (SAM_FUNCTION, LAMBDA_FUNCTION)
    )
    if report.function_count == 0:
        report.warnings.append("Template contains no Lambda functions")
    return report


def _to_target(function: Mapping[str, Any]) -> TargetDescriptor:
    code_uri = function["Properties"].get("CodeUri") or "."
    if not isinstance(code_uri, str):
        raise ManifestError(f"Function '{function['Name']}' has a non-local CodeUri")
    metadata = function["Metadata"]
    return TargetDescriptor(
        name=function["Name"],
        source_root=os.path.normpath(code_uri),
        build_method=metadata["BuildMethod"],
        build_parameters=metadata.get("BuildProperties") or {},
    )


def extract_targets(functions: Iterable[Mapping[str, Any]]) -> list[TargetDescriptor]:
    """Convert function resources to targets, dropping invalid ones with a warning."""
    targets = []
    for function in functions:
        try:
            validate_build_metadata(function)
            targets.append(_to_target(function))
        except ManifestError as e:
            log.warning("Skipping function: %s", e)
    return targets


def parse_template(path: str | Path) -> list[TargetDescriptor]:
    """Parse a template into its buildable targets.

    Raises:
        ManifestError: If the template cannot be read or has no Resources.
    """
    template = load_template(path)
    report = validate_template(template)
    if not report.valid:
        raise ManifestError(f"Invalid template {path}: {'; '.join(report.errors)}")
    for warning in report.warnings:
        log.warning("%s: %s", path, warning)

    functions = function_resources(template)
    targets = extract_targets(functions)
    log.info(
        "Parsed %s template %s: %d of %d functions buildable",
        detect_template_type(template),
        path,
        len(targets),
        len(functions),
    )
    return targets


def select_targets(
    targets: Iterable[TargetDescriptor], names: Iterable[str] | None
) -> list[TargetDescriptor]:
    """Filter targets by name, keeping template order.

    An empty or None selection keeps every target.

    Raises:
        ManifestError: If a name matches no target.
    """
    targets = list(targets)
    wanted = list(names or [])
    if not wanted:
        return targets
    known = {t.name for t in targets}
    unknown = [n for n in wanted if n not in known]
    if unknown:
        raise ManifestError(
            f"Unknown target(s): {', '.join(unknown)} (available: {', '.join(sorted(known)) or 'none'})"
        )
    chosen = set(wanted)
    return [t for t in targets if t.name in chosen]
