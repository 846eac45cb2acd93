"""In-memory CloudFormation template.

The document is the one mutable aggregate of a deployment: the
orchestrator owns it and hands it to one compiler at a time.  Compilers
add and merge fragments; they never delete entries owned by another
compiler.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Iterator

import yaml
from pydantic import BaseModel, ConfigDict, Field

from stackforge.core.errors import DanglingReferenceError, MissingResourcesSectionError

DEFAULT_DESCRIPTION = "The AWS CloudFormation template for this Serverless application"


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into *target* (in place) and return it.

    Nested mappings merge key by key; any other value from *source*
    replaces the one in *target*.
    """
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _iter_references(node: Any) -> Iterator[str]:
    """Yield every logical id named by a ``Ref`` or ``Fn::GetAtt``."""
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "Ref" and isinstance(value, str):
                yield value
            elif key == "Fn::GetAtt":
                if isinstance(value, list) and value and isinstance(value[0], str):
                    yield value[0]
                elif isinstance(value, str):
                    yield value.split(".", 1)[0]
                else:
                    yield from _iter_references(value)
            else:
                yield from _iter_references(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_references(item)


class TemplateDocument(BaseModel):
    """Resources / Outputs / Parameters graph of one deployment.

    ``resources`` is ``None`` only for a document that was deliberately
    created without a Resources root; every compiler rejects such a
    document with :class:`MissingResourcesSectionError`.
    """

    model_config = ConfigDict(populate_by_name=True)

    format_version: str = Field(default="2010-09-09", alias="AWSTemplateFormatVersion")
    description: str = Field(default=DEFAULT_DESCRIPTION, alias="Description")
    parameters: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="Parameters")
    resources: dict[str, dict[str, Any]] | None = Field(
        default_factory=dict, alias="Resources"
    )
    outputs: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="Outputs")

    # ------------------------------------------------------------------
    # Access helpers used by compilers
    # ------------------------------------------------------------------

    def require_resources(self, compiler: str = "") -> dict[str, dict[str, Any]]:
        if self.resources is None:
            raise MissingResourcesSectionError(compiler)
        return self.resources

    def find_resource(self, resource_type: str, **properties: Any) -> str | None:
        """Logical id of the first resource of *resource_type* whose
        ``Properties`` contain every given key/value pair."""
        for logical_id, fragment in (self.resources or {}).items():
            if fragment.get("Type") != resource_type:
                continue
            props = fragment.get("Properties") or {}
            if all(props.get(key) == value for key, value in properties.items()):
                return logical_id
        return None

    def merge_resource(self, logical_id: str, fragment: dict[str, Any]) -> dict[str, Any]:
        resources = self.require_resources()
        target = resources.setdefault(logical_id, {})
        return deep_merge(target, fragment)

    def merge_output(self, logical_id: str, fragment: dict[str, Any]) -> dict[str, Any]:
        target = self.outputs.setdefault(logical_id, {})
        return deep_merge(target, fragment)

    def merge_fragment(self, fragment: dict[str, Any]) -> None:
        """Merge a ``{"Resources": ..., "Outputs": ...}`` fragment."""
        for logical_id, resource in (fragment.get("Resources") or {}).items():
            self.merge_resource(logical_id, resource)
        for logical_id, output in (fragment.get("Outputs") or {}).items():
            self.merge_output(logical_id, output)
        for logical_id, parameter in (fragment.get("Parameters") or {}).items():
            deep_merge(self.parameters.setdefault(logical_id, {}), parameter)

    def resources_of_type(self, resource_type: str) -> dict[str, dict[str, Any]]:
        return {
            logical_id: fragment
            for logical_id, fragment in (self.resources or {}).items()
            if fragment.get("Type") == resource_type
        }

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def dangling_references(self) -> list[str]:
        """Referenced logical ids that are neither resources, parameters
        nor ``AWS::`` pseudo parameters."""
        known = set(self.resources or {}) | set(self.parameters)
        body = {"Resources": self.resources or {}, "Outputs": self.outputs}
        missing = {
            ref
            for ref in _iter_references(body)
            if ref not in known and not ref.startswith("AWS::")
        }
        return sorted(missing)

    def verify_references(self) -> None:
        missing = self.dangling_references()
        if missing:
            raise DanglingReferenceError(missing)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "AWSTemplateFormatVersion": self.format_version,
            "Description": self.description,
        }
        if self.parameters:
            document["Parameters"] = copy.deepcopy(self.parameters)
        if self.resources is not None:
            document["Resources"] = copy.deepcopy(self.resources)
        document["Outputs"] = copy.deepcopy(self.outputs)
        return document

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateDocument:
        return cls.model_validate(copy.deepcopy(data))

    @classmethod
    def from_json(cls, text: str) -> TemplateDocument:
        return cls.from_dict(json.loads(text))

    @classmethod
    def from_yaml(cls, text: str) -> TemplateDocument:
        return cls.from_dict(yaml.safe_load(text) or {})

    def write(self, path: Path) -> Path:
        """Write the JSON rendering to *path*, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")
        return path

    def clone(self) -> TemplateDocument:
        return self.model_copy(deep=True)
