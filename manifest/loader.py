from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Union

from pydantic import ValidationError

from manifest.types import Action, ChainConfig, FieldSpec, Manifest

logger = logging.getLogger(__name__)

Source = Union[str, Path, Mapping[str, Any]]


class ManifestError(ValueError):
    pass


class ActionNotFoundError(KeyError):
    pass


def _read(source: Source, what: str) -> Mapping[str, Any]:
    if isinstance(source, Mapping):
        return source
    path = Path(source)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ManifestError(f"cannot read {what} at {path}: {e}") from e
    except ValueError as e:
        raise ManifestError(f"{what} at {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"{what} at {path} must be a JSON object")
    return data


def flatten_specs(fields: Iterable[FieldSpec]) -> List[FieldSpec]:
    """
    Depth-first list of fields with layout containers expanded.
    """
    out: List[FieldSpec] = []
    for f in fields:
        out.append(f)
        if f.fields:
            out.extend(flatten_specs(f.fields))
    return out


def _check_unique_names(action: Action, fields: Iterable[FieldSpec]) -> None:
    seen: set[str] = set()
    for f in flatten_specs(fields):
        key = f.key
        if not key:
            continue
        if key in seen:
            raise ManifestError(f"action {action.id}: duplicate field name {key!r}")
        seen.add(key)


def validate_action(action: Action) -> None:
    if action.is_wizard:
        if not action.steps:
            raise ManifestError(f"action {action.id}: wizard flow requires at least one step")
        all_fields: List[FieldSpec] = []
        for step in action.steps:
            all_fields.extend(step.step_fields)
        _check_unique_names(action, all_fields)
        return

    if action.form is None:
        raise ManifestError(f"action {action.id}: non-wizard action requires a form")
    _check_unique_names(action, action.form.fields)


def validate_manifest(manifest: Manifest) -> None:
    ids: set[str] = set()
    for action in manifest.actions:
        if action.id in ids:
            raise ManifestError(f"duplicate action id {action.id!r}")
        ids.add(action.id)
        validate_action(action)


def load_manifest(source: Source) -> Manifest:
    """
    Parse + check a manifest (dict or JSON file path).
    """
    data = _read(source, "manifest")
    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"invalid manifest: {e}") from e
    validate_manifest(manifest)
    logger.info("Loaded manifest v%s with %s actions", manifest.version, len(manifest.actions))
    return manifest


def load_chain_config(source: Source) -> ChainConfig:
    data = _read(source, "chain config")
    try:
        return ChainConfig.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"invalid chain config: {e}") from e


def get_action(manifest: Manifest, action_id: str) -> Action:
    for action in manifest.actions:
        if action.id == action_id:
            return action
    raise ActionNotFoundError(action_id)
