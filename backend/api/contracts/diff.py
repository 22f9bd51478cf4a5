"""
Contract diff - detects contract changes and classifies breaking ones.

Breaking change heuristics:
- Removed operation
- Operation moved (method/path) or changed its request/response schema
- Removed schema or schema field
- Field type changed
- Field became required (was optional)
- Field became non-nullable (was nullable)

Added operations, schemas and optional fields are safe.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .document import Contract, PropertySpec, SchemaDef


@dataclass
class ContractDiff:
    old_version: str
    new_version: str
    added_operations: List[str] = field(default_factory=list)
    removed_operations: List[str] = field(default_factory=list)    # BREAKING
    changed_operations: List[str] = field(default_factory=list)    # BREAKING
    added_schemas: List[str] = field(default_factory=list)
    removed_schemas: List[str] = field(default_factory=list)       # BREAKING
    added_fields: List[str] = field(default_factory=list)
    removed_fields: List[str] = field(default_factory=list)        # BREAKING
    changed_fields: List[str] = field(default_factory=list)        # BREAKING

    @property
    def is_breaking(self) -> bool:
        return bool(
            self.removed_operations
            or self.changed_operations
            or self.removed_schemas
            or self.removed_fields
            or self.changed_fields
        )

    @property
    def has_changes(self) -> bool:
        return self.is_breaking or bool(
            self.added_operations or self.added_schemas or self.added_fields
        )

    def to_dict(self) -> Dict:
        return {
            "old_version": self.old_version,
            "new_version": self.new_version,
            "added_operations": self.added_operations,
            "removed_operations": self.removed_operations,
            "changed_operations": self.changed_operations,
            "added_schemas": self.added_schemas,
            "removed_schemas": self.removed_schemas,
            "added_fields": self.added_fields,
            "removed_fields": self.removed_fields,
            "changed_fields": self.changed_fields,
            "is_breaking": self.is_breaking,
        }


def _type_label(prop: PropertySpec) -> str:
    if prop.ref:
        return prop.ref
    if prop.type == "array":
        return f"array<{_type_label(prop.items)}>"
    if prop.format:
        return f"{prop.type}:{prop.format}"
    return str(prop.type)


def compare_fields(old: SchemaDef, new: SchemaDef) -> Tuple[List[str], List[str], List[str]]:
    """Compare two versions of one schema, return (added, removed, changed)."""
    added = []
    removed = []
    changed = []
    context = new.name

    old_props = {p.name: p for p in old.properties}
    new_props = {p.name: p for p in new.properties}

    for name in sorted(new_props.keys() - old_props.keys()):
        prop = new_props[name]
        if prop.required:
            # A new required field breaks every existing producer/consumer
            changed.append(f"{context}.{name}: added as required")
        else:
            added.append(f"{context}.{name}")

    for name in sorted(old_props.keys() - new_props.keys()):
        removed.append(f"{context}.{name}")

    for name in sorted(old_props.keys() & new_props.keys()):
        old_p, new_p = old_props[name], new_props[name]

        if _type_label(old_p) != _type_label(new_p):
            changed.append(f"{context}.{name}: type {_type_label(old_p)} -> {_type_label(new_p)}")

        if not old_p.required and new_p.required:
            changed.append(f"{context}.{name}: became required")

        if old_p.nullable and not new_p.nullable:
            changed.append(f"{context}.{name}: became non-nullable")

        if old_p.enum is not None and new_p.enum is not None:
            dropped = [v for v in old_p.enum if v not in new_p.enum]
            if dropped:
                changed.append(f"{context}.{name}: enum values removed {dropped}")

    return added, removed, changed


def diff_contracts(old: Contract, new: Contract) -> ContractDiff:
    """Compare two contracts, return the classified diff."""
    diff = ContractDiff(old_version=old.version, new_version=new.version)

    old_ops = set(old.operations)
    new_ops = set(new.operations)
    diff.added_operations = sorted(new_ops - old_ops)
    diff.removed_operations = sorted(old_ops - new_ops)

    for op_id in sorted(old_ops & new_ops):
        old_op, new_op = old.operations[op_id], new.operations[op_id]
        if (old_op.method, old_op.path) != (new_op.method, new_op.path):
            diff.changed_operations.append(
                f"{op_id}: moved {old_op.method} {old_op.path} -> {new_op.method} {new_op.path}"
            )
        for attr in ("request_schema", "query_schema", "response_schema", "response_is_list", "success_status"):
            before, after = getattr(old_op, attr), getattr(new_op, attr)
            if before != after:
                diff.changed_operations.append(f"{op_id}: {attr} {before} -> {after}")
        if not old_op.requires_auth and new_op.requires_auth:
            diff.changed_operations.append(f"{op_id}: now requires authentication")

    old_schemas = set(old.schemas)
    new_schemas = set(new.schemas)
    diff.added_schemas = sorted(new_schemas - old_schemas)
    diff.removed_schemas = sorted(old_schemas - new_schemas)

    for name in sorted(old_schemas & new_schemas):
        added, removed, changed = compare_fields(old.schemas[name], new.schemas[name])
        diff.added_fields.extend(added)
        diff.removed_fields.extend(removed)
        diff.changed_fields.extend(changed)

    return diff


def format_diff(diff: ContractDiff) -> str:
    """Human-readable diff summary."""
    lines = ["=" * 60, f"CONTRACT DIFF {diff.old_version} -> {diff.new_version}", "=" * 60]

    sections = [
        ("+ Added operations", diff.added_operations, False),
        ("- REMOVED operations", diff.removed_operations, True),
        ("~ CHANGED operations", diff.changed_operations, True),
        ("+ Added schemas", diff.added_schemas, False),
        ("- REMOVED schemas", diff.removed_schemas, True),
        ("+ Added fields", diff.added_fields, False),
        ("- REMOVED fields", diff.removed_fields, True),
        ("~ CHANGED fields", diff.changed_fields, True),
    ]
    for title, entries, breaking in sections:
        if not entries:
            continue
        suffix = " [BREAKING]" if breaking else ""
        lines.append(f"\n{title} ({len(entries)}){suffix}:")
        lines.extend(f"    {entry}" for entry in entries)

    lines.append("\n" + "=" * 60)
    if diff.is_breaking:
        lines.append("STATUS: BREAKING CHANGES DETECTED")
    elif diff.has_changes:
        lines.append("STATUS: No breaking changes")
    else:
        lines.append("STATUS: No contract changes")
    lines.append("=" * 60)
    return "\n".join(lines)
