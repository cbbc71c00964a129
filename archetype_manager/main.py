"""
PF1e Archetype Manager - Main Entry Point

Applies class archetypes to character classes: previews the feature
changes, checks archetypes against each other, and applies, removes or
restores them on class records kept in a JSON flag store.

This module provides the command line entry point and the
ArchetypeManager class that wires the subsystems together.
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from archetype_manager.applicator import (
    Applicator,
    ApplicatorConfig,
    ApplyResult,
    FlagStoreItemFactory,
    RecordingNotificationSink,
    RecordingSummaryChannel,
    RestoreResult,
    RestoreScope,
    StaticPermissionOracle,
)
from archetype_manager.conflicts import ConflictChecker, StackValidation
from archetype_manager.data_models import (
    ClassRecord,
    DiffEntry,
    DiffStatus,
    ParsedArchetype,
)
from archetype_manager.features import MappingFeatureResolver, resolve_slots
from archetype_manager.observability import get_event_log
from archetype_manager.persistence import ArchetypeRepository, JsonFlagStore


# Configure logging
def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class ManagerConfig:
    """Configuration for an archetype manager session."""

    state_file: Path = field(default_factory=lambda: Path("data/archetype_state.json"))
    event_log_file: Optional[Path] = None
    module_title: str = "PF1e Archetype Manager"

    # Applicator behaviour
    restore_scope: RestoreScope = RestoreScope.ACTOR
    guard_conflicts_on_apply: bool = True
    validate_class: bool = True

    # Permissions
    elevated: bool = False
    owned_actors: list[str] = field(default_factory=list)

    # Runtime options
    verbose: bool = False

    def __post_init__(self):
        """Ensure paths are Path objects."""
        if isinstance(self.state_file, str):
            self.state_file = Path(self.state_file)
        if isinstance(self.event_log_file, str):
            self.event_log_file = Path(self.event_log_file)
        if isinstance(self.restore_scope, str):
            self.restore_scope = RestoreScope(self.restore_scope)

    def applicator_config(self) -> ApplicatorConfig:
        return ApplicatorConfig(
            module_title=self.module_title,
            restore_scope=self.restore_scope,
            guard_conflicts_on_apply=self.guard_conflicts_on_apply,
            validate_class=self.validate_class,
        )


# =============================================================================
# FILE LOADING
# =============================================================================

def load_json(filepath: Path) -> Any:
    with open(filepath, "r", encoding="utf-8") as f:
        return json.load(f)


def load_archetype(filepath: Path) -> ParsedArchetype:
    """Load a parsed archetype from a JSON file."""
    return ParsedArchetype.from_dict(load_json(filepath))


def load_class_record(filepath: Path) -> ClassRecord:
    """
    Load a class record from a JSON file.

    The file holds either resolved "slots" or raw "associations"
    (reference + level) with a "feature_names" map to resolve them.
    """
    data = load_json(filepath)
    if "slots" not in data and "associations" in data:
        resolver = MappingFeatureResolver(data.get("feature_names"))
        slots = resolve_slots(data["associations"], resolver)
        data = dict(data, slots=[s.to_dict() for s in slots])
    return ClassRecord.from_dict(data)


# =============================================================================
# ARCHETYPE MANAGER
# =============================================================================

class ArchetypeManager:
    """
    Coordinates the flag store, repository and applicator.

    Notices and change summaries are collected so the caller can show them
    after each operation.
    """

    def __init__(self, config: Optional[ManagerConfig] = None):
        self.config = config if config is not None else ManagerConfig()
        self.flag_store = JsonFlagStore(self.config.state_file)
        self.repository = ArchetypeRepository(self.flag_store)
        self.notifications = RecordingNotificationSink()
        self.summaries = RecordingSummaryChannel()
        self.items = FlagStoreItemFactory(self.flag_store)
        self.event_log = get_event_log()
        self.applicator = Applicator(
            repository=self.repository,
            permissions=StaticPermissionOracle(
                elevated=self.config.elevated,
                owned_actor_refs=set(self.config.owned_actors),
            ),
            notifications=self.notifications,
            item_factory=self.items,
            summary_channel=self.summaries,
            config=self.config.applicator_config(),
            event_log=self.event_log,
        )
        logger.debug(f"ArchetypeManager using {self.config.state_file}")

    # -------------------------------------------------------------------------
    # Classes
    # -------------------------------------------------------------------------

    def register_class(self, record: ClassRecord) -> None:
        self.repository.register_class(record)

    def get_class(self, class_ref: str) -> ClassRecord:
        return self.repository.load(class_ref).record

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def diff(self, class_ref: str, archetype: ParsedArchetype) -> list[DiffEntry]:
        return self.applicator.preview(class_ref, archetype)

    def check(self, class_ref: str, archetypes: list[ParsedArchetype]) -> StackValidation:
        """Validate archetypes against each other and the applied set."""
        state = self.repository.load(class_ref)
        applied = state.application.applied_archetypes() if state.application else []
        pending = [a for a in archetypes if a.slug not in state.applied_slugs]
        return ConflictChecker.validate_stacking(applied + pending, class_name=state.record.name)

    def apply(self, actor_ref: str, class_ref: str, archetype: ParsedArchetype) -> ApplyResult:
        diff = self.applicator.preview(class_ref, archetype)
        return self.applicator.apply_detailed(actor_ref, class_ref, archetype, diff)

    def remove(self, actor_ref: str, class_ref: str, slug: str) -> ApplyResult:
        return self.applicator.remove_detailed(actor_ref, class_ref, slug)

    def restore(self, actor_ref: str, class_ref: str) -> RestoreResult:
        return self.applicator.restore_from_backup(actor_ref, class_ref)

    def save_event_log(self) -> None:
        if self.config.event_log_file:
            self.event_log.save(str(self.config.event_log_file))

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    def status(self, class_ref: str) -> str:
        """
        Get a formatted status string for one class.

        Returns:
            Multi-line status string
        """
        state = self.repository.load(class_ref)
        record = state.record
        lines = [
            "=" * 60,
            f"{record.name.upper()} ({record.class_ref})",
            "=" * 60,
            f"Owner: {record.owner_ref}",
            f"State: {self.applicator.get_state(record.owner_ref, class_ref).value}",
            f"Version: {state.version}",
            f"Backup: {'yes (' + str(len(state.backup)) + ' features)' if state.has_backup else 'none'}",
        ]
        if state.application and state.application.applied_slugs:
            lines.append("Applied Archetypes:")
            for archetype in state.application.applied_archetypes():
                lines.append(f"  {archetype.name} ({archetype.slug})")
            lines.append(f"Last applied: {state.application.applied_at_iso}")

        lines.append("")
        lines.append("Features:")
        for slot in record.slots:
            lines.append(f"  {slot.level:>2}  {slot.display_name or slot.id}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def pop_notices(self) -> list[str]:
        texts = [f"[{n.level}] {n.text}" for n in self.notifications.notices]
        self.notifications.clear()
        return texts


_STATUS_MARKS = {
    DiffStatus.UNCHANGED: " ",
    DiffStatus.REMOVED: "-",
    DiffStatus.ADDED: "+",
    DiffStatus.MODIFIED: "~",
}


def format_diff(diff: list[DiffEntry]) -> str:
    """Format a diff as one line per entry."""
    lines = []
    for entry in diff:
        suffix = "  (target not found)" if entry.unresolved else ""
        lines.append(f"{_STATUS_MARKS[entry.status]} {entry.level:>2}  {entry.name}{suffix}")
    return "\n".join(lines)


# =============================================================================
# COMMAND LINE
# =============================================================================

def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="PF1e Archetype Manager - apply class archetypes to character classes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m archetype_manager.main register fighter.json
  python -m archetype_manager.main diff Class.fighter two-handed-fighter.json
  python -m archetype_manager.main apply Class.fighter two-handed-fighter.json --actor Actor.valeros
  python -m archetype_manager.main remove Class.fighter two-handed-fighter --actor Actor.valeros
  python -m archetype_manager.main restore Class.fighter --actor Actor.valeros --gm
        """
    )

    # General options
    parser.add_argument(
        "--state-file",
        type=Path,
        default=Path("data/archetype_state.json"),
        help="JSON flag store holding class state (default: data/archetype_state.json)",
    )
    parser.add_argument(
        "--event-log",
        type=Path,
        help="Write the operation event log to this JSON file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # Permission options
    perm_group = parser.add_argument_group("Permission Options")
    perm_group.add_argument(
        "--gm",
        action="store_true",
        help="Act as game master (may modify any actor)",
    )
    perm_group.add_argument(
        "--owns",
        action="append",
        default=[],
        metavar="ACTOR",
        help="Actor owned by the current user (repeatable)",
    )

    # Applicator options
    apply_group = parser.add_argument_group("Applicator Options")
    apply_group.add_argument(
        "--restore-scope",
        type=str,
        default=RestoreScope.ACTOR.value,
        choices=[s.value for s in RestoreScope],
        help="How much tracking a restore clears (default: actor)",
    )
    apply_group.add_argument(
        "--no-conflict-guard",
        action="store_true",
        help="Skip the conflict check against applied archetypes",
    )
    apply_group.add_argument(
        "--no-class-check",
        action="store_true",
        help="Allow archetypes tagged for a different class",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Register a class record from a JSON file")
    register.add_argument("class_file", type=Path)

    diff = sub.add_parser("diff", help="Preview an archetype against a class")
    diff.add_argument("class_ref")
    diff.add_argument("archetype_file", type=Path)

    check = sub.add_parser("check", help="Check archetypes for conflicts")
    check.add_argument("class_ref")
    check.add_argument("archetype_files", type=Path, nargs="+")

    apply = sub.add_parser("apply", help="Apply an archetype to a class")
    apply.add_argument("class_ref")
    apply.add_argument("archetype_file", type=Path)
    apply.add_argument("--actor", required=True)

    remove = sub.add_parser("remove", help="Remove one applied archetype")
    remove.add_argument("class_ref")
    remove.add_argument("slug")
    remove.add_argument("--actor", required=True)

    restore = sub.add_parser("restore", help="Restore a class from its backup")
    restore.add_argument("class_ref")
    restore.add_argument("--actor", required=True)

    status = sub.add_parser("status", help="Show a class's archetype state")
    status.add_argument("class_ref")

    return parser.parse_args(argv)


def create_config_from_args(args: argparse.Namespace) -> ManagerConfig:
    """Create ManagerConfig from parsed arguments."""
    owned = list(args.owns)
    actor = getattr(args, "actor", None)
    if actor and not owned and not args.gm:
        # Without --owns the user owns the actor they act on
        owned = [actor]
    return ManagerConfig(
        state_file=args.state_file,
        event_log_file=args.event_log,
        restore_scope=RestoreScope(args.restore_scope),
        guard_conflicts_on_apply=not args.no_conflict_guard,
        validate_class=not args.no_class_check,
        elevated=args.gm,
        owned_actors=owned,
        verbose=args.verbose,
    )


def run_command(manager: ArchetypeManager, args: argparse.Namespace) -> int:
    """Run one sub-command; returns the process exit code."""
    if args.command == "register":
        record = load_class_record(args.class_file)
        manager.register_class(record)
        print(f"Registered {record.name} ({record.class_ref})")
        return 0

    if args.command == "status":
        print(manager.status(args.class_ref))
        return 0

    if args.command == "diff":
        archetype = load_archetype(args.archetype_file)
        diff = manager.diff(args.class_ref, archetype)
        print(format_diff(diff))
        return 0

    if args.command == "check":
        archetypes = [load_archetype(p) for p in args.archetype_files]
        validation = manager.check(args.class_ref, archetypes)
        if validation.valid:
            print("No conflicts.")
            return 0
        for conflict in validation.conflicts:
            print(
                f"{conflict.candidate_archetype} conflicts with "
                f"{conflict.blocking_archetype} over {conflict.feature_name}"
            )
        return 1

    if args.command == "apply":
        archetype = load_archetype(args.archetype_file)
        result = manager.apply(args.actor, args.class_ref, archetype)
        for summary in manager.summaries.summaries:
            print(summary.format())
    elif args.command == "remove":
        result = manager.remove(args.actor, args.class_ref, args.slug)
    elif args.command == "restore":
        result = manager.restore(args.actor, args.class_ref)
    else:
        raise ValueError(f"Unknown command: {args.command}")

    for notice in manager.pop_notices():
        print(notice)
    manager.save_event_log()
    return 0 if result.success else 1


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI usage."""
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    config = create_config_from_args(args)
    manager = ArchetypeManager(config)
    return run_command(manager, args)


if __name__ == "__main__":
    sys.exit(main())
