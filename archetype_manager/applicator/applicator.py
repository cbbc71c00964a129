"""
Applicator: applies and removes archetypes on class records.

Handles:
- Permission, duplicate, class and conflict gates before any write
- The one-time backup of a class's original slot sequence
- Rebuilding the slot sequence from a diff
- Derived item copies for modified features
- Application record and per-actor tracking flags
- Restore from backup and selective removal by replay

Every mutating call runs under the class's lock and ends in a single
repository commit; on failure nothing is committed and item copies
created along the way are deleted again.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Optional

from archetype_manager.applicator.collaborators import (
    DerivedItemFactory,
    DerivedItemSpec,
    LoggingSummaryChannel,
    NotificationSink,
    PermissionOracle,
    SummaryChannel,
)
from archetype_manager.applicator.locks import ClassLockRegistry
from archetype_manager.applicator.results import (
    ApplicatorConfig,
    ApplicatorState,
    ApplyResult,
    RestoreResult,
    RestoreScope,
)
from archetype_manager.conflicts.conflict_checker import ConflictChecker
from archetype_manager.data_models import (
    ApplicationRecord,
    ClassArchetypeState,
    ClassRecord,
    DiffEntry,
    DiffStatus,
    FeatureSlot,
    ParsedArchetype,
)
from archetype_manager.diff.diff_engine import DiffEngine
from archetype_manager.errors import OutcomeCode
from archetype_manager.observability.event_log import (
    EventLog,
    EventType,
    OperationEvent,
    get_event_log,
)
from archetype_manager.persistence.repository import (
    ArchetypeRepository,
    ClassCommit,
    TrackingOp,
    TrackingUpdate,
)

logger = logging.getLogger(__name__)

MODIFIED_COPY_FLAG = "is_modified_copy"
SOURCE_ARCHETYPE_FLAG = "created_by_archetype"


class Applicator:
    """
    Applies archetype diffs to class records.
    """

    def __init__(
        self,
        repository: ArchetypeRepository,
        permissions: PermissionOracle,
        notifications: NotificationSink,
        item_factory: DerivedItemFactory,
        summary_channel: Optional[SummaryChannel] = None,
        config: Optional[ApplicatorConfig] = None,
        event_log: Optional[EventLog] = None,
    ):
        self.repository = repository
        self.permissions = permissions
        self.notifications = notifications
        self.item_factory = item_factory
        if summary_channel is None:
            summary_channel = LoggingSummaryChannel()
        self.summary_channel = summary_channel
        self.config = config if config is not None else ApplicatorConfig()
        self.event_log = event_log if event_log is not None else get_event_log()
        self._locks = ClassLockRegistry()

    # =========================================================================
    # NOTICES
    # =========================================================================

    def _info(self, text: str) -> None:
        self.notifications.info(f"{self.config.module_title} | {text}")

    def _warn(self, text: str) -> None:
        self.notifications.warn(f"{self.config.module_title} | {text}")

    def _error(self, text: str) -> None:
        self.notifications.error(f"{self.config.module_title} | {text}")

    def _record(
        self,
        event_type: EventType,
        actor_ref: str,
        class_ref: str,
        slug: Optional[str],
        outcome: OutcomeCode,
        message: str = "",
        **details,
    ) -> None:
        self.event_log.record(OperationEvent(
            event_type=event_type,
            actor_ref=actor_ref,
            class_ref=class_ref,
            slug=slug,
            outcome=outcome.value,
            message=message,
            details=details,
        ))

    def _check_permission(self, actor_ref: str, record: ClassRecord) -> bool:
        if record.owner_ref != actor_ref:
            self._error(f"{record.name} does not belong to {actor_ref}.")
            return False
        if not self.permissions.is_owner_or_elevated(actor_ref):
            self._error("You do not have permission to modify this character.")
            return False
        return True

    # =========================================================================
    # READ-ONLY HELPERS
    # =========================================================================

    def get_state(self, actor_ref: str, class_ref: str) -> ApplicatorState:
        """
        Current state of an (actor, class) pair.

        A class that does not belong to actor_ref is always PRISTINE for
        that actor.
        """
        state = self.repository.load(class_ref)
        if state.record.owner_ref != actor_ref:
            return ApplicatorState.PRISTINE
        if state.has_backup and state.applied_slugs:
            return ApplicatorState.ARCHETYPED
        return ApplicatorState.PRISTINE

    def get_applied_archetypes(self, class_ref: str) -> list[ParsedArchetype]:
        state = self.repository.load(class_ref)
        return state.application.applied_archetypes() if state.application else []

    def preview(self, class_ref: str, archetype: ParsedArchetype) -> list[DiffEntry]:
        """Diff an archetype against a class's current slots."""
        state = self.repository.load(class_ref)
        return DiffEngine.generate_diff(state.record.slots, archetype, class_name=state.record.name)

    # =========================================================================
    # APPLY
    # =========================================================================

    def apply(
        self, actor_ref: str, class_ref: str, archetype: ParsedArchetype, diff: list[DiffEntry]
    ) -> bool:
        """
        Apply an archetype to a class.

        Args:
            actor_ref: The owning actor
            class_ref: The class record to modify
            archetype: The parsed archetype being applied
            diff: Diff generated against the class's current slots

        Returns:
            True if the archetype was applied
        """
        return self.apply_detailed(actor_ref, class_ref, archetype, diff).success

    def apply_detailed(
        self, actor_ref: str, class_ref: str, archetype: ParsedArchetype, diff: list[DiffEntry]
    ) -> ApplyResult:
        """apply() returning the full result."""
        with self._locks.hold(actor_ref, class_ref):
            result = self._do_apply(actor_ref, class_ref, archetype, diff)
        self._record(
            EventType.APPLY, actor_ref, class_ref, archetype.slug, result.outcome, result.message,
            created_items=list(result.created_items), unresolved=list(result.unresolved),
        )
        return result

    def _do_apply(
        self, actor_ref: str, class_ref: str, archetype: ParsedArchetype, diff: list[DiffEntry]
    ) -> ApplyResult:
        state = self.repository.load(class_ref)
        record = state.record
        slug = archetype.slug

        if not self._check_permission(actor_ref, record):
            return ApplyResult(False, OutcomeCode.PERMISSION_DENIED, "Permission denied")

        if slug in state.applied_slugs:
            self._warn(f"{archetype.name} is already applied to this class.")
            return ApplyResult(False, OutcomeCode.ALREADY_APPLIED, "Already applied")

        if self.config.validate_class and not ConflictChecker.validate_class(archetype, record):
            self._error(
                f"{archetype.name} is a {archetype.class_tag} archetype and cannot be applied to {record.name}."
            )
            return ApplyResult(False, OutcomeCode.CLASS_MISMATCH, "Class mismatch")

        if self.config.guard_conflicts_on_apply and state.application:
            check = ConflictChecker.check_can_apply(
                archetype, state.application.applied_archetypes(), class_name=record.name
            )
            if not check.can_apply:
                features = ", ".join(sorted({c.feature_name for c in check.conflicts}))
                self._warn(
                    f"{archetype.name} conflicts with {', '.join(check.blocked_by)} over {features}."
                )
                return ApplyResult(False, OutcomeCode.CONFLICT, "Conflicts with applied archetypes")

        next_slots = DiffEngine.build_next_slots(diff)
        validation = DiffEngine.validate_final_state(next_slots)
        if not validation.valid:
            for error in validation.errors:
                logger.error(f"Invalid slot sequence for {record.name}: {error}")
            self._error(f"Cannot apply {archetype.name}: the resulting feature list is invalid.")
            return ApplyResult(False, OutcomeCode.INVALID_FINAL_STATE, "; ".join(validation.errors))

        unresolved = [e.name for e in DiffEngine.unresolved_entries(diff)]
        if unresolved:
            self._warn(
                f"{archetype.name}: could not match the target of {', '.join(unresolved)}; "
                f"these features were not placed in the class feature list."
            )

        created: list[str] = []
        try:
            # The backup is only ever written here, from the live slots,
            # and only if the class has none yet.
            backup = state.backup if state.has_backup else copy.deepcopy(record.slots)

            created = self._create_modified_copies(actor_ref, archetype, diff)

            application = copy.deepcopy(state.application) or ApplicationRecord()
            application.applied_slugs.append(slug)
            application.applied_at_iso = datetime.now(timezone.utc).isoformat()
            application.last_applied_archetype = archetype
            application.archetypes[slug] = archetype

            version = self.repository.commit(ClassCommit(
                class_ref=class_ref,
                expected_version=state.version,
                record=self._with_slots(record, next_slots),
                backup=backup,
                application=application,
                actor_ref=actor_ref,
                tracking=TrackingUpdate(TrackingOp.APPEND, record.class_tag, slug),
            ))
        except Exception as e:
            logger.exception(f"Error applying archetype {slug} to {class_ref}")
            self._rollback_items(actor_ref, class_ref, slug, created)
            self._error("Failed to apply archetype. No changes were saved.")
            return ApplyResult(False, OutcomeCode.PERSISTENCE_FAILURE, str(e))

        summary = DiffEngine.summarize(diff, archetype.name, record.name, actor_ref)
        self.summary_channel.post(summary)
        self._info(f"Applied {archetype.name} to {record.name}")
        logger.info(f"Applied {slug} to {class_ref} (version {version})")
        return ApplyResult(
            True, OutcomeCode.APPLIED, "Applied",
            created_items=created, unresolved=unresolved, version=version,
        )

    def apply_stack(
        self, actor_ref: str, class_ref: str, archetypes: list[ParsedArchetype]
    ) -> bool:
        """
        Apply several archetypes selected together.

        The batch is validated against itself and the already-applied set
        first; then each archetype not yet applied is applied in order with
        a fresh diff.
        Each application commits on its own, so a later failure leaves the
        earlier ones applied.
        """
        with self._locks.hold(actor_ref, class_ref):
            state = self.repository.load(class_ref)
            applied = state.application.applied_archetypes() if state.application else []
            pending = [a for a in archetypes if a.slug not in state.applied_slugs]
            validation = ConflictChecker.validate_stacking(
                applied + pending, class_name=state.record.name
            )
            if not validation.valid:
                pairs = "; ".join(" vs ".join(pair) for pair in validation.conflict_pairs)
                self._warn(f"Selected archetypes cannot be combined: {pairs}")
                for archetype in archetypes:
                    self._record(
                        EventType.APPLY, actor_ref, class_ref, archetype.slug,
                        OutcomeCode.CONFLICT, "Rejected with batch",
                    )
                return False

            for archetype in pending:
                diff = self.preview(class_ref, archetype)
                if not self.apply(actor_ref, class_ref, archetype, diff):
                    return False
            return True

    def _create_modified_copies(
        self, actor_ref: str, archetype: ParsedArchetype, diff: list[DiffEntry]
    ) -> list[str]:
        """Create one flagged item copy per MODIFIED entry."""
        specs = []
        for entry in diff:
            if entry.status != DiffStatus.MODIFIED or entry.claim is None:
                continue
            specs.append(DerivedItemSpec(
                name=f"{entry.claim.name} ({archetype.name})",
                description=(
                    f"Modified by {archetype.name}: "
                    f"{entry.claim.description or 'See archetype description.'}"
                ),
                flags={SOURCE_ARCHETYPE_FLAG: archetype.slug, MODIFIED_COPY_FLAG: True},
            ))
        if not specs:
            return []
        return list(self.item_factory.create_derived_items(actor_ref, specs))

    def _rollback_items(self, actor_ref: str, class_ref: str, slug: str, created: list[str]) -> None:
        """Delete copies made for a failed apply, found by slug."""
        try:
            deleted = self.item_factory.delete_derived_items(actor_ref, slug)
        except Exception:
            logger.exception(f"Rollback of item copies for {slug} also failed")
            return
        if deleted:
            self._record(EventType.ROLLBACK, actor_ref, class_ref, slug, OutcomeCode.PERSISTENCE_FAILURE,
                         "Deleted item copies", items=list(created), deleted=deleted)

    def _delete_copies(self, actor_ref: str, slugs: list[str]) -> int:
        deleted = 0
        for slug in slugs:
            try:
                deleted += self.item_factory.delete_derived_items(actor_ref, slug)
            except Exception:
                logger.exception(f"Failed to delete item copies created by {slug}")
        return deleted

    @staticmethod
    def _with_slots(record: ClassRecord, slots: list[FeatureSlot]) -> ClassRecord:
        return ClassRecord(
            class_ref=record.class_ref,
            name=record.name,
            owner_ref=record.owner_ref,
            tag=record.tag,
            slots=list(slots),
        )

    # =========================================================================
    # RESTORE
    # =========================================================================

    def restore_from_backup(self, actor_ref: str, class_ref: str) -> RestoreResult:
        """
        Restore a class's slot sequence from its backup.

        Removes every applied archetype at once: the slots are overwritten
        with the backup, the backup and application record are deleted, and
        the actor's tracking flag is cleared according to restore_scope.
        """
        with self._locks.hold(actor_ref, class_ref):
            state = self.repository.load(class_ref)
            result = self._do_restore(actor_ref, state)
        self._record(
            EventType.RESTORE, actor_ref, class_ref, None,
            result.outcome, result.message, restored_count=result.restored_count,
        )
        return result

    def _do_restore(self, actor_ref: str, state: ClassArchetypeState) -> RestoreResult:
        record = state.record
        if not self._check_permission(actor_ref, record):
            return RestoreResult(False, 0, "Permission denied", OutcomeCode.PERMISSION_DENIED)

        if not state.has_backup:
            self._warn("No backup found. Cannot restore.")
            return RestoreResult(False, 0, "No backup found", OutcomeCode.NO_BACKUP_FOUND)

        restored = copy.deepcopy(state.backup)
        if self.config.restore_scope == RestoreScope.ACTOR:
            tracking = TrackingUpdate(TrackingOp.CLEAR_ALL)
        else:
            tracking = TrackingUpdate(TrackingOp.CLEAR_TAG, record.class_tag)

        try:
            self.repository.commit(ClassCommit(
                class_ref=record.class_ref,
                expected_version=state.version,
                record=self._with_slots(record, restored),
                backup=None,
                application=None,
                actor_ref=actor_ref,
                tracking=tracking,
            ))
        except Exception as e:
            logger.exception(f"Error restoring {record.class_ref} from backup")
            self._error("Failed to restore from backup.")
            return RestoreResult(False, 0, str(e), OutcomeCode.PERSISTENCE_FAILURE)

        self._delete_copies(actor_ref, state.applied_slugs)
        self._info(f"Restored {record.name} to original state ({len(restored)} features).")
        return RestoreResult(True, len(restored), "Restored", OutcomeCode.RESTORED)

    # =========================================================================
    # REMOVE
    # =========================================================================

    def remove(self, actor_ref: str, class_ref: str, slug: str) -> bool:
        """
        Remove one applied archetype.

        Equivalent to restoring from backup and re-applying every other
        applied archetype in its original order, committed as one change.
        """
        return self.remove_detailed(actor_ref, class_ref, slug).success

    def remove_detailed(self, actor_ref: str, class_ref: str, slug: str) -> ApplyResult:
        """remove() returning the full result."""
        with self._locks.hold(actor_ref, class_ref):
            result = self._do_remove(actor_ref, class_ref, slug)
        self._record(EventType.REMOVE, actor_ref, class_ref, slug, result.outcome, result.message)
        return result

    def _do_remove(self, actor_ref: str, class_ref: str, slug: str) -> ApplyResult:
        state = self.repository.load(class_ref)
        record = state.record

        if not self._check_permission(actor_ref, record):
            return ApplyResult(False, OutcomeCode.PERMISSION_DENIED, "Permission denied")

        if slug not in state.applied_slugs:
            self._warn("This archetype is not applied to this class.")
            return ApplyResult(False, OutcomeCode.NOT_APPLIED, "Not applied")

        if not state.has_backup:
            logger.error(f"{class_ref} has applied archetypes but no backup")
            self._error("No backup found. Cannot rebuild the class features.")
            return ApplyResult(False, OutcomeCode.NO_BACKUP_FOUND, "No backup found")

        removed = state.application.archetypes.get(slug)
        removed_name = removed.name if removed else slug
        remaining_slugs = [s for s in state.applied_slugs if s != slug]
        tracking = TrackingUpdate(TrackingOp.REMOVE, record.class_tag, slug)

        if not remaining_slugs:
            slots = copy.deepcopy(state.backup)
            backup = None
            application = None
        else:
            validation = ConflictChecker.validate_remove_from_stack(
                slug, state.application.applied_archetypes(), class_name=record.name
            )
            if not validation.valid:
                self._error("The remaining archetypes conflict with each other; restore from backup instead.")
                return ApplyResult(False, OutcomeCode.CONFLICT, "Remaining stack is invalid")

            slots = self._replay(state.backup, validation.remaining_stack, record.name)
            final = DiffEngine.validate_final_state(slots)
            if not final.valid:
                self._error(f"Cannot remove {removed_name}: the rebuilt feature list is invalid.")
                return ApplyResult(False, OutcomeCode.INVALID_FINAL_STATE, "; ".join(final.errors))

            backup = state.backup
            application = copy.deepcopy(state.application)
            application.applied_slugs = remaining_slugs
            application.archetypes.pop(slug, None)
            application.last_applied_archetype = application.archetypes.get(remaining_slugs[-1])

        try:
            version = self.repository.commit(ClassCommit(
                class_ref=class_ref,
                expected_version=state.version,
                record=self._with_slots(record, slots),
                backup=backup,
                application=application,
                actor_ref=actor_ref,
                tracking=tracking,
            ))
        except Exception as e:
            logger.exception(f"Error removing archetype {slug} from {class_ref}")
            self._error("Failed to remove archetype.")
            return ApplyResult(False, OutcomeCode.PERSISTENCE_FAILURE, str(e))

        self._delete_copies(actor_ref, [slug])
        self._info(f"Removed {removed_name} from {record.name}")
        return ApplyResult(True, OutcomeCode.REMOVED, "Removed", version=version)

    @staticmethod
    def _replay(
        backup: list[FeatureSlot], archetypes: list[ParsedArchetype], class_name: str
    ) -> list[FeatureSlot]:
        """Re-apply archetypes in order, starting from the backup."""
        slots = copy.deepcopy(backup)
        for archetype in archetypes:
            diff = DiffEngine.generate_diff(slots, archetype, class_name=class_name)
            slots = DiffEngine.build_next_slots(diff)
        return slots
