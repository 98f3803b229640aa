from django.db import transaction

from common.audit import create_audit_log_from_request
from common.utils import emit_outbox


class OutboxMutationMixin:
    """
    Publish every create/update/delete to the change feed and the audit log.

    ``snapshot_serializer_class`` renders payloads when the write serializer
    differs from the read one.
    """

    outbox_entity = None
    audit_entity = None
    snapshot_serializer_class = None

    def snapshot(self, instance):
        if self.snapshot_serializer_class is not None:
            return self.snapshot_serializer_class(instance, context=self.get_serializer_context()).data
        return self.get_serializer(instance).data

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None, entity_id=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=entity_id or instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def _emit(self, instance, op, payload=None, entity_id=None):
        emit_outbox(
            entity=self.outbox_entity,
            entity_id=entity_id or instance.id,
            op=op,
            payload=payload if payload is not None else self.snapshot(instance),
        )

    def perform_create(self, serializer):
        with transaction.atomic():
            instance = serializer.save()
            after_snapshot = self.snapshot(instance)
            self._emit(instance, "upsert", payload=after_snapshot)
            self._audit(action="create", instance=instance, after_snapshot=after_snapshot)

    def perform_update(self, serializer):
        with transaction.atomic():
            before_snapshot = self.snapshot(serializer.instance)
            instance = serializer.save()
            after_snapshot = self.snapshot(instance)
            self._emit(instance, "upsert", payload=after_snapshot)
            self._audit(action="update", instance=instance, before_snapshot=before_snapshot, after_snapshot=after_snapshot)

    def perform_destroy(self, instance):
        with transaction.atomic():
            before_snapshot = self.snapshot(instance)
            instance_id = instance.id
            self.destroy_instance(instance)
            self._emit(instance, "delete", payload=before_snapshot, entity_id=instance_id)
            self._audit(action="delete", instance=instance, before_snapshot=before_snapshot, entity_id=instance_id)

    def destroy_instance(self, instance):
        instance.delete()
