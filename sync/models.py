from django.db import models


class SyncOutbox(models.Model):
    """Append-only change feed; clients poll it by ``id`` cursor to refresh their collections."""

    class Op(models.TextChoices):
        UPSERT = "upsert", "Upsert"
        DELETE = "delete", "Delete"

    id = models.BigAutoField(primary_key=True)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField()
    op = models.CharField(max_length=16, choices=Op.choices)
    payload = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["entity", "id"], name="syncoutbox_entity_id_idx"),
        ]
