from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SyncOutbox",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("entity", models.CharField(max_length=64)),
                ("entity_id", models.UUIDField()),
                ("op", models.CharField(choices=[("upsert", "Upsert"), ("delete", "Delete")], max_length=16)),
                ("payload", models.JSONField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["entity", "id"], name="syncoutbox_entity_id_idx"),
                ],
            },
        ),
    ]
