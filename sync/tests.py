import uuid

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.utils import emit_outbox
from sync.models import SyncOutbox


class ChangeFeedErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="sync-user", password="pass1234", is_approved=True)

    def test_unauthenticated_error_uses_standard_envelope(self):
        response = self.client.get("/api/v1/sync/changes", {"cursor": 0})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")
        self.assertIn("message", response.json())
        self.assertIn("errors", response.json())
        self.assertEqual(response.json()["status"], 401)

    def test_negative_cursor_uses_validation_envelope(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get("/api/v1/sync/changes", {"cursor": -1})

        self.assertEqual(response.status_code, 422)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["message"], "Validation failed.")
        self.assertEqual(payload["status"], 422)
        self.assertIn("cursor", payload["errors"])

    def test_oversized_limit_is_rejected(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get("/api/v1/sync/changes", {"limit": 5000})

        self.assertEqual(response.status_code, 422)
        self.assertIn("limit", response.json()["errors"])


class ChangeFeedTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="feed-user", password="pass1234", is_approved=True)
        self.client.force_authenticate(user=self.user)
        self.product_id = uuid.uuid4()
        self.sale_id = uuid.uuid4()
        emit_outbox(entity="product", entity_id=self.product_id, op="upsert", payload={"stock_quantity": 4})
        emit_outbox(entity="sale", entity_id=self.sale_id, op="upsert", payload={"total_value": "10.00"})
        emit_outbox(entity="sale", entity_id=self.sale_id, op="delete", payload={})

    def test_pages_through_changes_in_write_order(self):
        first = self.client.get("/api/v1/sync/changes", {"cursor": 0, "limit": 2}).json()

        self.assertTrue(first["has_more"])
        self.assertEqual([update["entity"] for update in first["updates"]], ["product", "sale"])
        self.assertEqual(first["updates"][0]["entity_id"], str(self.product_id))
        self.assertEqual(first["updates"][0]["payload"], {"stock_quantity": 4})
        self.assertEqual(first["server_cursor"], first["updates"][-1]["cursor"])

        second = self.client.get("/api/v1/sync/changes", {"cursor": first["server_cursor"], "limit": 2}).json()

        self.assertFalse(second["has_more"])
        self.assertEqual(len(second["updates"]), 1)
        self.assertEqual(second["updates"][0]["op"], "delete")

    def test_cursor_is_kept_when_nothing_is_new(self):
        last_id = SyncOutbox.objects.order_by("-id").values_list("id", flat=True).first()

        payload = self.client.get("/api/v1/sync/changes", {"cursor": last_id}).json()

        self.assertEqual(payload["updates"], [])
        self.assertEqual(payload["server_cursor"], last_id)
        self.assertFalse(payload["has_more"])

    def test_filters_by_entity(self):
        payload = self.client.get("/api/v1/sync/changes", {"entity": "sale"}).json()

        self.assertEqual([update["op"] for update in payload["updates"]], ["upsert", "delete"])
        self.assertTrue(all(update["entity_id"] == str(self.sale_id) for update in payload["updates"]))
