from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from common.logging import JsonFormatter
from core.models import AuditLog


class ApprovalPermissionTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.pending = self.user_model.objects.create_user(username="pending-user", password="pass1234")
        self.approved = self.user_model.objects.create_user(
            username="approved-user",
            password="pass1234",
            is_approved=True,
        )

    def test_unauthenticated_request_uses_error_envelope(self):
        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertIn("message", payload)
        self.assertIn("errors", payload)
        self.assertEqual(payload["status"], 401)

    def test_pending_user_is_denied_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.pending)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertEqual(response.json()["message"], "Your account is pending approval.")
        self.assertTrue(any("reason=pending_approval" in message for message in cm.output))

    def test_approved_user_can_list_products(self):
        self.client.force_authenticate(user=self.approved)

        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(response.json().keys()), ["count", "next", "previous", "results"])

    def test_superuser_is_always_approved(self):
        admin = self.user_model.objects.create_superuser(username="root", password="pass1234", email="root@example.com")
        self.client.force_authenticate(user=admin)

        response = self.client.get("/api/v1/salons/")

        self.assertEqual(response.status_code, 200)

    def test_pending_user_can_read_own_profile(self):
        self.client.force_authenticate(user=self.pending)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_approved"])


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="token-user",
            email="Token.User@Example.com",
            password="pass1234",
            is_approved=True,
        )

    def test_token_accepts_email_in_any_case(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "TOKEN.user@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_email_is_stored_lowercase(self):
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, "token.user@example.com")

    def test_wrong_password_is_rejected(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["status"], 401)


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.staff = self.user_model.objects.create_user(
            username="audit-staff",
            password="pass1234",
            is_staff=True,
            is_approved=True,
        )
        self.member = self.user_model.objects.create_user(
            username="audit-member",
            password="pass1234",
            is_approved=True,
        )

    def test_salon_create_writes_audit_log_with_request_id(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.post(
            "/api/v1/salons/",
            {"name": "Audit Salon", "commission_rate": "10.00"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response["X-Request-ID"], "req-123")
        log = AuditLog.objects.get(action="salon.create", entity="salon")
        self.assertEqual(log.request_id, "req-123")
        self.assertEqual(log.actor, self.member)
        self.assertEqual(log.after_snapshot["name"], "Audit Salon")

    def test_audit_logs_are_staff_only(self):
        self.client.force_authenticate(user=self.member)
        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.staff)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.staff)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_log_export_is_csv(self):
        self.client.force_authenticate(user=self.staff)
        AuditLog.objects.create(action="sale.create", entity="sale", actor=self.staff, request_id="req-9")

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        content = response.content.decode()
        self.assertIn("id,created_at,actor,action,entity,entity_id,request_id", content)
        self.assertIn("sale.create", content)


class ApproveUserCommandTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(
            username="waiting",
            email="waiting@example.com",
            password="pass1234",
        )

    def test_approve_by_email(self):
        out = StringIO()
        call_command("approve_user", "WAITING@example.com", stdout=out)

        self.user.refresh_from_db()
        self.assertTrue(self.user.is_approved)
        self.assertIn("Approved waiting", out.getvalue())
        self.assertTrue(AuditLog.objects.filter(action="user.approve", entity_id=self.user.id).exists())

    def test_revoke_by_username(self):
        self.user.is_approved = True
        self.user.save(update_fields=["is_approved"])

        call_command("approve_user", "waiting", "--revoke", stdout=StringIO())

        self.user.refresh_from_db()
        self.assertFalse(self.user.is_approved)

    def test_unknown_user_raises(self):
        with self.assertRaises(CommandError):
            call_command("approve_user", "nobody", stdout=StringIO())


class SeedDemoDataCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        from inventory.models import Consignment, Product
        from sales.models import Sale

        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Product.objects.count(), 4)
        self.assertEqual(Consignment.objects.count(), 1)
        self.assertEqual(Sale.objects.count(), 2)
        mask = Product.objects.get(code="MS-001")
        self.assertEqual(mask.stock_quantity, 14)
        self.assertEqual(mask.consigned_quantity, 4)


class HealthTests(TestCase):
    def test_healthz_is_public(self):
        response = APIClient().get("/api/v1/healthz/", HTTP_X_REQUEST_ID="health-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "health-1"})

    def test_readyz_checks_database(self):
        response = APIClient().get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class JsonFormatterTests(SimpleTestCase):
    def test_structured_fields_are_serialized(self):
        import json
        import logging
        import uuid

        record = logging.LogRecord("ledger", logging.WARNING, __file__, 1, "ledger.under_allocated", None, None)
        product_id = uuid.uuid4()
        record.product_id = product_id
        record.unallocated = 2

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["logger"], "ledger")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["message"], "ledger.under_allocated")
        self.assertEqual(payload["product_id"], str(product_id))
        self.assertEqual(payload["unallocated"], 2)
