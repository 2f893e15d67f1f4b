from careportal.audit.service import audit_request, log_event, validate_chain
from careportal.models.Audit import AuditLog, GENESIS_HASH

from support import ApiTestCase, StoreTestCase


class TestAuditChain(StoreTestCase):

    def test_chain_links_entries(self):
        first = log_event(self.session, 1, "POST /login 200 OK", "Login successful")
        second = log_event(self.session, 1, "POST /logout 200 OK")

        self.assertEqual(first.previous_hash, GENESIS_HASH)
        self.assertEqual(second.previous_hash, first.current_hash)
        self.assertEqual(validate_chain(self.session), (True, None, 2))

    def test_empty_chain_is_valid(self):
        self.assertEqual(validate_chain(self.session), (True, None, 0))

    def test_edited_entry_breaks_the_chain(self):
        log_event(self.session, 1, "POST /admin/approve/2 200 OK", "looks fine")
        tampered = log_event(self.session, 1, "POST /admin/reject/3 200 OK", "no license")
        log_event(self.session, 1, "POST /logout 200 OK")

        tampered.details = "license verified"
        self.session.add(tampered)
        self.session.commit()

        valid, broken_id, checked = validate_chain(self.session)
        self.assertFalse(valid)
        self.assertEqual(broken_id, tampered.id)
        self.assertEqual(checked, 2)

    def test_request_action_format(self):
        entry = audit_request(self.session, None, "GET", "/verify-email", 410)
        self.assertEqual(entry.action, "GET /verify-email 410 Gone")
        self.assertEqual(entry.actor_id, 0)


class TestAuditEndpoints(ApiTestCase):

    def test_onboarding_is_audited(self):
        self.api_register("alice")
        self.client.get("/verify-email", params={"token": "missing"})
        self.api_login("alice")

        headers = self.admin_headers()
        response = self.client.get("/admin/audit-logs", headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        actions = [entry["action"] for entry in response.json()]
        self.assertEqual(actions[:3], [
            "POST /register 201 Created",
            "GET /verify-email 404 Not Found",
            "POST /login 403 Forbidden",
        ])
        self.assertEqual(actions[-1], "POST /login 200 OK")

        response = self.client.get("/admin/audit-logs/verify", headers=headers)
        self.assertEqual(response.json(), {"valid": True, "entries": len(actions), "broken_id": None})

    def test_verify_reports_tampering(self):
        self.api_register("alice")
        headers = self.admin_headers()

        entry = self.session.get(AuditLog, 1)
        entry.actor_id = 42
        self.session.add(entry)
        self.session.commit()

        response = self.client.get("/admin/audit-logs/verify", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["valid"])
        self.assertEqual(response.json()["broken_id"], 1)

    def test_requires_audit_permission(self):
        self.api_register("alice")
        self.client.get("/verify-email", params={"token": self.notifier.last_token()})
        response = self.client.get("/admin/audit-logs", headers=self.bearer("alice"))
        self.assertEqual(response.status_code, 403)
