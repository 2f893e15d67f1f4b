from support import ApiTestCase


class AdminApiTestCase(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.admin_headers()

    def pending_doctor(self, login="dr.house"):
        account_id = self.api_register(login, "doctor").json()["account_id"]
        self.client.get("/verify-email", params={"token": self.notifier.last_token()})
        return account_id

    def patient_headers(self, login="alice"):
        self.api_register(login)
        self.client.get("/verify-email", params={"token": self.notifier.last_token()})
        return self.bearer(login)


class TestApprovalEndpoints(AdminApiTestCase):

    def test_approve_then_already_decided(self):
        account_id = self.pending_doctor()
        response = self.client.post(f"/admin/approve/{account_id}", json={"notes": "ok"}, headers=self.admin)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["decision"], "approved")
        self.assertEqual(response.json()["notes"], "ok")

        again = self.client.post(f"/admin/approve/{account_id}", headers=self.admin)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["detail"]["code"], "AlreadyDecided")
        self.assertEqual(again.json()["detail"]["state"], "approved")

        reject = self.client.post(f"/admin/reject/{account_id}", headers=self.admin)
        self.assertEqual(reject.status_code, 409)

    def test_unverified_account_is_invalid_transition(self):
        account_id = self.api_register("dr.early", "doctor").json()["account_id"]
        response = self.client.post(f"/admin/approve/{account_id}", headers=self.admin)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "InvalidStateTransition")

    def test_unknown_account(self):
        response = self.client.post("/admin/reject/999", headers=self.admin)
        self.assertEqual(response.status_code, 404)

    def test_patient_cannot_approve(self):
        account_id = self.pending_doctor()
        response = self.client.post(f"/admin/approve/{account_id}", headers=self.patient_headers())
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"]["code"], "Forbidden")
        self.assertIn("user.approve", response.json()["detail"]["permission"])

    def test_anonymous_cannot_approve(self):
        account_id = self.pending_doctor()
        self.assertEqual(self.client.post(f"/admin/approve/{account_id}").status_code, 401)

    def test_granted_approver_role(self):
        chief_id = self.pending_doctor("dr.chief")
        self.client.post(f"/admin/approve/{chief_id}", headers=self.admin)
        response = self.client.put(f"/admin/accounts/{chief_id}/permissions/user.approve", json={"granted": True}, headers=self.admin)
        self.assertEqual(response.status_code, 200, response.text)

        account_id = self.pending_doctor("dr.new")
        response = self.client.post(f"/admin/approve/{account_id}", headers=self.bearer("dr.chief"))
        self.assertEqual(response.status_code, 200, response.text)

    def test_system_permission_may_decide(self):
        ops_id = self.pending_doctor("dr.ops")
        self.client.post(f"/admin/approve/{ops_id}", headers=self.admin)
        self.client.put(f"/admin/accounts/{ops_id}/permissions/system.settings", json={"granted": True}, headers=self.admin)

        account_id = self.pending_doctor("dr.new")
        response = self.client.post(f"/admin/reject/{account_id}", headers=self.bearer("dr.ops"))
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["decision"], "rejected")

    def test_decision_history(self):
        account_id = self.pending_doctor()
        self.client.post(f"/admin/reject/{account_id}", json={"notes": "expired license"}, headers=self.admin)
        response = self.client.get(f"/admin/accounts/{account_id}/decisions", headers=self.admin)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([(d["review_cycle"], d["decision"]) for d in response.json()], [(1, "rejected")])


class TestReviewQueueEndpoints(AdminApiTestCase):

    def test_pending_accounts_page(self):
        for login in ("dr.a", "dr.b", "dr.c"):
            self.pending_doctor(login)

        response = self.client.get("/admin/pending-accounts", params={"limit": 2}, headers=self.admin)
        self.assertEqual(response.status_code, 200, response.text)
        page = response.json()
        self.assertEqual(page["total"], 3)
        self.assertEqual(page["pages"], 2)
        self.assertEqual([item["login"] for item in page["items"]], ["dr.a", "dr.b"])
        self.assertEqual(page["items"][0]["profile"]["license_number"], "MD-1234")

        response = self.client.get("/admin/pending-accounts", params={"role": "nurse"}, headers=self.admin)
        self.assertEqual(response.json()["total"], 0)

    def test_approval_stats(self):
        self.pending_doctor()
        response = self.client.get("/admin/approval-stats", headers=self.admin)
        self.assertEqual(response.status_code, 200)
        stats = response.json()
        self.assertEqual(stats["roles"]["doctor"]["pending_admin_approval"], 1)
        self.assertEqual(stats["summary"]["approved"], 1)


class TestRolePermissionEndpoints(AdminApiTestCase):

    def test_read_matrix(self):
        response = self.client.get("/admin/role-permissions", headers=self.admin)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["version"], 1)
        self.assertIn("system.audit", body["roles"]["admin"])
        self.assertIn("lab", body["categories"])

    def test_write_role(self):
        response = self.client.post(
            "/admin/role-permissions",
            json={"role": "patient", "permissions": ["appointment.read", "appointment.create"], "expected_version": 1},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["version"], 2)
        self.assertEqual(body["roles"]["patient"], ["appointment.create", "appointment.read"])

        patient = self.patient_headers()
        permissions = self.client.get("/account/me", headers=patient).json()["permissions"]
        self.assertEqual(permissions, ["appointment.create", "appointment.read"])

    def test_stale_version_conflicts(self):
        payload = {"role": "nurse", "permissions": ["lab.read"], "expected_version": 1}
        self.assertEqual(self.client.post("/admin/role-permissions", json=payload, headers=self.admin).status_code, 200)

        response = self.client.post("/admin/role-permissions", json=payload, headers=self.admin)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["current_version"], 2)

    def test_unknown_permission_is_rejected(self):
        response = self.client.post(
            "/admin/role-permissions",
            json={"role": "nurse", "permissions": ["lab.read", "lab.teleport"]},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/admin/role-permissions", headers=self.admin).json()["version"], 1)

    def test_admin_role_is_computed(self):
        response = self.client.post("/admin/role-permissions", json={"role": "admin", "permissions": []}, headers=self.admin)
        self.assertEqual(response.status_code, 400)

    def test_patient_cannot_read_matrix(self):
        response = self.client.get("/admin/role-permissions", headers=self.patient_headers())
        self.assertEqual(response.status_code, 403)


class TestAccountOverrideEndpoints(AdminApiTestCase):

    def test_deny_then_clear(self):
        patient = self.patient_headers()
        account_id = self.client.get("/account/me", headers=patient).json()["id"]

        response = self.client.put(f"/admin/accounts/{account_id}/permissions/lab.read", json={"granted": False}, headers=self.admin)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertNotIn("lab.read", self.client.get("/account/me", headers=patient).json()["permissions"])

        listed = self.client.get(f"/admin/accounts/{account_id}/permissions", headers=self.admin).json()
        self.assertEqual([(o["permission_id"], o["granted"]) for o in listed], [("lab.read", False)])

        response = self.client.delete(f"/admin/accounts/{account_id}/permissions/lab.read", headers=self.admin)
        self.assertEqual(response.status_code, 204)
        self.assertIn("lab.read", self.client.get("/account/me", headers=patient).json()["permissions"])

    def test_unknown_permission(self):
        patient = self.patient_headers()
        account_id = self.client.get("/account/me", headers=patient).json()["id"]
        response = self.client.put(f"/admin/accounts/{account_id}/permissions/lab.teleport", json={"granted": True}, headers=self.admin)
        self.assertEqual(response.status_code, 400)


class TestRevokeSessionsEndpoint(AdminApiTestCase):

    def test_force_sign_out(self):
        patient = self.patient_headers()
        account_id = self.client.get("/account/me", headers=patient).json()["id"]

        response = self.client.post(f"/admin/accounts/{account_id}/revoke-sessions", headers=self.admin)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["revoked_sessions"], 2)
        self.assertEqual(self.client.get("/account/me", headers=patient).status_code, 401)

    def test_unknown_account(self):
        self.assertEqual(self.client.post("/admin/accounts/999/revoke-sessions", headers=self.admin).status_code, 404)
