from unittest import mock

from sqlmodel import Session

from careportal.accounts.service import get_account_by_login
from careportal.approval import policy
from careportal.approval import service as approval
from careportal.auth.service import register_account
from careportal.core.errors import AccountNotFound, AlreadyDecided, InvalidStateTransition, ValidationFailed
from careportal.models.Account import Account, ApprovalState, RegisterRequest
from careportal.models.ApprovalDecision import Decision
from careportal.models.Role import Role
from careportal.notifications.service import ACCOUNT_APPROVED, ACCOUNT_REJECTED
from careportal.verification.service import consume_token

from support import PASSWORD, PROFILES, BrokenNotifier, FileStoreTestCase, StoreTestCase


class TestOnboardingPolicy(StoreTestCase):

    def test_default_review_table(self):
        self.assertFalse(policy.requires_review(Role.PATIENT))
        for role in (Role.DOCTOR, Role.NURSE, Role.PHARMACIST, Role.LAB_TECHNICIAN, Role.STAFF, Role.EXTERNAL_REQUESTER):
            self.assertTrue(policy.requires_review(role), role)

    def test_admin_cannot_self_register(self):
        self.assertNotIn(Role.ADMIN, policy.self_registration_roles())
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("mallory", Role.ADMIN, profile={})
        self.assertEqual(ctx.exception.detail["errors"][0]["field"], "role")

    def test_missing_profile_fields_are_listed(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("dr.nobody", Role.DOCTOR, profile={"specialization": "  "})
        fields = {error["field"] for error in ctx.exception.detail["errors"]}
        self.assertEqual(fields, {"profile.license_number", "profile.specialization"})

    def test_describe_covers_every_role(self):
        described = policy.describe()
        self.assertEqual(set(described), {role.value for role in Role})
        self.assertEqual(described["external_requester"]["required_profile_fields"], ["organization_name", "organization_type"])
        self.assertFalse(described["admin"]["self_registration"])

    def test_review_table_comes_from_settings(self):
        with mock.patch.object(policy.settings, "REVIEW_REQUIRED_ROLES", [Role.DOCTOR]):
            self.assertFalse(policy.requires_review(Role.NURSE))
            account = self.register("nurse.joy", Role.NURSE)
            self.verify(account)
        self.assertIs(self.reload(account).approval_state, ApprovalState.APPROVED)


class TestDecisions(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.make_admin()

    def pending(self, login, role=Role.DOCTOR):
        account = self.register(login, role)
        self.verify(account)
        return self.reload(account)

    def test_approve(self):
        account = self.pending("dr.house")
        decision = approval.approve(self.session, account.id, self.admin.id, "license checked", self.notifier)

        self.assertIs(decision.decision, Decision.APPROVED)
        self.assertEqual(decision.reviewer_id, self.admin.id)
        self.assertEqual(decision.review_cycle, 1)
        self.assertIs(self.reload(account).approval_state, ApprovalState.APPROVED)
        self.assertEqual(len(self.notifier.events(ACCOUNT_APPROVED)), 1)

    def test_reject_keeps_the_account(self):
        account = self.pending("dr.quack")
        approval.reject(self.session, account.id, self.admin.id, "license not found", self.notifier)

        account = self.reload(account)
        self.assertIsNotNone(account)
        self.assertIs(account.approval_state, ApprovalState.REJECTED)
        (event, recipient, payload), = self.notifier.events(ACCOUNT_REJECTED)
        self.assertEqual(recipient, "dr.quack@example.org")
        self.assertEqual(payload["notes"], "license not found")

    def test_second_decision_reports_already_decided(self):
        account = self.pending("dr.house")
        approval.approve(self.session, account.id, self.admin.id)

        with self.assertRaises(AlreadyDecided) as ctx:
            approval.approve(self.session, account.id, self.admin.id)
        self.assertEqual(ctx.exception.status_code, 409)
        with self.assertRaises(AlreadyDecided):
            approval.reject(self.session, account.id, self.admin.id)

        self.assertIs(self.reload(account).approval_state, ApprovalState.APPROVED)
        self.assertEqual(len(approval.decisions_for(self.session, account.id)), 1)

    def test_unverified_account_cannot_be_decided(self):
        account = self.register("dr.early", Role.DOCTOR)
        with self.assertRaises(InvalidStateTransition) as ctx:
            approval.approve(self.session, account.id, self.admin.id)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIs(self.reload(account).approval_state, ApprovalState.PENDING_EMAIL_VERIFICATION)

    def test_unknown_account(self):
        with self.assertRaises(AccountNotFound):
            approval.reject(self.session, 4242, self.admin.id)

    def test_notification_failure_does_not_undo_approval(self):
        account = self.pending("dr.house")
        with self.assertLogs("careportal.notifications.service", level="ERROR"):
            approval.approve(self.session, account.id, self.admin.id, notifier=BrokenNotifier())
        self.assertIs(self.reload(account).approval_state, ApprovalState.APPROVED)

    def test_rejected_login_registers_again_as_new_cycle(self):
        account = self.pending("dr.retry")
        approval.reject(self.session, account.id, self.admin.id, "blurry license scan")

        again = self.register("dr.retry", Role.DOCTOR, profile={"license_number": "MD-5678", "specialization": "oncology"})
        self.assertEqual(again.id, account.id)
        self.assertEqual(again.review_cycle, 2)
        self.assertFalse(again.email_verified)
        self.assertIs(again.approval_state, ApprovalState.PENDING_EMAIL_VERIFICATION)
        self.assertEqual(again.profile["license_number"], "MD-5678")

        self.verify(again)
        approval.approve(self.session, account.id, self.admin.id)

        history = approval.decisions_for(self.session, account.id)
        self.assertEqual([(d.review_cycle, d.decision) for d in history], [(1, Decision.REJECTED), (2, Decision.APPROVED)])
        self.assertEqual(history[0].notes, "blurry license scan")

    def test_taken_login_is_refused_unless_rejected(self):
        self.pending("dr.house")
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("dr.house", Role.DOCTOR, email="other@example.org")
        self.assertEqual(ctx.exception.detail["errors"][0]["field"], "login")

    def test_taken_email_is_refused(self):
        self.register("alice")
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("alice2", email="alice@example.org")
        self.assertEqual(ctx.exception.detail["errors"][0]["field"], "email")

    def test_login_cannot_take_another_accounts_email(self):
        bob = self.register("bob", email="bob@x.org")
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("bob@x.org", email="mallory@x.org")
        self.assertEqual(ctx.exception.detail["errors"][0]["field"], "login")

        self.assertEqual(get_account_by_login(self.session, "bob@x.org").id, bob.id)
        self.assertIsNone(get_account_by_login(self.session, "mallory@x.org"))

    def test_email_cannot_take_another_accounts_login(self):
        self.register("carol@x.org", email=None)
        with self.assertRaises(ValidationFailed) as ctx:
            self.register("mallory", email="carol@x.org")
        self.assertEqual(ctx.exception.detail["errors"][0]["field"], "email")

    def test_email_login_without_separate_email(self):
        account = self.register("frank@x.org", email=None)
        self.assertEqual(account.email, "frank@x.org")
        self.assertEqual(get_account_by_login(self.session, "FRANK@x.org").id, account.id)


class TestReviewQueue(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.make_admin()
        self.accounts = {}
        for login, role in (("dr.a", Role.DOCTOR), ("nurse.b", Role.NURSE), ("dr.c", Role.DOCTOR), ("pat.d", Role.PATIENT)):
            account = self.register(login, role, full_name=f"Person {login}")
            self.verify(account)
            self.accounts[login] = account.id
        self.register("dr.unverified", Role.DOCTOR)

    def test_pending_oldest_first(self):
        items, total = approval.list_pending(self.session)
        self.assertEqual(total, 3)
        self.assertEqual([a.login for a in items], ["dr.a", "nurse.b", "dr.c"])

    def test_filter_by_role_and_search(self):
        items, total = approval.list_pending(self.session, role=Role.DOCTOR)
        self.assertEqual([a.login for a in items], ["dr.a", "dr.c"])

        items, total = approval.list_pending(self.session, search="NURSE")
        self.assertEqual((total, [a.login for a in items]), (1, ["nurse.b"]))

    def test_pagination(self):
        items, total = approval.list_pending(self.session, page=2, limit=2)
        self.assertEqual(total, 3)
        self.assertEqual([a.login for a in items], ["dr.c"])
        self.assertEqual(approval.page_count(total, 2), 2)
        self.assertEqual(approval.page_count(0, 20), 1)

    def test_decided_accounts_leave_the_queue(self):
        approval.approve(self.session, self.accounts["dr.a"], self.admin.id)
        approval.reject(self.session, self.accounts["nurse.b"], self.admin.id)
        items, total = approval.list_pending(self.session)
        self.assertEqual([a.login for a in items], ["dr.c"])

    def test_stats(self):
        approval.reject(self.session, self.accounts["nurse.b"], self.admin.id)
        stats = approval.approval_stats(self.session)

        self.assertEqual(stats["roles"]["doctor"]["pending_admin_approval"], 2)
        self.assertEqual(stats["roles"]["doctor"]["pending_email_verification"], 1)
        self.assertEqual(stats["roles"]["doctor"]["total"], 3)
        self.assertEqual(stats["roles"]["nurse"]["rejected"], 1)
        self.assertEqual(stats["roles"]["patient"]["approved"], 1)
        self.assertEqual(stats["roles"]["pharmacist"]["total"], 0)
        self.assertEqual(stats["summary"]["total"], 6)
        self.assertEqual(stats["summary"]["approved"], 2)  # patient and the administrator


class TestDecisionRace(FileStoreTestCase):

    def setUp(self):
        super().setUp()
        data = RegisterRequest(login="dr.race", password=PASSWORD, role=Role.DOCTOR, email="dr.race@example.org", profile=PROFILES[Role.DOCTOR])
        with Session(self.engine) as session:
            account = register_account(session, data, self.notifier)
            self.account_id = account.id
            consume_token(session, self.notifier.last_token())

    def test_approve_and_reject_at_once(self):
        with Session(self.engine) as first, Session(self.engine) as second:
            # both reviewers loaded the pending account
            self.assertIs(first.get(Account, self.account_id).approval_state, ApprovalState.PENDING_ADMIN_APPROVAL)
            self.assertIs(second.get(Account, self.account_id).approval_state, ApprovalState.PENDING_ADMIN_APPROVAL)

            approval.approve(first, self.account_id, reviewer_id=1)
            with self.assertRaises(AlreadyDecided):
                approval.reject(second, self.account_id, reviewer_id=2)

        with Session(self.engine) as session:
            self.assertIs(session.get(Account, self.account_id).approval_state, ApprovalState.APPROVED)
            decisions = approval.decisions_for(session, self.account_id)
            self.assertEqual([(d.decision, d.reviewer_id) for d in decisions], [(Decision.APPROVED, 1)])

    def test_double_submit(self):
        with Session(self.engine) as first, Session(self.engine) as second:
            first.get(Account, self.account_id)
            second.get(Account, self.account_id)

            approval.approve(second, self.account_id, reviewer_id=1)
            with self.assertRaises(AlreadyDecided):
                approval.approve(first, self.account_id, reviewer_id=1)
