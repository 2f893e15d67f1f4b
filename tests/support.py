import os
import tempfile
import unittest

from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from careportal.auth.service import register_account
from careportal.core.database import get_session
from careportal.core.init_db import seed_admin
from careportal.main import app
from careportal.models.Account import Account, RegisterRequest
from careportal.models.Role import Role
from careportal.models.VerificationToken import VerificationToken
from careportal.notifications.service import EMAIL_VERIFICATION_REQUESTED, get_notifier
from careportal.permissions.service import authorization
from careportal.verification.service import consume_token

PASSWORD = "Sup3r-secret!"
ADMIN_PASSWORD = "Adm1n-password!"

PROFILES = {
    Role.PATIENT: {},
    Role.DOCTOR: {"license_number": "MD-1234", "specialization": "cardiology"},
    Role.NURSE: {"license_number": "RN-77"},
    Role.PHARMACIST: {"license_number": "PH-9"},
    Role.LAB_TECHNICIAN: {"license_number": "LT-3"},
    Role.STAFF: {"department": "front desk"},
    Role.EXTERNAL_REQUESTER: {"organization_name": "Acme Insurance", "organization_type": "insurer"},
}


def memory_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


def file_engine(directory: str):
    engine = create_engine(f"sqlite:///{os.path.join(directory, 'careportal.db')}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, event, recipient, payload):
        self.sent.append((event, recipient, payload))

    def events(self, event):
        return [entry for entry in self.sent if entry[0] == event]

    def last_token(self, recipient=None, kind=EMAIL_VERIFICATION_REQUESTED):
        for event, to, payload in reversed(self.sent):
            if event == kind and (recipient is None or to == recipient):
                return payload["token"]
        raise AssertionError(f"no {kind} mail sent to {recipient}")


class BrokenNotifier:
    def send(self, event, recipient, payload):
        raise RuntimeError("smtp relay down")


class StoreTestCase(unittest.TestCase):
    """Fresh in-memory store and a recording notifier per test."""

    def setUp(self):
        self.engine = memory_engine()
        self.session = Session(self.engine)
        self.notifier = RecordingNotifier()
        authorization.load(self.session)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def register(self, login, role=Role.PATIENT, password=PASSWORD, **overrides):
        data = RegisterRequest(
            login=login,
            password=password,
            role=role,
            email=overrides.pop("email", f"{login}@example.org"),
            full_name=overrides.pop("full_name", login.title()),
            profile=overrides.pop("profile", PROFILES.get(role, {})),
        )
        return register_account(self.session, data, self.notifier)

    def verify(self, account):
        return consume_token(self.session, self.notifier.last_token(account.email))

    def live_tokens(self, account_id):
        statement = select(VerificationToken).where(
            VerificationToken.account_id == account_id,
            VerificationToken.consumed_at == None,  # noqa: E711
            VerificationToken.superseded_at == None,  # noqa: E711
        )
        return self.session.exec(statement).all()

    def reload(self, account):
        self.session.expire_all()
        return self.session.get(Account, account.id)

    def make_admin(self, login="root"):
        return seed_admin(self.session, login, f"{login}@careportal.local", ADMIN_PASSWORD)


class ApiTestCase(StoreTestCase):
    """StoreTestCase plus a TestClient bound to the same store."""

    def setUp(self):
        super().setUp()

        def override_get_session():
            with Session(self.engine) as session:
                yield session

        app.dependency_overrides[get_session] = override_get_session
        app.dependency_overrides[get_notifier] = lambda: self.notifier
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    def api_register(self, login, role="patient", password=PASSWORD, profile=None, **extra):
        payload = {
            "login": login,
            "password": password,
            "role": role,
            "email": extra.pop("email", f"{login}@example.org"),
            "profile": PROFILES[Role(role)] if profile is None else profile,
            **extra,
        }
        return self.client.post("/register", json=payload)

    def api_login(self, login, password=PASSWORD):
        return self.client.post("/login", json={"login": login, "password": password})

    def bearer(self, login, password=PASSWORD):
        response = self.api_login(login, password)
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    def admin_headers(self):
        self.make_admin("root")
        return self.bearer("root", ADMIN_PASSWORD)


class FileStoreTestCase(unittest.TestCase):
    """Separate connections per session, for interleaving two callers."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = file_engine(self.tmpdir.name)
        self.notifier = RecordingNotifier()

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()
