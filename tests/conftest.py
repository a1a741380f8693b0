"""
Test configuration and fixtures
"""
import os
import tempfile
from datetime import datetime, timedelta
from itertools import count
from pathlib import Path
from types import SimpleNamespace

_TMP_DIR = Path(tempfile.mkdtemp(prefix="artadventure-tests-"))

# Set testing environment before the app modules read it
os.environ['DATABASE_URL'] = f"sqlite:///{(_TMP_DIR / 'test.db').as_posix()}"
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['UPLOAD_DIR'] = str(_TMP_DIR / 'uploads')
os.environ['VAPID_PRIVATE_KEY'] = 'test-vapid-private-key'
os.environ['ADMIN_USERNAME'] = 'admin'
os.environ['ADMIN_PASSWORD'] = 'admin123'

import pytest
from fastapi.testclient import TestClient
from pywebpush import WebPushException

from auth import create_access_token, get_password_hash
from database import Base, engine, SessionLocal, get_db
from file_utils import ensure_directories
from main import app, get_push_dispatcher
from models import Admin, Campaign, Submission, User
from push_service import PushDispatcher

_sequence = count(1)


@pytest.fixture
def db_session():
    """Fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """Test client sharing the test session with the app"""
    def override_get_db():
        yield db_session

    ensure_directories()
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin(db_session):
    admin = Admin(
        username='admin',
        email='admin@example.com',
        hashed_password=get_password_hash('admin123'),
        is_active=True,
    )
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture
def auth_headers():
    token = create_access_token({'sub': 'admin'})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def make_user(db_session):
    def _make_user(**overrides):
        n = next(_sequence)
        user = User(
            mobile_number=overrides.pop('mobile_number', f"98{n:08d}"),
            username=overrides.pop('username', f"artist{n}"),
            points=overrides.pop('points', 0),
            wallet_balance=overrides.pop('wallet_balance', 0.0),
            referral_code=overrides.pop('referral_code', f"REF{n:05d}"),
            status=overrides.pop('status', 'verified'),
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_campaign(db_session):
    def _make_campaign(**overrides):
        fields = dict(
            name=f"Tajmahal Drawing Competition {next(_sequence)}",
            reference_image='/uploads/campaigns/ref.png',
            campaign_type='premium',
            max_participants=20,
            current_participants=0,
            entry_fee_amount=100,
            entry_fee_type='rupees',
            first_prize=1000,
            second_prize=500,
            platform_share=500,
            status='active',
            start_date=datetime.utcnow() - timedelta(days=1),
            submission_deadline=datetime.utcnow() + timedelta(days=7),
            end_date=datetime.utcnow() + timedelta(days=10),
        )
        fields.update(overrides)
        campaign = Campaign(**fields)
        db_session.add(campaign)
        db_session.commit()
        db_session.refresh(campaign)
        return campaign
    return _make_campaign


@pytest.fixture
def make_submission(db_session, make_user):
    def _make_submission(campaign, user=None, **overrides):
        user = user or make_user()
        submission = Submission(
            campaign_id=campaign.id,
            user_id=user.id,
            submission_image=overrides.pop('submission_image', '/uploads/submissions/art.png'),
            title=overrides.pop('title', 'My artwork'),
            **overrides,
        )
        campaign.current_participants = (campaign.current_participants or 0) + 1
        db_session.add(submission)
        db_session.commit()
        db_session.refresh(submission)
        return submission
    return _make_submission


class FakeWebPush:
    """Stands in for pywebpush.webpush; endpoints listed in `gone` answer 410."""

    def __init__(self, gone=()):
        self.gone = set(gone)
        self.calls = []

    def __call__(self, subscription_info, data, vapid_private_key, vapid_claims):
        self.calls.append({'subscription_info': subscription_info, 'data': data})
        if subscription_info['endpoint'] in self.gone:
            response = SimpleNamespace(status_code=410, text='Gone')
            raise WebPushException('Push subscription has unsubscribed or expired.', response=response)


@pytest.fixture
def fake_webpush():
    sender = FakeWebPush()
    app.dependency_overrides[get_push_dispatcher] = lambda: PushDispatcher(
        vapid_private_key='test-vapid-private-key', send=sender
    )
    yield sender
    app.dependency_overrides.pop(get_push_dispatcher, None)
