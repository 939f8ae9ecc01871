"""
EduTrack Online Tests - Test Configuration and Fixtures
"""
import os
import uuid
from datetime import timedelta
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

# Set testing environment
os.environ['DATABASE_NAME'] = 'edutrack_test'
os.environ['LOG_LEVEL'] = 'WARNING'

from main import create_app, create_indexes
from app.models import OnlineTest, Question
from app.utils import to_iso, utc_now

STAFF_EMAIL = 'teacher@example.com'
STUDENT_PHONE = '9876543210'


def sample_questions():
    """One mcq (4 marks, -1) and one numeric-range fillblank (6 marks, 10..20)."""
    return [
        {
            'id': 'q1',
            'text': 'Pick the third option',
            'type': 'mcq',
            'marks': 4,
            'negative_marks': 1,
            'options': ['a', 'b', 'c', 'd'],
            'correct_indices': [2],
            'topic': 'Algebra',
        },
        {
            'id': 'q2',
            'text': 'Any number from 10 to 20',
            'type': 'fillblank',
            'marks': 6,
            'is_number_range': True,
            'number_range_min': 10,
            'number_range_max': 20,
            'topic': 'Arithmetic',
        },
    ]


@pytest.fixture
async def db():
    """Fresh in-memory database with the production indexes"""
    client = AsyncMongoMockClient()
    database = client[f'edutrack_test_{uuid.uuid4().hex[:8]}']
    await create_indexes(database)
    yield database


@pytest.fixture
def seed_student(db):
    """Insert a roster entry; returns the stored document"""
    async def _seed(phone=STUDENT_PHONE, name='Asha', courses=('Batch A',), created_at=None):
        doc = {
            'phone_number': phone,
            'name': name,
            'courses': list(courses),
            'created_at': to_iso(created_at or utc_now() - timedelta(days=30)),
        }
        await db.batch_students.insert_one(dict(doc))
        return doc
    return _seed


@pytest.fixture
def seed_test(db):
    """Insert a deployed test whose window is relative to now"""
    async def _seed(
        questions=None,
        batches=('Batch A',),
        starts_in=timedelta(minutes=-5),
        lasts=timedelta(hours=1),
        duration_minutes=60,
        status='deployed',
        config=None,
        created_by=STAFF_EMAIL,
    ):
        questions = [Question.model_validate(q) for q in (questions or sample_questions())]
        start = utc_now() + starts_in
        test = OnlineTest.model_validate({
            'test_id': str(uuid.uuid4()),
            'title': 'Unit Test 1',
            'questions': questions,
            'deployment': {
                'batches': list(batches),
                'start_time': to_iso(start),
                'end_time': to_iso(start + lasts),
                'duration_minutes': duration_minutes,
            },
            'config': config or {},
            'status': status,
            'created_by': created_by,
            'total_marks': sum(q.marks for q in questions),
            'created_at': to_iso(utc_now()),
        })
        await db.online_tests.insert_one(test.model_dump())
        return test
    return _seed


@pytest.fixture
def seed_session(db):
    """Create a user with a live session; returns auth headers"""
    async def _seed(role='student', email=None, phone=None):
        user_id = str(uuid.uuid4())
        token = uuid.uuid4().hex
        await db.users.insert_one({
            'user_id': user_id,
            'email': email,
            'name': role.title(),
            'role': role,
            'phone': phone,
        })
        await db.user_sessions.insert_one({
            'session_token': token,
            'user_id': user_id,
            'expires_at': to_iso(utc_now() + timedelta(days=1)),
        })
        return {'Authorization': f'Bearer {token}'}
    return _seed


@pytest.fixture
async def staff_headers(seed_session) -> dict:
    return await seed_session(role='faculty', email=STAFF_EMAIL)


@pytest.fixture
async def student_headers(seed_session) -> dict:
    return await seed_session(role='student', phone=STUDENT_PHONE)


@pytest.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app over the in-memory database"""
    app = create_app(db)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac
