"""
HTTP tests: authentication, error mapping and the full author -> deploy ->
take -> review flow.
"""
from datetime import timedelta

from app.config.settings import settings
from app.utils import to_iso, utc_now

from conftest import STUDENT_PHONE, sample_questions

ADMIN = '/api/admin/online-tests'
STUDENT = '/api/student/online-tests'


async def create_and_deploy(client, staff_headers, **deploy_fields):
    response = await client.post(
        ADMIN,
        json={'title': 'Mock Exam', 'questions': sample_questions()},
        headers=staff_headers,
    )
    assert response.status_code == 201
    test_id = response.json()['test_id']

    body = {
        'batches': ['Batch A'],
        'start_time': to_iso(utc_now() - timedelta(minutes=5)),
        'duration_minutes': 60,
    }
    body.update(deploy_fields)
    response = await client.post(f'{ADMIN}/{test_id}/deploy', json=body, headers=staff_headers)
    assert response.status_code == 200, response.text
    return test_id


class TestAuth:

    async def test_health_is_public(self, client):
        response = await client.get('/api/health')
        assert response.status_code == 200
        assert response.json()['database'] == 'connected'

    async def test_missing_token(self, client):
        response = await client.get(ADMIN)
        assert response.status_code == 401

    async def test_unknown_token(self, client):
        response = await client.get(ADMIN, headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 401

    async def test_expired_session(self, client, db, staff_headers):
        await db.user_sessions.update_many({}, {'$set': {'expires_at': to_iso(utc_now() - timedelta(minutes=1))}})
        response = await client.get(ADMIN, headers=staff_headers)
        assert response.status_code == 401
        assert response.json()['detail'] == 'Session expired'

    async def test_session_cookie_accepted(self, client, staff_headers):
        token = staff_headers['Authorization'].split(' ')[1]
        client.cookies.set(settings.SESSION_COOKIE_NAME, token)
        response = await client.get(ADMIN)
        assert response.status_code == 200

    async def test_student_cannot_use_staff_routes(self, client, student_headers):
        response = await client.get(ADMIN, headers=student_headers)
        assert response.status_code == 403

    async def test_staff_cannot_take_tests(self, client, staff_headers):
        response = await client.get(STUDENT, headers=staff_headers)
        assert response.status_code == 403


class TestStaffRoutes:

    async def test_invalid_payload_is_422(self, client, staff_headers):
        response = await client.post(ADMIN, json={'title': 'Empty', 'questions': []}, headers=staff_headers)
        assert response.status_code == 422

    async def test_unknown_test_is_404(self, client, staff_headers):
        response = await client.get(f'{ADMIN}/missing', headers=staff_headers)
        assert response.status_code == 404
        assert response.json()['detail'] == 'Test not found'

    async def test_deploy_errors_are_400(self, client, staff_headers):
        response = await client.post(
            ADMIN, json={'title': 'Mock', 'questions': sample_questions()}, headers=staff_headers
        )
        test_id = response.json()['test_id']
        response = await client.post(
            f'{ADMIN}/{test_id}/deploy',
            json={'batches': [], 'start_time': '2026-11-01T10:00', 'duration_minutes': 30},
            headers=staff_headers,
        )
        assert response.status_code == 400

    async def test_list_by_status(self, client, staff_headers):
        await create_and_deploy(client, staff_headers)
        await client.post(ADMIN, json={'title': 'Draft', 'questions': sample_questions()}, headers=staff_headers)

        response = await client.get(ADMIN, params={'status': 'draft,deployed'}, headers=staff_headers)
        assert len(response.json()) == 2
        response = await client.get(ADMIN, params={'status': 'draft'}, headers=staff_headers)
        assert [t['title'] for t in response.json()] == ['Draft']

    async def test_reset_attempts_takes_body(self, client, db, staff_headers):
        test_id = await create_and_deploy(client, staff_headers)
        await db.test_attempts.insert_one({'attempt_id': 'a', 'test_id': test_id, 'student_phone': STUDENT_PHONE})

        response = await client.request(
            'DELETE', f'{ADMIN}/{test_id}/attempts',
            json={'phones': ['98765-43210']},
            headers=staff_headers,
        )

        assert response.status_code == 200
        assert response.json()['deleted_count'] == 1

    async def test_batch_analytics_needs_batch(self, client, staff_headers):
        response = await client.get('/api/admin/analytics/batch', headers=staff_headers)
        assert response.status_code == 400

    async def test_auto_complete_endpoint(self, client, db, staff_headers):
        test_id = await create_and_deploy(client, staff_headers, duration_minutes=10)
        await db.test_attempts.insert_one({
            'attempt_id': 'old',
            'test_id': test_id,
            'student_phone': STUDENT_PHONE,
            'status': 'in_progress',
            'started_at': to_iso(utc_now() - timedelta(minutes=20)),
        })

        response = await client.post(f'{ADMIN}/{test_id}/auto-complete', headers=staff_headers)

        assert response.json()['completed_count'] == 1


class TestExamFlow:

    async def test_author_deploy_take_review(self, client, seed_student, staff_headers, student_headers):
        await seed_student()
        test_id = await create_and_deploy(client, staff_headers)

        listing = await client.get(STUDENT, headers=student_headers)
        assert [t['test_id'] for t in listing.json()['available']] == [test_id]

        started = await client.post(f'{STUDENT}/{test_id}/start', headers=student_headers)
        assert started.status_code == 201
        assert 'correct_indices' not in started.json()['questions'][0]

        resumed = await client.post(f'{STUDENT}/{test_id}/start', headers=student_headers)
        assert resumed.status_code == 200
        assert resumed.json()['resumed'] is True

        saved = await client.put(f'{STUDENT}/{test_id}/answers/q1', json={'answer': 2}, headers=student_headers)
        assert saved.json()['saved'] is True
        autosaved = await client.patch(
            f'{STUDENT}/{test_id}/answers',
            json={'answers': [{'question_id': 'q2', 'answer': '15'}], 'time_spent_ms': 45000},
            headers=student_headers,
        )
        assert autosaved.json()['saved_count'] == 1

        warning = await client.post(f'{STUDENT}/{test_id}/warning', headers=student_headers)
        assert warning.json()['warning_count'] == 1

        submitted = await client.post(f'{STUDENT}/{test_id}/submit', json={}, headers=student_headers)
        assert submitted.status_code == 200
        assert submitted.json()['score'] == 10
        assert submitted.json()['passed'] is True

        again = await client.post(f'{STUDENT}/{test_id}/submit', json={}, headers=student_headers)
        assert again.status_code == 409

        result = await client.get(f'{STUDENT}/{test_id}/result', headers=student_headers)
        assert result.status_code == 200
        assert result.json()['result']['rank'] == 1

        results = await client.get(f'{ADMIN}/{test_id}/results', headers=staff_headers)
        assert [s['phone'] for s in results.json()['completed']] == [STUDENT_PHONE]

        dashboard = await client.get('/api/student/analytics', headers=student_headers)
        assert dashboard.json()['average_score'] == 100

    async def test_regrade_and_adjust_over_http(self, client, seed_student, staff_headers, student_headers):
        await seed_student()
        test_id = await create_and_deploy(client, staff_headers)
        await client.put(f'{STUDENT}/{test_id}/answers/q1', json={'answer': 1}, headers=student_headers)
        await client.post(f'{STUDENT}/{test_id}/submit', json={}, headers=student_headers)

        questions = sample_questions()
        questions[0]['correct_indices'] = [1]
        edited = await client.put(
            f'{ADMIN}/{test_id}/questions',
            json={'questions': questions, 'grace_marks': 1, 'grace_reason': 'typo in q2'},
            headers=staff_headers,
        )
        assert edited.json()['regraded'] == 1

        attempt = await client.get(f'{ADMIN}/{test_id}/students/{STUDENT_PHONE}', headers=staff_headers)
        assert attempt.json()['attempt']['score'] == 5

        adjusted = await client.post(
            f'{ADMIN}/{test_id}/students/{STUDENT_PHONE}',
            json={'adjustments': [{'question_id': 'q2', 'adjustment_marks': 2}]},
            headers=staff_headers,
        )
        assert adjusted.json()['score'] == 7

    async def test_late_start_is_gone(self, client, db, seed_student, staff_headers, student_headers):
        await seed_student()
        test_id = await create_and_deploy(client, staff_headers)
        await db.online_tests.update_one(
            {'test_id': test_id},
            {'$set': {'deployment.end_time': to_iso(utc_now() - timedelta(minutes=1))}}
        )

        response = await client.post(f'{STUDENT}/{test_id}/start', headers=student_headers)

        assert response.status_code == 410

    async def test_outsider_is_forbidden(self, client, seed_student, staff_headers, student_headers):
        await seed_student(courses=['Batch Z'])
        test_id = await create_and_deploy(client, staff_headers)

        response = await client.post(f'{STUDENT}/{test_id}/start', headers=student_headers)

        assert response.status_code == 403

    async def test_other_staff_sees_nothing(self, client, seed_session, staff_headers):
        test_id = await create_and_deploy(client, staff_headers)
        other = await seed_session(role='admin', email='head@example.com')

        response = await client.get(f'{ADMIN}/{test_id}/results', headers=other)

        assert response.status_code == 404
