from helpers import TODAY, ChecklistTestCase


class TestChecklistApi(ChecklistTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.x = self.add_area('X', 'X')
        self.t1 = self.add_task('T1', self.x, name='Wipe counters')

    def test_requires_login(self) -> None:
        resp = self.client.get('/api/checklist', query_string={'date': TODAY})
        self.assertEqual(resp.status_code, 401)
        self.assertFalse(resp.get_json()['success'])

    def test_bad_credentials(self) -> None:
        resp = self.client.post('/api/auth/login', json={'username': 'nina', 'password': 'nope'})
        self.assertEqual(resp.status_code, 401)

    def test_me(self) -> None:
        self.login('nina')
        body = self.client.get('/api/auth/me').get_json()
        self.assertEqual(body['data']['user'], {'id': self.staff_id, 'username': 'nina',
                                                'name': 'Nina Nurse', 'role': 'staff'})

    def test_save_then_read_end_to_end(self) -> None:
        self.login('nina')
        resp = self.client.post('/api/checklist/save', json={
            'date': TODAY, 'entries': [{'taskId': self.t1, 'status': True, 'staffName': 'Alice'}]})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {'success': True, 'message': 'Checklist saved successfully',
                                           'saved': 1, 'failed': []})

        body = self.client.get('/api/checklist', query_string={'date': TODAY}).get_json()
        rows = body['data']['checklist']
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['task']['code'], 'T1')
        self.assertEqual(rows[0]['task']['area']['name'], 'X')
        self.assertTrue(rows[0]['entry']['status'])
        self.assertEqual(rows[0]['entry']['staffName'], 'Alice')
        self.assertIsNotNone(rows[0]['entry']['completedAt'])

        stats = self.client.get('/api/checklist/statistics', query_string={'date': TODAY}).get_json()
        self.assertEqual(stats['data']['statistics'],
                         {'total': 1, 'completed': 1, 'pending': 0, 'completionRate': 100})

    def test_update_single_entry(self) -> None:
        self.login('nina')
        resp = self.client.put(f'/api/checklist/entry/{self.t1}',
                               json={'date': TODAY, 'status': True, 'staffName': 'Nina'})
        self.assertEqual(resp.status_code, 200)
        entry = resp.get_json()['data']['entry']['entry']
        self.assertEqual(entry['completedBy'], self.staff_id)
        self.assertEqual(entry['completedAt'], '2024-01-05T04:30:00+00:00')

    def test_update_unknown_task(self) -> None:
        self.login('nina')
        resp = self.client.put('/api/checklist/entry/999', json={'date': TODAY, 'status': True})
        self.assertEqual(resp.status_code, 404)

    def test_invalid_date_is_400(self) -> None:
        self.login('nina')
        self.assertEqual(self.client.get('/api/checklist', query_string={'date': 'soon'}).status_code, 400)
        self.assertEqual(self.client.get('/api/checklist').status_code, 400)
        resp = self.client.post('/api/checklist/save', json={'date': '2024-02-30', 'entries': []})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()['message'], 'Invalid date format')

    def test_payload_validation(self) -> None:
        self.login('nina')
        bad_saves = [
            {'date': TODAY, 'entries': 'all'},
            {'date': TODAY, 'entries': [{'taskId': 'abc', 'status': True}]},
            {'date': TODAY, 'entries': [{'taskId': self.t1, 'status': 'yes'}]},
            {'date': TODAY, 'entries': [{'taskId': self.t1, 'status': True, 'staffName': 'x' * 101}]},
        ]
        for payload in bad_saves:
            self.assertEqual(self.client.post('/api/checklist/save', json=payload).status_code, 400, payload)
        resp = self.client.put(f'/api/checklist/entry/{self.t1}', json={'date': TODAY, 'status': 1})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.put(f'/api/checklist/entry/{self.t1}', json={'date': TODAY, 'notes': 'n' * 501})
        self.assertEqual(resp.status_code, 400)

    def test_partial_bulk_failure_reported(self) -> None:
        self.login('nina')
        resp = self.client.post('/api/checklist/save', json={'date': TODAY, 'entries': [
            {'taskId': self.t1, 'status': True, 'staffName': 'Alice'},
            {'taskId': 31337, 'status': True, 'staffName': 'Nobody'}]})
        body = resp.get_json()
        self.assertFalse(body['success'])
        self.assertEqual(body['saved'], 1)
        self.assertEqual(body['failed'][0]['taskId'], 31337)


class TestExportApi(ChecklistTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.add_task('T1', self.add_area('X', 'X'))

    def test_staff_forbidden(self) -> None:
        self.login('nina')
        for fmt in ('csv', 'pdf'):
            resp = self.client.get(f'/api/checklist/export/{fmt}', query_string={'date': TODAY})
            self.assertEqual(resp.status_code, 403)
            self.assertEqual(resp.get_json()['message'], 'Access denied. Admin privileges required.')

    def test_admin_downloads_csv(self) -> None:
        self.login('admin')
        resp = self.client.get('/api/checklist/export/csv', query_string={'date': TODAY})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.mimetype, 'text/csv')
        self.assertEqual(resp.headers['Content-Disposition'], 'attachment; filename="checklist_2024-01-05.csv"')
        self.assertTrue(resp.data.startswith(b'Task ID,Area,Task Name'))

    def test_admin_downloads_pdf(self) -> None:
        self.login('admin')
        resp = self.client.get('/api/checklist/export/pdf', query_string={'date': TODAY})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.mimetype, 'application/pdf')

    def test_empty_export_is_404(self) -> None:
        self.login('admin')
        resp = self.client.get('/api/checklist/export/csv', query_string={'date': TODAY, 'areaId': 404})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['message'], 'No data available for export')


class TestCatalogApi(ChecklistTestCase):
    def test_admin_builds_catalog_and_deactivates(self) -> None:
        self.login('admin')
        resp = self.client.post('/api/areas', json={'name': 'Pharmacy', 'code': 'pha'})
        self.assertEqual(resp.status_code, 201)
        area = resp.get_json()['data']['area']
        self.assertEqual(area['code'], 'PHA')

        resp = self.client.post('/api/tasks', json={'code': 'PHA-01', 'name': 'Count stock', 'areaId': area['id']})
        self.assertEqual(resp.status_code, 201)
        task_id = resp.get_json()['data']['task']['id']
        dup = self.client.post('/api/tasks', json={'code': 'PHA-01', 'name': 'Again', 'areaId': area['id']})
        self.assertEqual(dup.status_code, 409)

        listed = self.client.get('/api/tasks', query_string={'areaId': area['id']}).get_json()
        self.assertEqual([t['code'] for t in listed['data']['tasks']], ['PHA-01'])

        self.assertEqual(self.client.post(f'/api/tasks/{task_id}/deactivate').status_code, 200)
        rows = self.client.get('/api/checklist', query_string={'date': TODAY}).get_json()['data']['checklist']
        self.assertEqual(rows, [])

    def test_staff_cannot_change_catalog_or_users(self) -> None:
        self.login('nina')
        self.assertEqual(self.client.post('/api/areas', json={'name': 'A', 'code': 'A'}).status_code, 403)
        self.assertEqual(self.client.post('/api/users', json={
            'username': 'x', 'name': 'X', 'password': 'y'}).status_code, 403)

    def test_admin_creates_staff_user(self) -> None:
        self.login('admin')
        resp = self.client.post('/api/users', json={'username': 'omar', 'name': 'Omar', 'password': 'pw'})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()['data']['user']['role'], 'staff')
        self.client.post('/api/auth/logout')
        self.login('omar', 'pw')
