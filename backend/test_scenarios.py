import unittest
from datetime import datetime, timedelta, timezone

from care_testing import AppTestCase
from models import db, Patient, CaregiverRelation, AlertLog


class CareFlowTestCase(AppTestCase):
    push_context = False

    def register_user(self, username, password, user_type, **extra):
        data = {
            'username': username,
            'password': password,
            'user_type': user_type
        }
        data.update(extra)
        return self.client.post('/auth/register', json=data)

    def login_user(self, username, password):
        return self.client.post('/auth/login', json={
            'username': username,
            'password': password
        })

    def auth_headers(self, username, password='pass'):
        res = self.login_user(username, password)
        self.assertEqual(res.status_code, 200)
        return {'Authorization': f"Bearer {res.json['access_token']}"}

    def setUp(self):
        super().setUp()
        res = self.register_user('caregiver1', 'pass', 'caregiver')
        self.assertEqual(res.status_code, 201)
        self.caregiver_id = res.json['user_id']

        res = self.register_user('patient1', 'pass', 'patient', full_name='Jane Doe')
        self.assertEqual(res.status_code, 201)
        self.patient_id = res.json['user_id']

        # Onboarding links the two through the relation table only
        with self.app.app_context():
            db.session.add(CaregiverRelation(
                patient_id=self.patient_id, caregiver_id=self.caregiver_id, status='active'
            ))
            db.session.commit()

        self.caregiver_headers = self.auth_headers('caregiver1')
        self.patient_headers = self.auth_headers('patient1')

    def test_registration_rules(self):
        res = self.register_user('caregiver1', 'pass', 'caregiver')
        self.assertEqual(res.status_code, 400)
        res = self.register_user('someone', 'pass', 'nurse')
        self.assertEqual(res.status_code, 400)
        res = self.login_user('patient1', 'wrong')
        self.assertEqual(res.status_code, 401)

        with self.app.app_context():
            patient = db.session.get(Patient, self.patient_id)
            self.assertEqual(patient.full_name, 'Jane Doe')
            self.assertEqual(patient.assigned_caregivers, [])

    def test_sos_flow(self):
        # 1. Device reports a fix a minute before the emergency
        fix = {
            'latitude': 6.9271, 'longitude': 79.8612, 'accuracy': 20.0,
            'timestamp': (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        }
        res = self.client.post('/api/wearable/location', json=fix, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)

        # 2. Patient presses SOS without sending coordinates
        res = self.client.post('/api/sos', json={}, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        self.assertTrue(res.json['alertLogged'])
        self.assertIn('with your location', res.json['message'])
        alert = res.json['alert']
        self.assertEqual(alert['id'], res.json['alertId'])
        self.assertEqual(alert['caregiverIds'], [self.caregiver_id])
        self.assertEqual(alert['patientName'], 'Jane Doe')
        self.assertEqual(alert['severity'], 'critical')
        self.assertEqual(alert['location']['latitude'], 6.9271)

        # 3. Caregiver dashboard sees it through the global log
        res = self.client.get('/api/alerts', headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(res.json), 1)
        self.assertEqual(res.json[0]['patientName'], 'Jane Doe')

        # 4. Patient-scoped copy
        res = self.client.get(f'/api/patients/{self.patient_id}/sos-alerts', headers=self.caregiver_headers)
        self.assertEqual([a['id'] for a in res.json], [alert['id']])
        res = self.client.get('/api/alerts', headers=self.patient_headers)
        self.assertEqual(len(res.json), 1)

        # 5. The SOS shows up in the activity history
        res = self.client.get(f'/api/patients/{self.patient_id}/activities', headers=self.caregiver_headers)
        self.assertEqual([a['type'] for a in res.json], ['sos_triggered'])

        # 6. Caregiver's patient list follows the relation table
        res = self.client.get('/api/patients', headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual([p['id'] for p in res.json], [self.patient_id])
        self.assertEqual(res.json[0]['username'], 'patient1')

    def test_sos_with_inline_coordinates_and_no_stored_fix(self):
        res = self.client.post('/api/sos', json={'latitude': 1.0, 'longitude': 2.0, 'accuracy': 3.0},
                               headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.json['alert']['location'], {'latitude': 1.0, 'longitude': 2.0, 'accuracy': 3.0})

        res = self.client.post('/api/sos', headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        self.assertIsNone(res.json['alert']['location'])
        self.assertEqual(res.json['message'], 'Emergency alert sent to your caregivers')

        with self.app.app_context():
            self.assertEqual(AlertLog.query.count(), 2)

    def test_sos_respects_location_setting(self):
        res = self.client.put(f'/api/patients/{self.patient_id}/sos-settings',
                              json={'sendLocation': False}, headers=self.patient_headers)
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json['sosSettings']['sendLocation'])
        self.assertTrue(res.json['sosSettings']['enableSOS'])

        res = self.client.get(f'/api/patients/{self.patient_id}/sos-settings', headers=self.patient_headers)
        self.assertFalse(res.json['sendLocation'])

        res = self.client.post('/api/sos', json={'latitude': 1.0, 'longitude': 2.0}, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        self.assertIsNone(res.json['alert']['location'])

    def test_sos_settings_validation(self):
        url = f'/api/patients/{self.patient_id}/sos-settings'
        for body in [{'sendLocation': 'no'}, {'shareDiary': True}, ['sendLocation']]:
            res = self.client.put(url, json=body, headers=self.patient_headers)
            self.assertEqual(res.status_code, 400)

        # Updates merge, earlier choices stay
        self.client.put(url, json={'soundAlert': False}, headers=self.caregiver_headers)
        res = self.client.put(url, json={'sendMessage': True}, headers=self.patient_headers)
        self.assertFalse(res.json['sosSettings']['soundAlert'])
        self.assertTrue(res.json['sosSettings']['sendMessage'])

        res = self.register_user('patient2', 'pass', 'patient')
        res = self.client.put(f"/api/patients/{res.json['user_id']}/sos-settings",
                              json={'sendLocation': False}, headers=self.patient_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.put('/api/patients/nobody/sos-settings',
                              json={'sendLocation': False}, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 404)

    def test_emergency_contacts(self):
        url = f'/api/patients/{self.patient_id}/emergency-contacts'
        res = self.client.get(url, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json, [])

        res = self.client.put(url, json=[
            {'name': ' Mary Doe ', 'phone': '+1 555 0100', 'relation': 'Daughter'},
            {'id': 'c2', 'name': 'Dr. Lee', 'phone': '+1 555 0199'},
        ], headers=self.patient_headers)
        self.assertEqual(res.status_code, 200)
        contacts = res.json['emergencyContacts']
        self.assertEqual(contacts[0]['name'], 'Mary Doe')
        self.assertTrue(contacts[0]['id'])
        self.assertEqual(contacts[1], {'id': 'c2', 'name': 'Dr. Lee', 'phone': '+1 555 0199', 'relation': ''})

        # A bad entry rejects the whole list
        for body in [{'name': 'Mary'}, [{'name': 'Mary'}], [{'name': '', 'phone': '1'}], ['Mary']]:
            res = self.client.put(url, json=body, headers=self.patient_headers)
            self.assertEqual(res.status_code, 400)

        res = self.client.get(url, headers=self.caregiver_headers)
        self.assertEqual([c['name'] for c in res.json], ['Mary Doe', 'Dr. Lee'])

    def test_caregiver_reads_location_history(self):
        now = datetime.now(timezone.utc)
        for minutes, latitude in [(30, 3.0), (2, 1.0), (10, 2.0)]:
            res = self.client.post('/api/wearable/location', json={
                'latitude': latitude, 'longitude': 80.0,
                'timestamp': (now - timedelta(minutes=minutes)).isoformat()
            }, headers=self.patient_headers)
            self.assertEqual(res.status_code, 201)

        url = f'/api/patients/{self.patient_id}/locations'
        res = self.client.get(url, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual([loc['latitude'] for loc in res.json], [1.0, 2.0, 3.0])

        res = self.client.get(f'{url}?limit=1', headers=self.caregiver_headers)
        self.assertEqual([loc['latitude'] for loc in res.json], [1.0])

    def test_fix_age_uses_utc_whatever_the_device_offset(self):
        india = timezone(timedelta(hours=5, minutes=30))
        new_york = timezone(timedelta(hours=-5))

        # Two hours old in local time east of UTC: too old to send
        stale = (datetime.now(timezone.utc) - timedelta(hours=2)).astimezone(india)
        res = self.client.post('/api/wearable/location', json={
            'latitude': 1.0, 'longitude': 2.0, 'timestamp': stale.isoformat()
        }, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        res = self.client.post('/api/sos', json={}, headers=self.patient_headers)
        self.assertIsNone(res.json['alert']['location'])

        # Taken just now in local time west of UTC: fresh
        fresh = datetime.now(timezone.utc).astimezone(new_york)
        res = self.client.post('/api/wearable/location', json={
            'latitude': 3.0, 'longitude': 4.0, 'timestamp': fresh.isoformat()
        }, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        res = self.client.post('/api/sos', json={}, headers=self.patient_headers)
        self.assertEqual(res.json['alert']['location'], {'latitude': 3.0, 'longitude': 4.0, 'accuracy': None})

    def test_location_rejects_bad_timestamps(self):
        future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        for timestamp in ['last tuesday', future]:
            res = self.client.post('/api/wearable/location', json={
                'latitude': 1.0, 'longitude': 2.0, 'timestamp': timestamp
            }, headers=self.patient_headers)
            self.assertEqual(res.status_code, 400)

        res = self.client.get(f'/api/patients/{self.patient_id}/locations', headers=self.patient_headers)
        self.assertEqual(res.json, [])

        res = self.client.post('/api/wearable/location', json={
            'latitude': 1.0, 'longitude': 2.0, 'timestamp': '2020-01-01T00:00:00Z'
        }, headers=self.patient_headers)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.json['location']['timestamp'], '2020-01-01T00:00:00')

    def test_only_patients_trigger_sos(self):
        res = self.client.post('/api/sos', json={}, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.post('/api/sos', json={})
        self.assertEqual(res.status_code, 401)

    def test_reminder_flow(self):
        base = f'/api/patients/{self.patient_id}/reminders'

        # 1. Caregiver schedules two reminders with the 12-hour picker
        res = self.client.post(base, json={
            'title': 'Evening pills', 'description': 'Two tablets', 'type': 'medication',
            'hour': 8, 'minute': 30, 'period': 'PM'
        }, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 201)
        evening = res.json['reminder']
        self.assertEqual(evening['time'], '20:30')
        self.assertEqual(evening['displayTime'], '08:30 PM')
        self.assertEqual(evening['caregiverId'], self.caregiver_id)

        res = self.client.post(base, json={'title': 'Doctor', 'type': 'appointment', 'time': '14:30'},
                               headers=self.caregiver_headers)
        doctor = res.json['reminder']

        # 2. Invalid input is rejected
        res = self.client.post(base, json={'title': ' ', 'time': '14:30'}, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.post(base, json={'title': 'Nap', 'time': '2pm'}, headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 400)

        # 3. Patient sees both, earliest first
        res = self.client.get(base, headers=self.patient_headers)
        self.assertEqual([r['title'] for r in res.json], ['Doctor', 'Evening pills'])

        # 4. Completing twice logs a single activity
        res = self.client.post(f"/api/reminders/{doctor['id']}/complete", headers=self.patient_headers)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json['reminder']['isCompleted'])
        self.assertIsNotNone(res.json['activityId'])
        res = self.client.post(f"/api/reminders/{doctor['id']}/complete", headers=self.patient_headers)
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.json['activityId'])

        res = self.client.get(f'/api/patients/{self.patient_id}/activities', headers=self.caregiver_headers)
        completions = [a for a in res.json if a['type'] == 'reminder_completed']
        self.assertEqual(len(completions), 1)
        self.assertEqual(completions[0]['metadata']['reminderId'], doctor['id'])

        # 5. Soft delete hides it from the list but keeps it readable
        res = self.client.delete(f"/api/reminders/{evening['id']}", headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        res = self.client.get(base, headers=self.patient_headers)
        self.assertEqual([r['id'] for r in res.json], [doctor['id']])
        res = self.client.get(f"/api/reminders/{evening['id']}", headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json['isActive'])

        # 6. A deleted reminder can't be completed
        res = self.client.post(f"/api/reminders/{evening['id']}/complete", headers=self.patient_headers)
        self.assertEqual(res.status_code, 409)

        res = self.client.get('/api/reminders/does-not-exist', headers=self.caregiver_headers)
        self.assertEqual(res.status_code, 404)

    def test_patients_only_see_their_own_records(self):
        res = self.register_user('patient2', 'pass', 'patient')
        other_id = res.json['user_id']

        res = self.client.get(f'/api/patients/{other_id}/reminders', headers=self.patient_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.get(f'/api/patients/{other_id}/sos-alerts', headers=self.patient_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.get('/api/patients', headers=self.patient_headers)
        self.assertEqual(res.status_code, 403)

    def test_location_requires_coordinates(self):
        res = self.client.post('/api/wearable/location', json={'latitude': 1.0}, headers=self.patient_headers)
        self.assertEqual(res.status_code, 400)

if __name__ == '__main__':
    unittest.main()
