"""Manual smoke run against a live server: python smoke_api.py (server on port 5000)."""
import requests
import time
from datetime import datetime, timezone

BASE_URL = 'http://127.0.0.1:5000'

def run_flow():
    print("Starting API smoke run...")
    password = "securepassword"
    suffix = int(time.time())

    # 1. Register Caregiver
    print("\n1. Registering caregiver...")
    caregiver_username = f"caregiver_{suffix}"
    reg_response = requests.post(f"{BASE_URL}/auth/register", json={
        "username": caregiver_username,
        "password": password,
        "user_type": "caregiver"
    })
    print(f"Register Status: {reg_response.status_code}")
    if reg_response.status_code != 201:
        print("Caregiver registration failed!")
        return

    # 2. Register Patient
    print("\n2. Registering patient...")
    patient_username = f"patient_{suffix}"
    reg_response = requests.post(f"{BASE_URL}/auth/register", json={
        "username": patient_username,
        "password": password,
        "user_type": "patient",
        "full_name": "Smoke Test Patient"
    })
    print(f"Register Status: {reg_response.status_code}")
    if reg_response.status_code != 201:
        print("Patient registration failed!")
        return
    patient_user_id = reg_response.json().get('user_id')

    # 3. Log both in
    print("\n3. Logging in...")
    tokens = {}
    for username in (patient_username, caregiver_username):
        login_response = requests.post(f"{BASE_URL}/auth/login", json={
            "username": username,
            "password": password
        })
        print(f"Login {username}: {login_response.status_code}")
        if login_response.status_code != 200:
            print("Login failed!")
            return
        tokens[username] = login_response.json().get('access_token')
    patient_headers = {"Authorization": f"Bearer {tokens[patient_username]}"}
    caregiver_headers = {"Authorization": f"Bearer {tokens[caregiver_username]}"}

    # 4. Record a location fix
    print("\n4. Sending location fix...")
    loc_response = requests.post(f"{BASE_URL}/api/wearable/location", json={
        "latitude": 6.9271, "longitude": 79.8612, "accuracy": 25.0,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }, headers=patient_headers)
    print(f"Location Status: {loc_response.status_code}")

    # 5. Create and complete a reminder
    print("\n5. Creating a reminder...")
    rem_response = requests.post(f"{BASE_URL}/api/patients/{patient_user_id}/reminders", json={
        "title": "Morning pills", "hour": 9, "minute": 0, "period": "AM"
    }, headers=caregiver_headers)
    print(f"Create Reminder Status: {rem_response.status_code}")
    print(f"Create Reminder Response: {rem_response.json()}")
    if rem_response.status_code == 201:
        reminder_id = rem_response.json()['reminder']['id']
        done_response = requests.post(f"{BASE_URL}/api/reminders/{reminder_id}/complete", headers=patient_headers)
        print(f"Complete Reminder Status: {done_response.status_code}")

    # 6. Trigger SOS
    print("\n6. Triggering SOS...")
    sos_response = requests.post(f"{BASE_URL}/api/sos", json={}, headers=patient_headers)
    print(f"SOS Status: {sos_response.status_code}")
    print(f"SOS Response: {sos_response.json()}")

    # 7. Patient's own alerts and activity history
    print("\n7. Fetching patient alerts and activities...")
    alerts_response = requests.get(f"{BASE_URL}/api/alerts", headers=patient_headers)
    print(f"Get Alerts Response: {alerts_response.json()}")
    activity_response = requests.get(f"{BASE_URL}/api/patients/{patient_user_id}/activities", headers=caregiver_headers)
    print(f"Get Activities Response: {activity_response.json()}")

if __name__ == "__main__":
    try:
        run_flow()
    except requests.RequestException as e:
        print(f"Smoke run failed with error: {e}")
