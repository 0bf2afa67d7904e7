from fastapi.testclient import TestClient

from clinic_scheduler.main import app


def test_root_reports_running() -> None:
    response = TestClient(app).get('/')

    assert response.status_code == 200
    assert response.json() == {'status': 'Clinic Scheduler API Running'}


def test_routers_are_mounted() -> None:
    paths = {route.path for route in app.routes}

    assert '/availability/doctors/{doctor_id}/slots' in paths
    assert '/appointments' in paths
    assert '/appointments/{appointment_id}/reschedule' in paths
    assert '/availability/doctors/{doctor_id}/ledger/reconcile' in paths
