"""
API endpoint tests for the Training Tracker

Uses FastAPI's TestClient against an in-memory SQLite database.
Tests cover authentication, role gating, record and certificate
workflows, uploads, reports, calendar exports and error responses.
"""

import csv
import io
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import TEST_PASSWORD, TODAY
from access_policy import Role


@pytest.fixture
def course_id(app_client, accounts):
    manager = app_client("manager@example.com")
    response = manager.post("/api/courses", json={
        "name": "Fire Safety",
        "type": "Group Training",
        "categoryName": "Health & Safety",
        "providerName": "In-house",
        "validityDays": "365",
    })
    assert response.status_code == 201, response.text
    return response.json()["course_id"]


def submit_record(client, course_id, email, name="Someone", completed="2025-01-01", files=None):
    return client.post(
        "/api/records",
        data={
            "name": name,
            "email": email,
            "course_id": str(course_id),
            "completion_date": completed,
        },
        files=files,
    )


def upload_dir(test_config) -> Path:
    return Path(test_config.uploads.directory)


def stored_files(test_config):
    directory = upload_dir(test_config)
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []


# ============================================
# AUTHENTICATION
# ============================================

class TestAuth:

    def test_register_and_login(self, app_client):
        client = app_client()
        response = client.post("/api/auth/register", json={
            "email": "New@Example.com", "password": "longenough", "username": "Newbie",
        })
        assert response.status_code == 201
        assert response.json()["person_id"] is not None

        response = client.post("/api/auth/login", json={"email": "new@example.com", "password": "longenough"})
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "user"
        assert body["email"] == "new@example.com"
        assert "training_session" in response.cookies

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["username"] == "Newbie"

    def test_register_duplicate(self, app_client, accounts):
        response = app_client().post("/api/auth/register", json={
            "email": "ALICE@example.com", "password": "longenough",
        })
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    def test_register_short_password(self, app_client):
        response = app_client().post("/api/auth/register", json={"email": "a@example.com", "password": "123"})
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "password"

    def test_register_invalid_email(self, app_client):
        response = app_client().post("/api/auth/register", json={"email": "not-an-email", "password": "longenough"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert response.json()["error"]["field"] == "email"

    def test_login_wrong_password(self, app_client, accounts, caplog):
        with caplog.at_level("WARNING", logger="security"):
            response = app_client().post("/api/auth/login", json={
                "email": "alice@example.com", "password": "wrong-password",
            })
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"
        assert "LOGIN_FAILED" in caplog.text
        assert "wrong-password" not in caplog.text

    def test_login_unknown_email(self, app_client):
        response = app_client().post("/api/auth/login", json={"email": "ghost@example.com", "password": "x"})
        assert response.status_code == 401

    def test_logout(self, app_client, accounts):
        client = app_client("alice@example.com")
        assert client.post("/api/auth/logout").status_code == 200
        assert client.get("/api/auth/me").status_code == 401

    def test_login_purges_expired_sessions(self, app_client, accounts, db_session):
        from datetime import datetime, timezone
        from database.models import UserSession
        from database.repositories import SessionRepository

        SessionRepository(db_session).create(
            accounts["alice"], "old-token", datetime.now(timezone.utc) - timedelta(days=1)
        )
        db_session.commit()

        app_client("alice@example.com")
        db_session.expire_all()
        assert db_session.query(UserSession).filter_by(token="old-token").count() == 0
        assert db_session.query(UserSession).filter_by(user_id=accounts["alice"].id).count() == 1

    def test_login_links_account_without_person(self, app_client, db_session):
        from api.auth import hash_password
        from database.repositories import UserRepository

        UserRepository(db_session).create(
            "orphan@example.com", hash_password(TEST_PASSWORD, rounds=4), Role.MANAGER.value
        )
        db_session.commit()
        response = app_client().post("/api/auth/login", json={
            "email": "orphan@example.com", "password": TEST_PASSWORD,
        })
        assert response.status_code == 200
        assert response.json()["person_id"] is not None


# ============================================
# ACCESS CONTROL
# ============================================

class TestAccessControl:

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/stats"),
        ("get", "/api/courses"),
        ("get", "/api/records"),
        ("get", "/api/records/999"),
        ("get", "/api/person/999/summary"),
        ("get", "/api/thirdparty"),
        ("get", "/api/reports"),
        ("get", "/api/my"),
        ("get", "/api/person/1/calendar.ics"),
        ("delete", "/api/records/999"),
    ])
    def test_anonymous_gets_401(self, app_client, method, path):
        response = getattr(app_client(), method)(path)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_stale_cookie_is_anonymous(self, app_client):
        client = app_client()
        client.cookies.set("training_session", "forged-token")
        assert client.get("/api/stats").status_code == 401

    def test_user_cannot_write_catalog(self, app_client, accounts):
        response = app_client("alice@example.com").post("/api/courses", json={"name": "Sneaky"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_people_list_needs_privilege(self, app_client, accounts):
        assert app_client("alice@example.com").get("/api/people").status_code == 403
        response = app_client("manager@example.com").get("/api/people")
        assert response.status_code == 200
        assert {row["email"] for row in response.json()} >= {"alice@example.com", "bob@example.com"}

    def test_role_change_is_admin_only(self, app_client, accounts):
        bob_person = accounts["bob"].person_id
        manager = app_client("manager@example.com")
        response = manager.put(f"/api/people/{bob_person}/role", json={"role": "manager"})
        assert response.status_code == 403

    def test_role_change_applies_to_live_sessions(self, app_client, accounts, caplog):
        bob = app_client("bob@example.com")
        assert bob.get("/api/people").status_code == 403

        admin = app_client("admin@example.com")
        with caplog.at_level("INFO", logger="security"):
            response = admin.put(f"/api/people/{accounts['bob'].person_id}/role", json={"role": "manager"})
        assert response.status_code == 200
        assert response.json()["previous_role"] == "user"
        assert response.json()["role"] == "manager"
        assert "ROLE_CHANGED" in caplog.text

        assert bob.get("/api/people").status_code == 200

    def test_role_change_invalid_role(self, app_client, accounts):
        admin = app_client("admin@example.com")
        response = admin.put(f"/api/people/{accounts['bob'].person_id}/role", json={"role": "owner"})
        assert response.status_code == 400

    def test_denials_are_logged(self, app_client, accounts, caplog):
        with caplog.at_level("WARNING", logger="security"):
            app_client("alice@example.com").get(f"/api/person/{accounts['bob'].person_id}/summary")
        assert "ACCESS_DENIED" in caplog.text


# ============================================
# COURSES AND DASHBOARD
# ============================================

class TestCourses:

    def test_create_and_list(self, app_client, accounts, course_id):
        courses = app_client("alice@example.com").get("/api/courses").json()
        assert courses == [{
            "course_id": course_id,
            "name": "Fire Safety",
            "description": None,
            "type": "Group Training",
            "category": "Health & Safety",
            "provider": "In-house",
            "validity_days": 365,
            "is_active": True,
        }]

    def test_duplicate_name(self, app_client, accounts, course_id):
        response = app_client("manager@example.com").post("/api/courses", json={"name": "Fire Safety"})
        assert response.status_code == 409

    def test_missing_name(self, app_client, accounts):
        response = app_client("manager@example.com").post("/api/courses", json={"categoryName": "X"})
        assert response.status_code == 400

    def test_update_keeps_record_expiry(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        record = submit_record(manager, course_id, "alice@example.com").json()
        assert record["expiry_date"] == "2026-01-01"

        response = manager.put(f"/api/courses/{course_id}", json={"validityDays": 30, "isActive": True})
        assert response.status_code == 200
        assert response.json()["validity_days"] == 30
        assert manager.get(f"/api/records/{record['id']}").json()["expiry_date"] == "2026-01-01"

    def test_validation_failure_is_logged(self, app_client, accounts, caplog):
        import json

        manager = app_client("manager@example.com")
        with caplog.at_level("WARNING", logger="security"):
            response = manager.post("/api/courses", json={"description": "no name"})
        assert response.status_code == 400

        events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "security"]
        failures = [e for e in events if e["event_type"] == "VALIDATION_FAILED"]
        assert len(failures) == 1
        assert failures[0]["field"] == "name"
        assert failures[0]["user_id"] == str(accounts["manager"].id)
        assert failures[0]["source"] == "/api/courses"

    def test_request_validation_failure_never_logs_password(self, app_client, caplog):
        with caplog.at_level("WARNING", logger="security"):
            response = app_client().post("/api/auth/register", json={
                "email": "not-an-email", "password": "hunter2-secret",
            })
        assert response.status_code == 400
        assert "VALIDATION_FAILED" in caplog.text
        assert "hunter2-secret" not in caplog.text

    def test_update_null_clears_validity(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        response = manager.put(f"/api/courses/{course_id}", json={"isActive": True})
        assert response.json()["validity_days"] == 365

        response = manager.put(f"/api/courses/{course_id}", json={"validityDays": None})
        assert response.status_code == 200
        assert response.json()["validity_days"] is None

    def test_update_missing(self, app_client, accounts):
        response = app_client("manager@example.com").put("/api/courses/999", json={"name": "X"})
        assert response.status_code == 404

    def test_course_details_narrowed_for_users(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        submit_record(manager, course_id, "alice@example.com")
        submit_record(manager, course_id, "bob@example.com")

        assert len(manager.get(f"/api/course/{course_id}/details").json()["records"]) == 2
        details = app_client("alice@example.com").get(f"/api/course/{course_id}/details").json()
        assert [r["email"] for r in details["records"]] == ["alice@example.com"]
        assert details["counts"]["total"] == 1

    def test_stats(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        submit_record(manager, course_id, "alice@example.com",
                      completed=(TODAY - timedelta(days=300)).isoformat())
        submit_record(manager, course_id, "bob@example.com")
        stats = app_client("alice@example.com").get("/api/stats").json()
        assert stats == {"totalStaff": 4, "activeCourses": 1, "expiringSoon": 1, "currentCerts": 1}


# ============================================
# TRAINING RECORDS
# ============================================

class TestRecords:

    def test_user_submits_own_record(self, app_client, accounts, course_id):
        response = submit_record(app_client("alice@example.com"), course_id, "Alice@Example.com")
        assert response.status_code == 201
        body = response.json()
        assert body["person_id"] == accounts["alice"].person_id
        assert body["kind"] == "training"
        assert body["status"] == "current"

    def test_user_cannot_submit_for_others(self, app_client, accounts, course_id):
        alice = app_client("alice@example.com")
        assert submit_record(alice, course_id, "bob@example.com").status_code == 403
        assert submit_record(alice, course_id, "stranger@example.com").status_code == 403

    def test_manager_creates_person_on_demand(self, app_client, accounts, course_id):
        response = submit_record(app_client("manager@example.com"), course_id, "new.hire@example.com", name="New Hire")
        assert response.status_code == 201
        assert response.json()["person_name"] == "New Hire"

    def test_validation_errors(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        response = submit_record(manager, course_id, "alice@example.com", completed="01/02/2025")
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "completion_date"
        assert submit_record(manager, 9999, "alice@example.com").status_code == 400

    def test_get_record_ownership(self, app_client, accounts, course_id):
        record_id = submit_record(app_client("manager@example.com"), course_id, "alice@example.com").json()["id"]
        assert app_client("alice@example.com").get(f"/api/records/{record_id}").status_code == 200
        assert app_client("bob@example.com").get(f"/api/records/{record_id}").status_code == 403
        assert app_client("manager@example.com").get(f"/api/records/{record_id}").status_code == 200

    def test_get_missing_record(self, app_client, accounts, course_id):
        assert app_client("manager@example.com").get("/api/records/999").status_code == 404

        bob_record = submit_record(app_client("manager@example.com"), course_id, "bob@example.com").json()["id"]
        alice = app_client("alice@example.com")
        assert alice.get("/api/records/999").status_code == 403
        assert alice.get(f"/api/records/{bob_record}").status_code == 403

    def test_missing_certificate_ics(self, app_client, accounts):
        assert app_client("manager@example.com").get("/api/thirdparty/999/ics").status_code == 404
        assert app_client("alice@example.com").get("/api/thirdparty/999/ics").status_code == 403

    def test_list_narrowed_for_users(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        submit_record(manager, course_id, "alice@example.com")
        submit_record(manager, course_id, "bob@example.com")
        assert len(manager.get("/api/records").json()) == 2
        rows = app_client("alice@example.com").get("/api/records").json()
        assert [r["email"] for r in rows] == ["alice@example.com"]

    def test_list_filters(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        submit_record(manager, course_id, "alice@example.com", name="Alice User",
                      completed=(TODAY - timedelta(days=400)).isoformat())
        submit_record(manager, course_id, "bob@example.com")
        assert [r["email"] for r in manager.get("/api/records", params={"status": "expired"}).json()] == [
            "alice@example.com"
        ]
        assert [r["email"] for r in manager.get("/api/records", params={"q": "BOB"}).json()] == [
            "bob@example.com"
        ]
        assert manager.get("/api/records", params={"status": "bogus"}).status_code == 400

    def test_user_cannot_edit_or_delete(self, app_client, accounts, course_id):
        record_id = submit_record(app_client("manager@example.com"), course_id, "alice@example.com").json()["id"]
        alice = app_client("alice@example.com")
        assert alice.put(f"/api/records/{record_id}", data={"notes": "x"}).status_code == 403
        assert alice.delete(f"/api/records/{record_id}").status_code == 403

    def test_edit_rederives_expiry(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        record_id = submit_record(manager, course_id, "alice@example.com").json()["id"]
        response = manager.put(f"/api/records/{record_id}", data={"completion_date": "2025-03-01", "notes": "ok"})
        assert response.status_code == 200
        assert response.json()["expiry_date"] == "2026-03-01"
        assert response.json()["notes"] == "ok"

    def test_delete(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        record_id = submit_record(manager, course_id, "alice@example.com").json()["id"]
        assert manager.delete(f"/api/records/{record_id}").status_code == 200
        assert manager.get(f"/api/records/{record_id}").status_code == 404
        assert manager.delete(f"/api/records/{record_id}").status_code == 404


# ============================================
# UPLOADS
# ============================================

class TestUploads:

    def test_attachment_stored_and_listed(self, app_client, accounts, course_id, test_config):
        response = submit_record(
            app_client("alice@example.com"), course_id, "alice@example.com",
            files={"file": ("my cert.pdf", b"%PDF-1.4 test", "application/pdf")},
        )
        assert response.status_code == 201
        attachment = response.json()["attachments"][0]
        assert attachment["file_name"] == "my cert.pdf"
        assert attachment["file_path"].startswith("/uploads/")
        assert attachment["file_path"].endswith("_my_cert.pdf")
        stored = upload_dir(test_config) / attachment["file_path"].rsplit("/", 1)[1]
        assert stored.read_bytes() == b"%PDF-1.4 test"

    def test_disallowed_extension(self, app_client, accounts, course_id, test_config):
        response = submit_record(
            app_client("alice@example.com"), course_id, "alice@example.com",
            files={"file": ("run.exe", b"MZ", "application/octet-stream")},
        )
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "file"
        assert stored_files(test_config) == []

    def test_too_large(self, app_client, accounts, course_id, test_config):
        payload = b"x" * (test_config.uploads.max_size_bytes + 1)
        response = submit_record(
            app_client("alice@example.com"), course_id, "alice@example.com",
            files={"file": ("big.pdf", payload, "application/pdf")},
        )
        assert response.status_code == 413
        assert stored_files(test_config) == []

    def test_failed_insert_discards_file(self, app_client, accounts, test_config):
        response = submit_record(
            app_client("manager@example.com"), 9999, "alice@example.com",
            files={"file": ("cert.pdf", b"data", "application/pdf")},
        )
        assert response.status_code == 400
        assert stored_files(test_config) == []

    def test_replace_and_delete_remove_files(self, app_client, accounts, course_id, test_config):
        manager = app_client("manager@example.com")
        record = submit_record(
            manager, course_id, "alice@example.com",
            files={"file": ("old.pdf", b"old", "application/pdf")},
        ).json()
        assert len(stored_files(test_config)) == 1

        response = manager.put(
            f"/api/records/{record['id']}",
            files={"file": ("new.pdf", b"new", "application/pdf")},
        )
        assert response.status_code == 200
        files = stored_files(test_config)
        assert len(files) == 1
        assert files[0].endswith("_new.pdf")

        manager.delete(f"/api/records/{record['id']}")
        assert stored_files(test_config) == []


# ============================================
# THIRD-PARTY CERTIFICATES
# ============================================

class TestThirdParty:

    def create_cert(self, client, person_id, expiry="2025-08-01", **extra):
        data = {
            "person_id": str(person_id),
            "title": "Forklift",
            "provider": "Acme Training",
            "completion_date": "2025-01-01",
            "expiry_date": expiry,
        }
        data.update(extra)
        return client.post("/api/thirdparty", data=data)

    def test_person_id_required(self, app_client, accounts):
        alice = app_client("alice@example.com")
        response = alice.get("/api/thirdparty")
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "person_id"
        assert alice.post("/api/thirdparty", data={"title": "X"}).status_code == 400

    def test_user_manages_own_certificates(self, app_client, accounts):
        alice = app_client("alice@example.com")
        person_id = accounts["alice"].person_id
        response = self.create_cert(alice, person_id)
        assert response.status_code == 201
        assert response.json()["status"] == "expiring_soon"

        rows = alice.get("/api/thirdparty", params={"person_id": person_id}).json()
        assert [r["title"] for r in rows] == ["Forklift"]

    def test_user_cannot_touch_others(self, app_client, accounts):
        alice = app_client("alice@example.com")
        bob_person = accounts["bob"].person_id
        assert self.create_cert(alice, bob_person).status_code == 403
        assert alice.get("/api/thirdparty", params={"person_id": bob_person}).status_code == 403

    def test_expiry_before_completion(self, app_client, accounts):
        response = self.create_cert(app_client("manager@example.com"), accounts["alice"].person_id,
                                    expiry="2024-12-31")
        assert response.status_code == 400

    def test_unknown_person(self, app_client, accounts):
        assert self.create_cert(app_client("manager@example.com"), 9999).status_code == 404

    def test_update_and_delete(self, app_client, accounts):
        manager = app_client("manager@example.com")
        cert_id = self.create_cert(manager, accounts["alice"].person_id).json()["id"]

        response = manager.put(f"/api/thirdparty/{cert_id}", data={"expiry_date": "", "title": "Forklift B"})
        assert response.status_code == 200
        assert response.json()["expiry_date"] is None
        assert response.json()["title"] == "Forklift B"

        assert app_client("alice@example.com").delete(f"/api/thirdparty/{cert_id}").status_code == 403
        assert manager.delete(f"/api/thirdparty/{cert_id}").status_code == 200
        assert manager.put(f"/api/thirdparty/{cert_id}", data={"title": "x"}).status_code == 404

    def test_single_certificate_ics(self, app_client, accounts):
        alice = app_client("alice@example.com")
        person_id = accounts["alice"].person_id
        cert_id = self.create_cert(alice, person_id).json()["id"]

        response = alice.get(f"/api/thirdparty/{cert_id}/ics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert response.headers["content-disposition"] == f'attachment; filename="thirdparty-{cert_id}.ics"'
        assert f"UID:thirdparty-{cert_id}-person-{person_id}@training-manager" in response.text
        assert "DESCRIPTION:Alice User (alice@example.com) certificate expires" in response.text

        assert app_client("bob@example.com").get(f"/api/thirdparty/{cert_id}/ics").status_code == 403

    def test_ics_without_expiry(self, app_client, accounts):
        alice = app_client("alice@example.com")
        cert_id = self.create_cert(alice, accounts["alice"].person_id, expiry="").json()["id"]
        assert alice.get(f"/api/thirdparty/{cert_id}/ics").status_code == 400


# ============================================
# PEOPLE, MY TRAINING AND REPORTS
# ============================================

class TestPeopleAndReports:

    @pytest.fixture
    def seeded(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        submit_record(manager, course_id, "alice@example.com",
                      completed=(TODAY - timedelta(days=400)).isoformat())
        submit_record(manager, course_id, "bob@example.com",
                      completed=(TODAY - timedelta(days=300)).isoformat())
        manager.post("/api/thirdparty", data={
            "person_id": str(accounts["alice"].person_id),
            "title": "Boat Licence",
            "provider": "Harbour",
            "completion_date": "2025-01-01",
        })
        return manager

    def test_person_summary(self, app_client, accounts, seeded):
        alice_person = accounts["alice"].person_id
        response = app_client("alice@example.com").get(f"/api/person/{alice_person}/summary")
        assert response.status_code == 200
        body = response.json()
        assert body["person"]["email"] == "alice@example.com"
        assert body["person"]["role"] == "user"
        assert len(body["training"]) == 1
        assert len(body["third_party"]) == 1
        assert body["counts"] == {"total": 2, "current": 1, "expiring_soon": 0, "expired": 1}

        assert app_client("bob@example.com").get(f"/api/person/{alice_person}/summary").status_code == 403
        assert seeded.get("/api/person/9999/summary").status_code == 404

    def test_my_training(self, app_client, accounts, seeded):
        alice = app_client("alice@example.com")
        body = alice.get("/api/my").json()
        assert [r["title"] for r in body["list"]] == ["Boat Licence", "Fire Safety"]
        assert body["counts"]["total"] == 2
        assert alice.get("/api/my", params={"person_id": accounts["bob"].person_id}).status_code == 403
        assert alice.get("/api/my", params={"person_id": accounts["alice"].person_id}).status_code == 200

    def test_my_training_for_admin_is_self_only(self, app_client, accounts, seeded):
        admin = app_client("admin@example.com")
        assert admin.get("/api/my").json()["list"] == []
        assert admin.get("/api/my", params={"person_id": accounts["alice"].person_id}).status_code == 403

    def test_people_rollup(self, app_client, accounts, seeded):
        rows = {r["email"]: r for r in seeded.get("/api/people").json()}
        assert rows["alice@example.com"]["total_training"] == 2
        assert rows["alice@example.com"]["expired"] == 1
        assert rows["bob@example.com"]["expiring_soon"] == 1

    def test_reports(self, app_client, accounts, seeded):
        assert app_client("alice@example.com").get("/api/reports").status_code == 403
        assert len(seeded.get("/api/reports").json()) == 3
        expiring = seeded.get("/api/reports", params={"type": "expiring"}).json()
        assert [r["email"] for r in expiring] == ["bob@example.com"]
        assert len(seeded.get("/api/reports", params={"type": "valid"}).json()) == 2
        assert seeded.get("/api/reports", params={"type": "nope"}).status_code == 400

    def test_csv_export(self, app_client, accounts, seeded):
        response = seeded.get("/api/reports/export.csv", params={"type": "expired"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"training-report-expired-{TODAY.isoformat()}.csv" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == ["Staff Name", "Email", "Course", "Completed", "Expires", "Assessor", "Status"]
        assert rows[1][1] == "alice@example.com"
        assert rows[1][-1] == "Expired"
        assert len(rows) == 2

    def test_expiring_narrowed(self, app_client, accounts, seeded):
        assert [r["email"] for r in seeded.get("/api/expiring").json()] == ["bob@example.com"]
        assert app_client("alice@example.com").get("/api/expiring").json() == []


# ============================================
# CALENDAR FEEDS
# ============================================

class TestCalendar:

    def test_feed_and_download(self, app_client, accounts, course_id):
        manager = app_client("manager@example.com")
        record = submit_record(manager, course_id, "alice@example.com").json()
        alice = app_client("alice@example.com")
        person_id = accounts["alice"].person_id

        feed = alice.get(f"/api/person/{person_id}/calendar.ics")
        assert feed.status_code == 200
        assert feed.headers["content-disposition"].startswith("inline")
        assert feed.text.startswith("BEGIN:VCALENDAR\r\n")
        assert f"UID:training-{record['id']}-person-{person_id}@training-manager" in feed.text
        assert "DTSTART;VALUE=DATE:20260101" in feed.text

        download = alice.get(f"/api/person/{person_id}/export.ics")
        assert download.headers["content-disposition"] == f'attachment; filename="cert-expiries-{person_id}.ics"'

    def test_other_person_forbidden(self, app_client, accounts):
        alice = app_client("alice@example.com")
        assert alice.get(f"/api/person/{accounts['bob'].person_id}/calendar.ics").status_code == 403

    def test_manager_sees_anyone(self, app_client, accounts):
        response = app_client("manager@example.com").get(f"/api/person/{accounts['bob'].person_id}/export.ics")
        assert response.status_code == 200
        assert "BEGIN:VEVENT" not in response.text

    def test_unknown_person(self, app_client, accounts):
        assert app_client("manager@example.com").get("/api/person/9999/calendar.ics").status_code == 404


# ============================================
# SYSTEM AND ERROR HANDLING
# ============================================

class TestSystem:

    def test_health(self, app_client):
        response = app_client().get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "ok"

    def test_api_responses_not_cached(self, app_client):
        response = app_client().get("/api/health")
        assert response.headers["cache-control"] == "no-store"
        assert "x-request-id" in response.headers

    def test_error_shape(self, app_client):
        body = app_client().get("/api/stats").json()
        assert set(body["error"]) >= {"code", "message", "timestamp"}

    def test_unhandled_error_is_500_with_detail(self, app_client, accounts):
        from api import server
        from api.dependencies import get_training_service

        def broken_service():
            raise RuntimeError("database exploded\nFAKE LOG LINE")

        server.app.dependency_overrides[get_training_service] = broken_service
        response = app_client().get("/api/stats")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert error["message"] == "Server error"
        assert error["detail"] == "database exploded FAKE LOG LINE"
