import pytest


@pytest.fixture
def school(app, seed):
    exam_id = seed.exam(name="Final Examination")
    subject_id = seed.subject("Mathematics", full_marks=(20, 30, 50), display_order=1)
    asha = seed.student("ST-01", roll_number=1, name="Asha")
    binod = seed.student("ST-02", roll_number=2, name="Binod")
    return {"exam_id": exam_id, "subject_id": subject_id, "asha": asha, "binod": binod}


def _url(school, suffix):
    return f"/admin/exams/{school['exam_id']}/{suffix}"


def _enter_and_lock(client, school):
    resp = client.post(_url(school, "marks"), json={
        "subject_id": school["subject_id"],
        "rows": [
            {"student_id": school["asha"], "marks_1": "18", "marks_2": "ab", "marks_3": "45"},
            {"student_id": school["binod"], "marks_1": "12", "marks_2": "20", "marks_3": "30"},
        ],
    })
    assert resp.status_code == 200
    assert resp.get_json()["data"]["inserted"] == 2

    resp = client.post(_url(school, "marks/lock"), json={"subject_id": school["subject_id"], "locked": True})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["rows"] == 2


def _lookup(client, code="ST-01"):
    return client.post("/api/results/lookup", json={
        "student_code": code,
        "class_number": 5,
        "date_of_birth": "2015-04-12",
    })


def test_admin_endpoints_require_login(client, school):
    resp = client.get(_url(school, "deployment/checks"))
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "unauthorized"

    resp = client.post(_url(school, "deploy"))
    assert resp.status_code == 401


def test_admin_endpoints_require_admin_role(viewer_client, school):
    resp = viewer_client.get(_url(school, "deployment/checks"))
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "forbidden"


def test_mutations_require_csrf_header(admin_client, school):
    admin_client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    resp = admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "csrf_missing"

    admin_client.environ_base["HTTP_X_CSRF_TOKEN"] = "not-the-token"
    resp = admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "csrf_mismatch"


def test_bad_login(client):
    resp = client.post("/login", json={"username": "nobody", "password": "x"})
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "invalid_credentials"


def test_missing_exam_is_404(admin_client):
    resp = admin_client.get("/admin/exams/999/deployment")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "exam_not_found"


def test_deploy_is_blocked_until_checks_pass(admin_client, school):
    resp = admin_client.get(_url(school, "deployment/checks"))
    body = resp.get_json()["data"]
    assert body["can_deploy"] is False
    assert len(body["checks"]) == 6

    resp = admin_client.post(_url(school, "deploy"))
    assert resp.status_code == 409
    err = resp.get_json()["error"]
    assert err["code"] == "deployment_blocked"
    assert err["details"]["invariant"] == "Marks Entered"
    assert any(not c["passed"] for c in err["details"]["checks"])


def test_full_publish_and_rollback_flow(admin_client, school):
    _enter_and_lock(admin_client, school)

    resp = admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})
    assert resp.status_code == 200
    payload = resp.get_json()
    assert payload["meta"] == {"count": 2, "conflicts": 0}
    first = payload["data"][0]
    assert first["student_code"] == "ST-01"
    assert first["rank"] == 1
    assert first["total_marks"] == 63

    assert admin_client.get("/api/deployment").get_json()["data"]["has_deployed_exam"] is False
    resp = _lookup(admin_client)
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "not_published"

    resp = admin_client.post(_url(school, "deploy"))
    assert resp.status_code == 200
    assert resp.get_json()["data"]["state"] == "live"
    assert resp.get_json()["data"]["deployed_at"]

    live = admin_client.get("/api/deployment").get_json()["data"]
    assert live["has_deployed_exam"] is True
    assert live["exam"]["exam_id"] == school["exam_id"]

    resp = _lookup(admin_client)
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["student"]["name"] == "Asha"
    assert data["result"]["rank"] == 1
    assert data["result"]["grade"] == "B"
    subject = data["subjects"][0]
    assert subject["subject"] == "Mathematics"
    assert subject["marks_2"] == "AB"
    assert subject["total"] == 63

    resp = admin_client.get(f"/api/results/verify/{school['exam_id']}/ST-02")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["verified"] is True
    assert resp.get_json()["data"]["result"]["rank"] == 2

    # Marks are frozen while results are live
    resp = admin_client.post(_url(school, "marks"), json={
        "subject_id": school["subject_id"],
        "rows": [{"student_id": school["binod"], "marks_1": "20"}],
    })
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "exam_deployed"

    resp = admin_client.post(_url(school, "deploy"))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "invalid_transition"

    resp = admin_client.post(_url(school, "rollback"))
    assert resp.status_code == 200
    assert resp.get_json()["data"]["state"] == "draft"
    assert resp.get_json()["data"]["deployed_at"] is None

    assert _lookup(admin_client).status_code == 404
    assert admin_client.get(f"/api/results/verify/{school['exam_id']}/ST-02").status_code == 404

    # Ranks survive the rollback
    resp = admin_client.get(_url(school, "ranks") + "?class_number=5")
    assert resp.get_json()["meta"]["count"] == 2

    actions = [a["action"] for a in admin_client.get("/admin/activity").get_json()["data"]]
    assert "exam_deployed" in actions and "exam_rolled_back" in actions


def test_lookup_with_wrong_birth_date(admin_client, school):
    _enter_and_lock(admin_client, school)
    admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})
    admin_client.post(_url(school, "deploy"))

    resp = admin_client.post("/api/results/lookup", json={
        "student_code": "ST-01",
        "class_number": 5,
        "date_of_birth": "2014-01-01",
    })
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "not_found"

    resp = admin_client.post("/api/results/lookup", json={"student_code": "ST-01", "class_number": 5,
                                                         "date_of_birth": "12/04/2015"})
    assert resp.status_code == 400


def test_rank_save_rejects_duplicates(admin_client, school):
    resp = admin_client.post(_url(school, "marks"), json={
        "subject_id": school["subject_id"],
        "rows": [
            {"student_id": school["asha"], "marks_1": "10", "marks_2": "10", "marks_3": "10"},
            {"student_id": school["binod"], "marks_1": "10", "marks_2": "10", "marks_3": "10"},
        ],
    })
    assert resp.status_code == 200

    resp = admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})
    assert resp.get_json()["meta"]["conflicts"] == 2

    resp = admin_client.post(_url(school, "ranks"), json={
        "class_number": 5,
        "ranks": {str(school["asha"]): 1, str(school["binod"]): 1},
    })
    assert resp.status_code == 400
    err = resp.get_json()["error"]
    assert err["code"] == "invalid_ranks"
    assert err["details"]["invariant"] == "ranks_unique"
    assert err["details"]["duplicate_ranks"] == [1]

    resp = admin_client.post(_url(school, "ranks"), json={
        "class_number": 5,
        "ranks": {str(school["asha"]): 2, str(school["binod"]): 1},
    })
    assert resp.status_code == 200
    assert resp.get_json()["meta"]["saved"] == 2
    rows = {r["student_code"]: r for r in resp.get_json()["data"]}
    assert rows["ST-02"]["rank"] == 1
    assert rows["ST-01"]["rank"] == 2
    assert not any(r["has_conflict"] for r in rows.values())


def test_invalid_mark_cells_are_reported(admin_client, school):
    resp = admin_client.post(_url(school, "marks"), json={
        "subject_id": school["subject_id"],
        "rows": [{"student_id": school["asha"], "marks_1": "25", "marks_2": "x", "marks_3": "-2"}],
    })
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["inserted"] == 0
    reasons = {e["field"]: e["reason"] for e in data["errors"]}
    assert reasons == {
        "marks_1": "exceeds_full_marks",
        "marks_2": "not_a_number",
        "marks_3": "negative",
    }


def test_session_endpoint_returns_token(admin_client):
    resp = admin_client.get("/session")
    assert resp.status_code == 200
    body = resp.get_json()["data"]
    assert body["user"]["role"] == "admin"
    assert body["csrf_token"] == admin_client.environ_base["HTTP_X_CSRF_TOKEN"]


def test_lookup_rejects_non_string_fields(client, school):
    resp = client.post("/api/results/lookup", json={"student_code": 101, "class_number": 5,
                                                   "date_of_birth": "2015-04-12"})
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "invalid_request"

    resp = client.post("/api/results/lookup", json={"student_code": "ST-01", "class_number": 5,
                                                   "date_of_birth": 20150412})
    assert resp.status_code == 400

    resp = client.post("/api/results/lookup", json=["ST-01", 5, "2015-04-12"])
    assert resp.status_code == 400


def test_marks_rows_must_be_objects(admin_client, school):
    resp = admin_client.post(_url(school, "marks"), json={"subject_id": school["subject_id"], "rows": [7]})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["errors"][0]["reason"] == "invalid_row"


def test_analytics_endpoint(admin_client, school):
    _enter_and_lock(admin_client, school)
    admin_client.post(_url(school, "ranks/compute"), json={"class_number": 5})

    resp = admin_client.get(_url(school, "analytics") + "?class_number=5")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["students"] == 2
    assert data["passed"] == 2
    assert data["pass_rate"] == 100.0
    assert data["average_percentage"] == 62.5
    assert data["grade_distribution"] == [{"grade": "B", "count": 2, "percentage": 100.0}]

    resp = admin_client.get(_url(school, "analytics") + "?class_number=all")
    assert resp.get_json()["data"]["class_number"] is None

    assert admin_client.get(_url(school, "analytics") + "?class_number=five").status_code == 400
    assert admin_client.get("/admin/exams/999/analytics").status_code == 404
