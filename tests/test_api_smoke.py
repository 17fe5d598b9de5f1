"""
Smoke tests against a running Document Control backend
Tests: health, workflows, approvals, serial numbers, revisions, transmittals, audit

Set DOC_CONTROL_BASE_URL to run. Tokens are signed with the backend's
DOC_CONTROL_JWT_SECRET_KEY (both sides read the same environment).
"""
import os
import uuid

import pytest
import requests

BASE_URL = os.environ.get("DOC_CONTROL_BASE_URL", "").rstrip("/")

pytestmark = pytest.mark.skipif(not BASE_URL, reason="DOC_CONTROL_BASE_URL not set")


def auth_headers(user_id: str, name: str, role: str) -> dict:
    from routes.auth import create_access_token

    token = create_access_token({"sub": user_id, "name": name, "role": role})
    return {"Authorization": f"Bearer {token}"}


SITE = auth_headers("smoke-site", "Smoke Site", "site_engineer")
QA = auth_headers("smoke-qa", "Smoke QA", "qa_manager")


class TestHealth:
    def test_health(self):
        response = requests.get(f"{BASE_URL}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_requires_token(self):
        response = requests.get(f"{BASE_URL}/api/dc/workflows")
        assert response.status_code in (401, 403)


class TestApprovals:
    def test_workflows_listed(self):
        response = requests.get(f"{BASE_URL}/api/dc/workflows", headers=SITE)
        assert response.status_code == 200
        domains = {workflow["domain"] for workflow in response.json()}
        assert {"ncr", "document", "expense"} <= domains

    def test_ncr_flow(self):
        entity_id = f"NCR-SMOKE-{uuid.uuid4().hex[:8]}"
        created = requests.post(
            f"{BASE_URL}/api/dc/approvals",
            json={"entity_type": "ncr", "entity_id": entity_id},
            headers=SITE,
        )
        assert created.status_code == 200
        request_id = created.json()["id"]
        assert created.json()["current_stage"] == "open"

        acted = requests.post(
            f"{BASE_URL}/api/dc/approvals/{request_id}/actions",
            json={"action": "approve", "comment": "Looks valid"},
            headers=QA,
        )
        assert acted.status_code == 200
        assert acted.json()["current_stage"] == "inspection"

        denied = requests.post(
            f"{BASE_URL}/api/dc/approvals/{request_id}/actions",
            json={"action": "approve"},
            headers=SITE,
        )
        assert denied.status_code == 403

        detail = requests.get(f"{BASE_URL}/api/dc/approvals/{request_id}", headers=QA)
        assert detail.status_code == 200
        assert "approve" in detail.json()["available_actions"]

    def test_unknown_domain(self):
        response = requests.post(
            f"{BASE_URL}/api/dc/approvals",
            json={"entity_type": "spaceship", "entity_id": "X-1"},
            headers=SITE,
        )
        assert response.status_code == 404


class TestSerialNumbers:
    def test_issue_and_validate(self):
        issued = requests.post(
            f"{BASE_URL}/api/dc/serial-numbers", json={"category": "ncr"}, headers=SITE
        )
        assert issued.status_code == 200
        serial = issued.json()["serial_number"]

        validated = requests.get(
            f"{BASE_URL}/api/dc/serial-numbers/validate",
            params={"serial": serial, "category": "NCR"},
            headers=SITE,
        )
        assert validated.json()["valid"] is True

    def test_unknown_category(self):
        response = requests.post(
            f"{BASE_URL}/api/dc/serial-numbers", json={"category": "ZZZ"}, headers=SITE
        )
        assert response.status_code == 400


class TestRevisionsAndTransmittals:
    def test_revision_then_transmittal(self):
        document_id = f"DOC-SMOKE-{uuid.uuid4().hex[:8]}"
        revision = requests.post(
            f"{BASE_URL}/api/dc/documents/{document_id}/revisions",
            json={"artifact_ref": "s3://smoke/a.pdf", "size": 10},
            headers=SITE,
        )
        assert revision.status_code == 200
        assert revision.json()["revision_letter"] == "A"

        current = requests.get(
            f"{BASE_URL}/api/dc/documents/{document_id}/revisions/current", headers=SITE
        )
        assert current.status_code == 404

        transmittal = requests.post(
            f"{BASE_URL}/api/dc/transmittals",
            json={
                "project_id": "SMOKE",
                "subject": "Smoke transmittal",
                "sender": "Smoke Site",
                "sender_organization": "Contractor",
                "recipient": "smoke-qa",
                "recipient_organization": "Consultant",
                "documents": [
                    {
                        "document_id": document_id,
                        "document_number": "SMK-001",
                        "title": "Smoke drawing",
                        "revision": "A",
                    }
                ],
            },
            headers=SITE,
        )
        assert transmittal.status_code == 200
        transmittal_id = transmittal.json()["id"]

        sent = requests.post(f"{BASE_URL}/api/dc/transmittals/{transmittal_id}/send", headers=SITE)
        assert sent.json()["status"] == "sent"

        pending = requests.get(f"{BASE_URL}/api/dc/transmittals/pending", headers=QA)
        assert transmittal_id in {t["id"] for t in pending.json()}

        cover = requests.get(
            f"{BASE_URL}/api/dc/transmittals/{transmittal_id}/cover-sheet", headers=SITE
        )
        assert cover.headers["content-type"] == "application/pdf"
        assert cover.content.startswith(b"%PDF")


class TestAudit:
    def test_audit_query(self):
        response = requests.get(f"{BASE_URL}/api/dc/audit", params={"limit": 5}, headers=SITE)
        assert response.status_code == 200
        assert len(response.json()) <= 5

    def test_bad_limit(self):
        response = requests.get(f"{BASE_URL}/api/dc/audit", params={"limit": 0}, headers=SITE)
        assert response.status_code == 400
