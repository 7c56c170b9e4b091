"""Tests for the patient endpoints."""

import json
from unittest.mock import Mock

from recordguard.domain.guardrails import IntegrityEvent
from recordguard.domain.kinds import ClinicalSubRecordKind
from recordguard.domain.ports import PatientStoragePort, Result, StorageError

MEDICAL = ClinicalSubRecordKind.MEDICAL_HISTORY
FOOD = ClinicalSubRecordKind.FOOD_AND_HABIT

MENSTRUAL_DEFAULT = {
    "menses": "",
    "menopause": "No",
    "leucorrhoea": "",
    "gonorrhea": "No",
    "otherDischarges": "",
}


class TestRegisterPatient:
    """POST /api/patients"""

    def test_register_with_clinical_object(self, client, registration_payload):
        response = client.post(
            "/api/patients",
            json=registration_payload(foodAndHabit={"foodHabit": "Veg", "addictions": "Tea"}),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] >= 1
        assert body["name"] == "Asha Rao"
        assert body["mobileNumber"] == "+91 98450 12345"
        assert body["foodAndHabit"] == {"foodHabit": "Veg", "addictions": "Tea"}
        assert body["menstrualHistory"] == MENSTRUAL_DEFAULT
        assert body["medicalHistory"]["pastHistory"]["allergy"] is False
        assert body["corruptedFields"] == []

    def test_register_json_string(self, client, registration_payload):
        response = client.post(
            "/api/patients",
            json=registration_payload(foodAndHabit='{"foodHabit": "Non-veg"}'),
        )

        assert response.status_code == 201
        assert response.json()["foodAndHabit"] == {"foodHabit": "Non-veg", "addictions": ""}

    def test_male_patient_has_no_menstrual_history(self, client, registration_payload):
        response = client.post(
            "/api/patients",
            json=registration_payload(sex="Male", menstrualHistory={"menses": "Regular"}),
        )

        assert response.status_code == 201
        assert response.json()["menstrualHistory"] is None

    def test_unparseable_clinical_string_is_rejected(self, client, storage, registration_payload):
        response = client.post(
            "/api/patients",
            json=registration_payload(foodAndHabit='{"foodHabit": "Veg"'),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["fields"] == ["foodAndHabit"]
        assert body["errors"][0]["issue"] == "ParseFailure"
        assert body["errors"][0]["field"] == "foodAndHabit"
        assert storage.count_patient_records().value == 0

    def test_rejection_lists_every_offending_field(self, client, registration_payload):
        response = client.post(
            "/api/patients",
            json=registration_payload(
                foodAndHabit="{broken",
                medicalHistory='{"pastHistory": ',
            ),
        )

        assert response.status_code == 400
        assert response.json()["fields"] == ["foodAndHabit", "medicalHistory"]

    def test_lone_surrogate_text_is_stored_as_default(self, client, registration_payload):
        # json.dumps escapes the surrogate, so the body itself is valid JSON
        body = json.dumps(registration_payload(foodAndHabit={"foodHabit": "\ud800", "addictions": "Tea"}))

        response = client.post("/api/patients", content=body, headers={"Content-Type": "application/json"})

        assert response.status_code == 201
        assert response.json()["foodAndHabit"] == {"foodHabit": "", "addictions": "Tea"}

    def test_deeply_nested_clinical_string_is_rejected(self, client, storage, registration_payload):
        response = client.post("/api/patients", json=registration_payload(foodAndHabit="[" * 200000))

        assert response.status_code == 400
        assert response.json()["fields"] == ["foodAndHabit"]
        assert storage.count_patient_records().value == 0

    def test_invalid_demographics(self, client, registration_payload):
        response = client.post("/api/patients", json=registration_payload(age=0))
        assert response.status_code == 422

    def test_invalid_sex(self, client, registration_payload):
        response = client.post("/api/patients", json=registration_payload(sex="Unknown"))
        assert response.status_code == 422


class TestReadPatients:
    """GET /api/patients and GET /api/patients/{id}"""

    def test_get_patient(self, client, seed_patient):
        patient_id = seed_patient(fields={FOOD: '{"foodHabit":"Veg","addictions":""}'})

        response = client.get(f"/api/patients/{patient_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == patient_id
        assert body["guardianName"] == "Ravi Rao"
        assert body["foodAndHabit"]["foodHabit"] == "Veg"

    def test_unknown_patient(self, client):
        response = client.get("/api/patients/999")

        assert response.status_code == 404
        assert "999" in response.json()["detail"]

    def test_corrupted_field_is_replaced_by_default(self, client, seed_patient, metrics):
        patient_id = seed_patient(fields={MEDICAL: '{"pastHistory": {"allergy": tru'})

        response = client.get(f"/api/patients/{patient_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["corruptedFields"] == ["medicalHistory"]
        assert body["medicalHistory"]["pastHistory"]["allergy"] is False
        assert body["foodAndHabit"] == {"foodHabit": "", "addictions": ""}
        assert metrics.count(IntegrityEvent.CORRUPTION, MEDICAL) == 1

    def test_deeply_nested_stored_field_is_replaced_by_default(self, client, seed_patient):
        patient_id = seed_patient(sex="Male", fields={FOOD: "[" * 100000})

        response = client.get(f"/api/patients/{patient_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["corruptedFields"] == ["foodAndHabit"]
        assert body["foodAndHabit"] == {"foodHabit": "", "addictions": ""}

    def test_list_patients(self, client, seed_patient):
        seed_patient(name="Asha Rao")
        seed_patient(name="Vikram Shah", sex="Male", fields={FOOD: "not json"})

        response = client.get("/api/patients")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["patientsWithCorruption"] == 1
        assert [p["name"] for p in body["patients"]] == ["Asha Rao", "Vikram Shah"]
        assert body["patients"][1]["corruptedFields"] == ["foodAndHabit"]

    def test_storage_failure_is_service_unavailable(self, client, override_storage):
        failing = Mock(spec=PatientStoragePort)
        failing.get_patient_record.return_value = Result.failure_result(
            StorageError("connection lost", operation="get_patient_record"),
            error_type="StorageError"
        )
        override_storage(failing)

        response = client.get("/api/patients/1")

        assert response.status_code == 503
        assert "connection lost" not in response.text


class TestUpdateClinicalFields:
    """PATCH /api/patients/{id}/clinical"""

    def test_update_one_field(self, client, seed_patient, storage):
        patient_id = seed_patient()
        before = storage.get_patient_record(patient_id).value.encoded_fields

        response = client.patch(
            f"/api/patients/{patient_id}/clinical",
            json={"foodAndHabit": {"foodHabit": "Vegan", "addictions": "None"}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["updatedFields"] == ["foodAndHabit"]
        assert body["patient"]["foodAndHabit"] == {"foodHabit": "Vegan", "addictions": "None"}

        after = storage.get_patient_record(patient_id).value.encoded_fields
        assert after[FOOD] == '{"foodHabit":"Vegan","addictions":"None"}'
        assert after[MEDICAL] == before[MEDICAL]

    def test_update_accepts_column_names(self, client, seed_patient):
        patient_id = seed_patient()

        response = client.patch(
            f"/api/patients/{patient_id}/clinical",
            json={"food_and_habit": {"foodHabit": "Veg"}},
        )

        assert response.status_code == 200
        assert response.json()["updatedFields"] == ["foodAndHabit"]

    def test_rejected_update_changes_nothing(self, client, seed_patient, storage):
        patient_id = seed_patient()
        before = storage.get_patient_record(patient_id).value.encoded_fields

        response = client.patch(
            f"/api/patients/{patient_id}/clinical",
            json={
                "foodAndHabit": {"foodHabit": "Vegan"},
                "physicalGenerals": '{"appetite": "good",',
            },
        )

        assert response.status_code == 400
        assert response.json()["fields"] == ["physicalGenerals"]
        assert storage.get_patient_record(patient_id).value.encoded_fields == before

    def test_update_repairs_corrupted_field(self, client, seed_patient):
        patient_id = seed_patient(fields={FOOD: '{"foodHabit":"Veg'})

        response = client.patch(
            f"/api/patients/{patient_id}/clinical",
            json={"foodAndHabit": {"foodHabit": "Veg"}},
        )

        assert response.status_code == 200
        assert response.json()["patient"]["corruptedFields"] == []

    def test_no_clinical_fields(self, client, seed_patient):
        patient_id = seed_patient()

        response = client.patch(f"/api/patients/{patient_id}/clinical", json={"name": "Someone"})

        assert response.status_code == 400
        assert response.json()["detail"] == "No clinical fields supplied"

    def test_unknown_patient(self, client):
        response = client.patch("/api/patients/404/clinical", json={"foodAndHabit": {}})
        assert response.status_code == 404
