import json

import pytest
from pydantic import ValidationError

from healthscan.errors import BadRequest, Unauthorized
from healthscan.waitlist.models import SignupSource
from healthscan.webhooks.tally import (
    DEFAULT_FIELD_MAPPING,
    FieldMapping,
    IgnoredEvent,
    TallyWebhookAdapter,
    load_field_mapping,
    sign,
)

from conftest import TALLY_SECRET


def tally_payload(fields, event_type="FORM_RESPONSE"):
    return {
        "eventId": "evt_1",
        "eventType": event_type,
        "createdAt": "2026-10-01T12:00:00Z",
        "data": {
            "responseId": "resp_1",
            "submissionId": "sub_1",
            "respondentId": "resp_person_1",
            "formId": "form_1",
            "formName": "HealthScan waitlist",
            "createdAt": "2026-10-01T12:00:00Z",
            "fields": fields,
        },
    }


STANDARD_FIELDS = [
    {"key": "q1", "label": "First name", "type": "INPUT_TEXT", "value": "Ada"},
    {"key": "q2", "label": "Last Name", "type": "INPUT_TEXT", "value": "Lovelace"},
    {"key": "q3", "label": "Your email", "type": "INPUT_EMAIL", "value": " Ada@Example.com "},
    {"key": "q4", "label": "Referral code (optional)", "type": "INPUT_TEXT", "value": "hs_abc123"},
    {
        "key": "q5",
        "label": "Send me product updates",
        "type": "CHECKBOXES",
        "value": ["opt_yes"],
    },
]


def body_of(payload):
    return json.dumps(payload).encode()


def test_maps_standard_form(tally_adapter):
    signup = tally_adapter.handle(body_of(tally_payload(STANDARD_FIELDS)), {})

    assert signup.email == "ada@example.com"
    assert signup.first_name == "Ada"
    assert signup.last_name == "Lovelace"
    assert signup.name == "Ada Lovelace"
    assert signup.referral_code == "hs_abc123"
    assert signup.opted_in_updates is True
    assert signup.source == SignupSource.WEBHOOK
    assert signup.provenance["tallySubmissionId"] == "sub_1"
    assert signup.provenance["tallyRespondentId"] == "resp_person_1"
    assert signup.signup_date.year == 2026


def test_email_found_by_label_without_type(tally_adapter):
    fields = [{"label": "EMAIL ADDRESS", "type": "INPUT_TEXT", "value": "x@y.io"}]
    assert tally_adapter.handle(body_of(tally_payload(fields)), {}).email == "x@y.io"


def test_unchecked_opt_in(tally_adapter):
    fields = [
        {"label": "Email", "type": "INPUT_EMAIL", "value": "x@y.io"},
        {"label": "Updates", "type": "CHECKBOXES", "value": []},
    ]
    assert tally_adapter.handle(body_of(tally_payload(fields)), {}).opted_in_updates is False


def test_missing_email_is_bad_request(tally_adapter):
    fields = [{"label": "First name", "type": "INPUT_TEXT", "value": "Ada"}]
    with pytest.raises(BadRequest):
        tally_adapter.handle(body_of(tally_payload(fields)), {})


def test_empty_email_is_bad_request(tally_adapter):
    fields = [{"label": "Email", "type": "INPUT_EMAIL", "value": None}]
    with pytest.raises(BadRequest):
        tally_adapter.handle(body_of(tally_payload(fields)), {})


@pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b'{"data": {}}', b""])
def test_malformed_body_is_bad_request(tally_adapter, raw):
    with pytest.raises(BadRequest):
        tally_adapter.handle(raw, {})


def test_other_events_are_ignored(tally_adapter):
    outcome = tally_adapter.handle(body_of(tally_payload([], event_type="FORM_VIEWED")), {})
    assert isinstance(outcome, IgnoredEvent)
    assert outcome.event_type == "FORM_VIEWED"


def test_valid_signature_is_accepted(tally_adapter):
    raw = body_of(tally_payload(STANDARD_FIELDS))
    headers = {"tally-signature": sign(raw, TALLY_SECRET)}
    assert tally_adapter.handle(raw, headers).email == "ada@example.com"


def test_bad_signature_rejected_before_parsing(tally_adapter):
    with pytest.raises(Unauthorized):
        tally_adapter.handle(b"not even json", {"Tally-Signature": "bm9wZQ=="})


def test_missing_signature_allowed_unless_required():
    raw = body_of(tally_payload(STANDARD_FIELDS))
    lenient = TallyWebhookAdapter(signing_secret=TALLY_SECRET, require_signature=False)
    assert lenient.handle(raw, {}).email == "ada@example.com"

    strict = TallyWebhookAdapter(signing_secret=TALLY_SECRET, require_signature=True)
    with pytest.raises(Unauthorized):
        strict.handle(raw, {})


def test_no_secret_skips_verification():
    adapter = TallyWebhookAdapter(signing_secret=None, require_signature=False)
    raw = body_of(tally_payload(STANDARD_FIELDS))
    assert adapter.handle(raw, {"Tally-Signature": "anything"}).email == "ada@example.com"


def test_requiring_signature_without_secret_fails_at_startup():
    with pytest.raises(ValueError):
        TallyWebhookAdapter(signing_secret=None, require_signature=True)


def test_custom_mapping_file(tmp_path):
    path = tmp_path / "mapping.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "rules": [
                    {"target": "email", "label_equals": ["contact"]},
                    {"target": "referral_code", "label_equals": ["invited by"]},
                ],
            }
        )
    )
    mapping = load_field_mapping(path)
    adapter = TallyWebhookAdapter(signing_secret=None, mapping=mapping, require_signature=False)

    fields = [
        {"label": "Email", "type": "INPUT_EMAIL", "value": "ignored@example.com"},
        {"label": "Contact", "type": "INPUT_TEXT", "value": "real@example.com"},
        {"label": "Invited by", "type": "INPUT_TEXT", "value": "hs_friend"},
    ]
    signup = adapter.handle(body_of(tally_payload(fields)), {})
    assert signup.email == "real@example.com"
    assert signup.referral_code == "hs_friend"


def test_mapping_without_email_rule_is_rejected():
    with pytest.raises(ValidationError):
        FieldMapping.model_validate({"rules": [{"target": "first_name", "label_equals": ["name"]}]})


def test_rule_without_criteria_is_rejected():
    with pytest.raises(ValidationError):
        FieldMapping.model_validate({"rules": [{"target": "email"}]})


def test_default_mapping_is_used_without_path():
    assert load_field_mapping(None) is DEFAULT_FIELD_MAPPING
