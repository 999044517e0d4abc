from unittest.mock import MagicMock

from campaigns.services.merge import (
    UNASSIGNED_TABLE,
    apply_merge_variables,
    build_merge_variables,
    build_my_table_link,
    extract_merge_variables,
    lookup_table_name,
    merge_template,
    validate_merge_variables,
)


def test_apply_replaces_known_tokens_and_keeps_unknown():
    text = "Hi {{name}}, see {{tableName}} at {{venue}}. {{ name }} stays."

    result = apply_merge_variables(text, {"name": "Mina", "tableName": "T3", "phone": None})

    assert result == "Hi Mina, see T3 at {{venue}}. {{ name }} stays."


def test_none_value_leaves_token_verbatim():
    assert apply_merge_variables("Call {{phone}}", {"phone": None}) == "Call {{phone}}"


def test_merge_is_idempotent():
    template = MagicMock(subject="{{event_title}}", body_html="<b>{{name}}</b> {{missing}}", body_text=None)
    variables = {"event_title": "Expo", "name": "Mina"}

    once = merge_template(template, variables)
    twice = merge_template(MagicMock(subject=once.subject, body_html=once.html, body_text=None), variables)

    assert once.subject == "Expo"
    assert once.html == "<b>Mina</b> {{missing}}"
    assert once.text is None
    assert twice.html == once.html


def test_extract_and_validate():
    text = "{{name}} {{company}} {{name}} {{tableName}}"

    assert extract_merge_variables(text) == ["name", "company", "tableName"]
    assert validate_merge_variables(text, {"name": "a", "company": "b", "tableName": "c"}) == (True, [])
    assert validate_merge_variables(text, {"name": "a", "company": None}) == (False, ["company", "tableName"])


def test_my_table_link_strips_trailing_slash():
    assert build_my_table_link("expo", 42, "https://events.example.com/") == (
        "https://events.example.com/events/expo/my-table?pid=42"
    )
    assert build_my_table_link("expo", 1, None).startswith("https://events.anders.kr/events/expo/")


def test_merge_variables_fall_back_to_unassigned():
    participant = MagicMock(id=7, email="a@example.com", phone=None, company="Acme")
    participant.name = "Mina"
    event = MagicMock(code="expo", title="Expo")

    variables = build_merge_variables(participant, event, None, "https://x.test")

    assert variables["tableName"] == UNASSIGNED_TABLE
    assert variables["myTableUrl"] == "https://x.test/events/expo/my-table?pid=7"
    assert variables["qr_url"] == variables["myTableUrl"]
    assert variables["name"] == "Mina"
    assert variables["participant_id"] == 7


def test_lookup_table_ignores_draft_assignments(session, make_event, make_participant, seat):
    event = make_event()
    confirmed = make_participant(event)
    drafted = make_participant(event)
    seat(event, confirmed, "Table 1")
    seat(event, drafted, "Table 2", is_draft=True)

    assert lookup_table_name(session, event.id, confirmed.id) == "Table 1"
    assert lookup_table_name(session, event.id, drafted.id) is None
