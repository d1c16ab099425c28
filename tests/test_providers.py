import base64
from urllib.parse import parse_qs, urlparse

import pytest

from mailbridge.adapters.base import (
    MailMessage,
    ProviderError,
    UnsupportedProviderError,
    get_provider,
    html_to_text,
    normalize_provider,
)
from mailbridge.adapters.gmail import (
    GoogleProvider,
    TOKEN_URL as GOOGLE_TOKEN_URL,
    encode_reply,
    extract_body,
    gmail_search_query,
    hex_to_gmail_color,
)
from mailbridge.adapters.outlook import (
    GRAPH_URL,
    MicrosoftProvider,
    TOKEN_URL as MS_TOKEN_URL,
    hex_to_outlook_preset,
    outlook_search_filter,
)
from tests.fakes import FakeResponse


def test_provider_aliases(config):
    assert normalize_provider("Microsoft") == "outlook"
    assert normalize_provider("gmail") == "google"
    assert normalize_provider("yahoo") is None
    assert normalize_provider(None) is None
    assert isinstance(get_provider("microsoft", config), MicrosoftProvider)
    with pytest.raises(UnsupportedProviderError) as exc:
        get_provider("yahoo", config)
    assert str(exc.value) == "Unsupported provider: yahoo"


def test_gmail_color_mapping():
    assert hex_to_gmail_color("#ef4444") == {"backgroundColor": "#cc3a21", "textColor": "#ffffff"}
    assert hex_to_gmail_color("#EAB308")["textColor"] == "#000000"
    # not in the palette: strong red channel
    assert hex_to_gmail_color("#E01010")["backgroundColor"] == "#cc3a21"
    assert hex_to_gmail_color("#10E010")["backgroundColor"] == "#149e60"
    assert hex_to_gmail_color("#101010")["backgroundColor"] == "#666666"
    assert hex_to_gmail_color(None)["backgroundColor"] == "#666666"
    assert hex_to_gmail_color("zzz")["backgroundColor"] == "#666666"


def test_google_authorization_url_carries_pkce_and_offline_access(config):
    url = get_provider("google", config).authorization_url("https://cb", "STATE", "CHALLENGE")
    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["google-client"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["code_challenge"] == ["CHALLENGE"]
    assert "https://www.googleapis.com/auth/gmail.modify" in query["scope"][0].split(" ")


def test_outlook_authorization_url_requests_offline_access(config):
    url = get_provider("outlook", config).authorization_url("https://cb", "STATE", "CHALLENGE")
    query = parse_qs(urlparse(url).query)
    assert query["response_mode"] == ["query"]
    assert "offline_access" in query["scope"][0].split(" ")


def test_exchange_code_posts_form_with_verifier(session):
    session.on("POST", GOOGLE_TOKEN_URL, FakeResponse(200, {"access_token": "at", "expires_in": 3600}))
    tokens = GoogleProvider("id", "secret", session=session).exchange_code("code-1", "https://cb", "verifier")
    assert tokens.access_token == "at"
    _, _, kwargs = session.calls_to("POST", GOOGLE_TOKEN_URL)[0]
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["code_verifier"] == "verifier"


def test_token_endpoint_failure_raises(session):
    session.on("POST", MS_TOKEN_URL, FakeResponse(400, {"error": "invalid_grant"}))
    with pytest.raises(ProviderError) as exc:
        MicrosoftProvider("id", "secret", session=session).refresh("rt")
    assert exc.value.status_code == 400


def test_outlook_rule_is_skipped_when_name_exists(session):
    rules_url = f"{GRAPH_URL}/me/mailFolders/inbox/messageRules"
    session.on("GET", rules_url, FakeResponse(200, {"value": [{"displayName": "Mailbridge: sender - a@b.com"}]}))
    provider = MicrosoftProvider("id", "s", session=session)
    rule = {"rule_type": "sender", "rule_value": "a@b.com"}
    assert provider.apply_rule("at", rule, "F1", "Mailbridge: sender - a@b.com")
    assert not session.calls_to("POST", rules_url)


def test_outlook_keyword_rule_is_created(session):
    rules_url = f"{GRAPH_URL}/me/mailFolders/inbox/messageRules"
    session.on("GET", rules_url, FakeResponse(200, {"value": []}))
    session.on("POST", rules_url, FakeResponse(201, {"id": "R1"}))
    provider = MicrosoftProvider("id", "s", session=session)
    assert provider.apply_rule("at", {"rule_type": "keyword", "rule_value": "invoice"}, "F1", "r")
    _, _, kwargs = session.calls_to("POST", rules_url)[0]
    assert kwargs["json"]["conditions"] == {"subjectOrBodyContains": ["invoice"]}
    assert kwargs["json"]["actions"] == {"moveToFolder": "F1"}


def test_outlook_email_falls_back_to_principal_name(session):
    session.on("GET", f"{GRAPH_URL}/me", FakeResponse(200, {"mail": None, "userPrincipalName": "x@corp.com"}))
    assert MicrosoftProvider("id", "s", session=session).fetch_email("at") == "x@corp.com"


def test_outlook_folder_lookup(session):
    session.on("GET", f"{GRAPH_URL}/me/mailFolders", FakeResponse(200, {"value": [{"id": "F9", "displayName": "3: Approvals"}]}))
    provider = MicrosoftProvider("id", "s", session=session)
    assert provider.find_label_id("at", "3: Approvals") == "F9"
    assert provider.find_label_id("at", "4: Meetings") is None
    assert provider.ensure_label("at", "3: Approvals", "#000000")


# Gmail (discovery client)

def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _reply_target():
    return MailMessage(id="m1", subject="Invoice", sender="a@b.com", thread_id="t1", reply_to="billing@b.com")


def test_gmail_client_is_built_once_per_token(gmail):
    provider = GoogleProvider("id", "s")
    provider.find_label_id("at", "x")
    provider.find_label_id("at", "y")
    gmail.build.assert_called_once()
    args, kwargs = gmail.build.call_args
    assert args == ("gmail", "v1")
    assert kwargs["cache_discovery"] is False
    assert kwargs["credentials"].token == "at"


def test_gmail_ensure_label_creates_missing_label(gmail):
    gmail.label_rows = [{"id": "L1", "name": "Other"}]
    assert GoogleProvider("id", "s").ensure_label("at", "1: Urgent", "#EF4444")
    body = gmail.calls_to("labels.create")[0]["body"]
    assert body["name"] == "1: Urgent"
    assert body["color"]["backgroundColor"] == "#cc3a21"
    assert body["labelListVisibility"] == "labelShow"


def test_gmail_ensure_label_updates_existing_color(gmail):
    gmail.label_rows = [{"id": "L1", "name": "1: Urgent"}]
    gmail.failures["labels.patch"] = 500
    assert GoogleProvider("id", "s").ensure_label("at", "1: Urgent", "#3B82F6")
    assert gmail.calls_to("labels.patch")[0]["id"] == "L1"
    assert not gmail.calls_to("labels.create")


def test_gmail_label_conflict_and_list_failure(gmail):
    gmail.failures["labels.create"] = 409
    assert GoogleProvider("id", "s").ensure_label("at", "1: Urgent", "#3B82F6")
    gmail.failures["labels.list"] = 401
    assert not GoogleProvider("id", "s").ensure_label("at", "1: Urgent", "#3B82F6")
    assert GoogleProvider("id", "s").find_label_id("at", "1: Urgent") is None


def test_gmail_delete_label(gmail):
    provider = GoogleProvider("id", "s")
    assert provider.delete_label("at", "2: Old")
    assert not gmail.calls_to("labels.delete")

    gmail.label_rows = [{"id": "L2", "name": "2: Old"}]
    gmail.failures["labels.delete"] = 404
    assert provider.delete_label("at", "2: Old")
    gmail.failures["labels.delete"] = 500
    assert not provider.delete_label("at", "2: Old")


def test_gmail_existing_filter_counts_as_success(gmail):
    gmail.failures["filters.create"] = 409
    provider = GoogleProvider("id", "s")
    assert provider.apply_rule("at", {"rule_type": "domain", "rule_value": "acme.com"}, "L1", "n")
    body = gmail.calls_to("filters.create")[0]["body"]
    assert body["criteria"] == {"from": "@acme.com"}
    assert body["action"]["addLabelIds"] == ["L1"]

    gmail.failures["filters.create"] = 400
    assert not provider.apply_rule("at", {"rule_type": "sender", "rule_value": "x@y.z"}, "L1", "n")


def test_gmail_search_query():
    assert gmail_search_query({"rule_type": "sender", "rule_value": "a@b.com", "recipient_filter": "to_me"}) == \
        "from:a@b.com to:me"
    assert gmail_search_query({
        "rule_type": "domain", "rule_value": "acme.com", "is_advanced": True,
        "subject_contains": "due date", "body_contains": "pay", "condition_logic": "or",
    }) == 'from:@acme.com (subject:"due date" OR pay)'


def test_gmail_search_prefers_category_label(gmail):
    gmail.search['label:"1: Urgent" is:unread'] = ["m1", "m2"]
    rule = {"rule_type": "sender", "rule_value": "a@b.com"}
    assert GoogleProvider("id", "s").search_unread("at", "1: Urgent", rule) == ["m1", "m2"]
    assert len(gmail.calls_to("messages.list")) == 1


def test_gmail_search_falls_back_to_rule_query(gmail):
    gmail.search["from:a@b.com is:unread newer_than:1d"] = ["m3"]
    rule = {"rule_type": "sender", "rule_value": "a@b.com"}
    assert GoogleProvider("id", "s").search_unread("at", "1: Urgent", rule) == ["m3"]
    assert gmail.calls_to("messages.list")[-1]["maxResults"] == 50

    gmail.failures["messages.list"] = 500
    assert GoogleProvider("id", "s").search_unread("at", "1: Urgent", rule) == []


def test_gmail_get_message(gmail):
    gmail.inbox["m1"] = {
        "id": "m1",
        "threadId": "t1",
        "payload": {
            "headers": [
                {"name": "Subject", "value": "Invoice"},
                {"name": "From", "value": "a@b.com"},
            ],
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>ignored</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Please pay.\n")}},
            ],
        },
    }
    message = GoogleProvider("id", "s").get_message("at", "m1")
    assert (message.subject, message.sender, message.reply_to) == ("Invoice", "a@b.com", "a@b.com")
    assert message.body == "Please pay."
    assert message.thread_id == "t1"
    assert GoogleProvider("id", "s").get_message("at", "missing") is None


def test_extract_body_converts_html_only_messages():
    payload = {"mimeType": "text/html", "body": {"data": _b64("<div>Hello<br>there</div>")}}
    assert extract_body(payload) == "Hello\nthere"
    assert html_to_text("<p>a</p><p>b</p>") == "a\nb"
    assert extract_body({}) == ""


def test_gmail_mark_read_and_tag(gmail):
    provider = GoogleProvider("id", "s")
    assert provider.mark_read("at", "m1")
    assert gmail.calls_to("messages.modify")[0]["body"] == {"removeLabelIds": ["UNREAD"]}

    assert provider.tag_message("at", "m1", "AI Draft", "#3B82F6")
    assert provider.tag_message("at", "m2", "AI Draft", "#3B82F6")
    assert len(gmail.calls_to("labels.create")) == 1
    label_id = gmail.label_rows[0]["id"]
    assert gmail.calls_to("messages.modify")[-1] == {"userId": "me", "id": "m2", "body": {"addLabelIds": [label_id]}}

    gmail.failures["messages.modify"] = 500
    assert not provider.mark_read("at", "m1")


def test_gmail_draft_and_reply_stay_in_thread(gmail):
    provider = GoogleProvider("id", "s")
    assert provider.create_draft("at", _reply_target(), "<div>Thanks</div>").startswith("draft-")
    message = gmail.calls_to("drafts.create")[0]["body"]["message"]
    assert message["threadId"] == "t1"
    assert message["raw"] == encode_reply("billing@b.com", "Invoice", "<div>Thanks</div>")

    assert provider.send_reply("at", _reply_target(), "<div>Thanks</div>")
    assert gmail.calls_to("messages.send")[0]["body"]["threadId"] == "t1"

    gmail.failures["drafts.create"] = 403
    gmail.failures["messages.send"] = 403
    assert provider.create_draft("at", _reply_target(), "x") is None
    assert not provider.send_reply("at", _reply_target(), "x")


def test_encode_reply_headers():
    raw = encode_reply("a@b.com", "Re: Hello", "<b>hi</b>")
    decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode("utf-8")
    assert decoded.startswith("To: a@b.com\r\nSubject: Re: Hello\r\n")
    assert "Content-Type: text/html; charset=utf-8" in decoded
    assert decoded.endswith("\r\n\r\n<b>hi</b>")


# Outlook inbox

def test_outlook_search_filter_and_presets():
    assert outlook_search_filter({"rule_type": "domain", "rule_value": "acme.com"}) == \
        "contains(from/emailAddress/address, '@acme.com')"
    assert outlook_search_filter({
        "rule_type": "keyword", "rule_value": "o'brien", "is_advanced": True,
        "subject_contains": "a", "body_contains": "b",
    }) == ("(contains(subject, 'o''brien') or contains(body/content, 'o''brien'))"
           " and (contains(subject, 'a') and contains(body/content, 'b'))")
    assert hex_to_outlook_preset("#f97316") == "preset1"
    assert hex_to_outlook_preset("#123456") == "preset7"
    assert hex_to_outlook_preset(None) == "preset7"


def test_outlook_search_falls_back_to_rule_filter(session):
    filters = []

    def search(url, **kwargs):
        filters.append(kwargs["params"]["$filter"])
        return FakeResponse(200, {"value": [{"id": "m9"}]} if len(filters) == 2 else {"value": []})

    session.on("GET", f"{GRAPH_URL}/me/messages", search)
    rule = {"rule_type": "sender", "rule_value": "a@b.com"}
    assert MicrosoftProvider("id", "s", session=session).search_unread("at", "1: Urgent", rule) == ["m9"]
    assert filters[0] == "categories/any(c:c eq '1: Urgent') and isRead eq false"
    assert filters[1].startswith("contains(from/emailAddress/address, 'a@b.com') and receivedDateTime ge ")
    assert filters[1].endswith(" and isRead eq false")


def test_outlook_get_message_converts_html(session):
    session.on("GET", f"{GRAPH_URL}/me/messages/m1", FakeResponse(200, {
        "subject": "Hi",
        "from": {"emailAddress": {"address": "a@b.com"}},
        "replyTo": [{"emailAddress": {"address": "team@b.com"}}],
        "body": {"contentType": "html", "content": "<p>Line one</p><p>Line two</p>"},
        "conversationId": "conv-1",
    }))
    message = MicrosoftProvider("id", "s", session=session).get_message("at", "m1")
    assert message.body == "Line one\nLine two"
    assert (message.sender, message.reply_to, message.thread_id) == ("a@b.com", "team@b.com", "conv-1")
    assert MicrosoftProvider("id", "s", session=session).get_message("at", "m2") is None


def test_outlook_tag_creates_category_once(session):
    session.on("GET", f"{GRAPH_URL}/me/outlook/masterCategories", FakeResponse(200, {"value": []}))
    session.on("POST", f"{GRAPH_URL}/me/outlook/masterCategories", FakeResponse(409, {}))
    session.on("GET", f"{GRAPH_URL}/me/messages/", FakeResponse(200, {"categories": ["Blue"]}))
    session.on("PATCH", f"{GRAPH_URL}/me/messages/", FakeResponse(200, {}))
    provider = MicrosoftProvider("id", "s", session=session)

    assert provider.tag_message("at", "m1", "AI Sent", "#F97316")
    assert provider.tag_message("at", "m2", "AI Sent", "#F97316")

    created = session.calls_to("POST", f"{GRAPH_URL}/me/outlook/masterCategories")
    assert len(created) == 1
    assert created[0][2]["json"] == {"displayName": "AI Sent", "color": "preset1"}
    _, url, kwargs = session.calls_to("PATCH", f"{GRAPH_URL}/me/messages/")[-1]
    assert url.endswith("/m2")
    assert kwargs["json"] == {"categories": ["Blue", "AI Sent"]}


def test_outlook_draft_reply_and_mark_read(session):
    session.on("POST", f"{GRAPH_URL}/me/messages/m1/createReply", FakeResponse(201, {"id": "d1"}))
    session.on("POST", f"{GRAPH_URL}/me/messages/m1/reply", FakeResponse(202, {}))
    session.on("PATCH", f"{GRAPH_URL}/me/messages/m1", FakeResponse(200, {}))
    provider = MicrosoftProvider("id", "s", session=session)

    assert provider.create_draft("at", _reply_target(), "<div>Thanks</div>") == "d1"
    _, _, kwargs = session.calls_to("POST", f"{GRAPH_URL}/me/messages/m1/createReply")[0]
    assert kwargs["json"]["message"]["body"] == {"contentType": "HTML", "content": "<div>Thanks</div>"}

    assert provider.send_reply("at", _reply_target(), "<div>Thanks</div>")
    _, _, kwargs = session.calls_to("POST", f"{GRAPH_URL}/me/messages/m1/reply")[0]
    assert kwargs["json"] == {"comment": "<div>Thanks</div>"}

    assert provider.mark_read("at", "m1")
    assert session.calls_to("PATCH", f"{GRAPH_URL}/me/messages/m1")[0][2]["json"] == {"isRead": True}

    other = MailMessage(id="m2")
    assert provider.create_draft("at", other, "x") is None
    assert not provider.send_reply("at", other, "x")
