from datetime import date, datetime, timedelta, timezone

import pytest

from doctrack.core.clock import as_naive_utc, day_bounds, months_ago
from doctrack.core.exceptions import AccessDenied, format_validation_errors
from doctrack.core.tokens import CHARSET, generate_share_token
from doctrack.utils.privacy import hash_ip, normalize_ip, retention_date
from doctrack.utils.user_agent import parse_user_agent

from conftest import CHROME_UA


@pytest.mark.parametrize("raw, expected", [
    ("203.0.113.10", "203.0.113.10"),
    (" 203.0.113.10 ", "203.0.113.10"),
    ("::ffff:203.0.113.10", "203.0.113.10"),
    ("[2001:DB8::1]", "2001:db8::1"),
    ("2001:0db8:0000:0000:0000:0000:0000:0001", "2001:db8::1"),
    ("unknown", "unknown"),
])
def test_normalize_ip(raw, expected):
    assert normalize_ip(raw) == expected


def test_hash_ip_is_salted_and_stable():
    first = hash_ip("203.0.113.10", salt="a")

    assert first == hash_ip("::ffff:203.0.113.10", salt="a")
    assert first != hash_ip("203.0.113.10", salt="b")
    assert first != hash_ip("203.0.113.11", salt="a")
    assert len(first) == 64
    assert "203.0.113.10" not in first


def test_hash_ip_uses_configured_salt():
    assert hash_ip("203.0.113.10") == hash_ip("203.0.113.10", salt="test-salt")


def test_retention_date():
    assert retention_date(datetime(2024, 1, 1), days=90) == datetime(2024, 3, 31)


@pytest.mark.parametrize("user_agent, device, browser, os_name", [
    (CHROME_UA, "desktop", "Chrome", "Windows"),
    ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
     "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1", "mobile", "Safari", "iOS"),
    ("Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/120.0 Safari/537.36", "tablet", "Chrome", "Android"),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_1) AppleWebKit/537.36 (KHTML, like Gecko) "
     "Chrome/120.0 Safari/537.36 Edg/120.0", "desktop", "Edge", "macOS"),
    ("Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0", "desktop", "Firefox", "Linux"),
    ("Googlebot/2.1 (+http://www.google.com/bot.html)", "bot", "Other", "Other"),
    ("", "unknown", "Other", "Other"),
])
def test_parse_user_agent(user_agent, device, browser, os_name):
    info = parse_user_agent(user_agent)
    assert (info.device, info.browser, info.os) == (device, browser, os_name)


@pytest.mark.parametrize("now, months, expected", [
    (datetime(2024, 6, 15, 12), 1, datetime(2024, 5, 15, 12)),
    (datetime(2024, 3, 31), 1, datetime(2024, 2, 29)),
    (datetime(2023, 3, 31), 1, datetime(2023, 2, 28)),
    (datetime(2024, 1, 10), 12, datetime(2023, 1, 10)),
    (datetime(2024, 2, 15), 3, datetime(2023, 11, 15)),
])
def test_months_ago(now, months, expected):
    assert months_ago(now, months) == expected


def test_day_bounds():
    assert day_bounds(date(2024, 12, 31)) == (datetime(2024, 12, 31), datetime(2025, 1, 1))


def test_format_validation_errors():
    errors = [
        {"loc": ("body", "page"), "msg": "Input should be greater than or equal to 1"},
        {"loc": ("body",), "msg": "Page exceeds total pages"},
    ]
    assert format_validation_errors(errors) == [
        {"field": "page", "message": "Input should be greater than or equal to 1"},
        {"field": None, "message": "Page exceeds total pages"},
    ]


def test_access_denied_reasons():
    denied = AccessDenied("expired")
    assert (denied.status_code, denied.message) == (410, "Share link has expired")

    with pytest.raises(ValueError):
        AccessDenied("nope")


def test_share_token_alphabet():
    token = generate_share_token()
    assert len(token) == 12
    assert set(token) <= set(CHARSET)


def test_as_naive_utc():
    aware = datetime(2024, 6, 15, 17, 0, tzinfo=timezone(timedelta(hours=5)))

    assert as_naive_utc(aware) == datetime(2024, 6, 15, 12, 0)
    assert as_naive_utc(datetime(2024, 6, 15, 12, 0)) == datetime(2024, 6, 15, 12, 0)
    assert as_naive_utc(None) is None
