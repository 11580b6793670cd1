"""Tests for address formatting helpers."""

import pytest

from conversation_sync.addresses import (
    extract_clean_email,
    extract_display_name,
    format_for_display,
    join_clean_emails,
    join_display_names,
    split_addresses,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ('"Jane Doe" <jane@example.com>', "jane@example.com"),
        ("Jane <jane@example.com>", "jane@example.com"),
        ("  jane@example.com  ", "jane@example.com"),
        ("", ""),
        (None, ""),
    ],
)
def test_extract_clean_email(value, expected):
    assert extract_clean_email(value) == expected


@pytest.mark.parametrize(
    "value,expected",
    [
        ('"Jane Doe" <jane@example.com>', "Jane Doe"),
        ("Jane <jane@example.com>", "Jane"),
        ("jane@example.com", "jane@example.com"),
        ("<jane@example.com>", "jane@example.com"),
        (None, ""),
    ],
)
def test_extract_display_name(value, expected):
    assert extract_display_name(value) == expected


def test_format_for_display():
    assert format_for_display('"Jane" <jane@example.com>') == "Jane <jane@example.com>"
    assert (
        format_for_display('"Jane" <jane@example.com>', include_name=False)
        == "jane@example.com"
    )
    assert format_for_display("jane@example.com") == "jane@example.com"
    assert format_for_display("") == ""


def test_split_addresses_keeps_quoted_commas():
    value = '"Doe, Jane" <jane@example.com>, bob@example.com'
    entries = split_addresses(value)
    assert entries == ['"Doe, Jane" <jane@example.com>', "bob@example.com"]
    assert [extract_display_name(e) for e in entries] == ["Doe, Jane", "bob@example.com"]
    assert [extract_clean_email(e) for e in entries] == ["jane@example.com", "bob@example.com"]


def test_split_addresses_empty():
    assert split_addresses("") == []
    assert split_addresses(None) == []


def test_join_recipients():
    value = '"Doe, Jane" <jane@example.com>, Bob <bob@example.com>, carol@example.com'
    assert join_clean_emails(value) == "jane@example.com, bob@example.com, carol@example.com"
    assert join_display_names(value) == "Doe, Jane, Bob, carol@example.com"
    assert join_clean_emails("") == ""
