"""Tests for contact file parsing."""

import pytest

from channelflow.exceptions import InvalidDefinitionError
from channelflow.services.contacts import parse_contact_file


class TestParseContactFile:
    def test_basic_file(self):
        contacts = parse_contact_file("name,email\nAda,ada@example.com\nGrace,grace@example.com\n")

        assert contacts == [
            {"id": "ada@example.com", "name": "Ada", "email": "ada@example.com"},
            {"id": "grace@example.com", "name": "Grace", "email": "grace@example.com"},
        ]

    def test_headers_are_case_insensitive(self):
        contacts = parse_contact_file(" Email ,NAME\nada@example.com,Ada\n")

        assert contacts[0]["email"] == "ada@example.com"
        assert contacts[0]["name"] == "Ada"

    def test_explicit_ids_are_kept(self):
        contacts = parse_contact_file("id,email\nlead-1,ada@example.com\n,grace@example.com\n")

        assert [c["id"] for c in contacts] == ["lead-1", "grace@example.com"]

    def test_missing_name_gets_default(self):
        contacts = parse_contact_file("email,name\nada@example.com,\n")

        assert contacts[0]["name"] == "Valued Customer"

    def test_rows_without_email_are_dropped(self):
        contacts = parse_contact_file("name,email\nAda,\nGrace,grace@example.com\n")

        assert [c["email"] for c in contacts] == ["grace@example.com"]

    def test_duplicates_are_dropped(self):
        contacts = parse_contact_file("email\nada@example.com\nada@example.com\n")

        assert len(contacts) == 1

    def test_email_column_required(self):
        with pytest.raises(InvalidDefinitionError, match="email"):
            parse_contact_file("name,phone\nAda,123\n")

    def test_empty_content(self):
        assert parse_contact_file("   ") == []
