"""
Tests for {{placeholder}} resolution in action configs.
"""
from pyra_engine.services.template_resolver import render, resolve


class TestRender:

    def test_token_free_string_is_unchanged(self):
        assert render("Invoice paid", {"x": "5"}) == "Invoice paid"

    def test_simple_and_nested_tokens(self):
        payload = {"client_name": "Acme", "invoice": {"number": "INV-7"}}
        assert render("{{client_name}} paid {{invoice.number}}", payload) == "Acme paid INV-7"

    def test_inner_whitespace_is_allowed(self):
        assert render("Hi {{  name }}", {"name": "Sam"}) == "Hi Sam"

    def test_unresolved_token_stays_verbatim(self):
        assert render("For {{client_name}}", {}) == "For {{client_name}}"

    def test_non_string_values_are_stringified(self):
        payload = {"amount": 1200.0, "paid": False, "items": [1, 2], "note": None}
        assert render("{{amount}}|{{paid}}|{{items}}|{{note}}", payload) == "1200|false|[1,2]|"


class TestResolve:

    def test_resolves_flat_config(self):
        assert resolve({"a": "{{x}}"}, {"x": "5"}) == {"a": "5"}

    def test_non_string_scalars_pass_through(self):
        config = {"amount": 10, "enabled": True, "ratio": 0.5, "nothing": None}
        assert resolve(config, {"amount": 99}) == config

    def test_walks_nested_dicts_and_lists(self):
        config = {
            "payload": {"client": "{{client_name}}", "tags": ["{{status}}", "fixed"]},
            "headers": {"X-Project": "{{project_id}}"},
        }
        payload = {"client_name": "Acme", "status": "paid", "project_id": "p-1"}
        assert resolve(config, payload) == {
            "payload": {"client": "Acme", "tags": ["paid", "fixed"]},
            "headers": {"X-Project": "p-1"},
        }

    def test_input_is_not_mutated(self):
        config = {"message": "{{x}}", "nested": {"m": "{{x}}"}}
        resolve(config, {"x": "resolved"})
        assert config == {"message": "{{x}}", "nested": {"m": "{{x}}"}}

    def test_deterministic(self):
        config = {"title": "{{a}}-{{b}}"}
        payload = {"a": 1, "b": "two"}
        assert resolve(config, payload) == resolve(config, payload) == {"title": "1-two"}
