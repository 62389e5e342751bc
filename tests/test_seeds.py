"""Tests for the seed manager and template loading."""
import json

import pytest

from fuzzkit.config import TargetProfile
from fuzzkit.errors import ConfigError
from fuzzkit.models import RequestTemplate
from fuzzkit.seeds import SeedManager, load_templates, template_from_profile


def _make_template(id="login", **kwargs) -> RequestTemplate:
    defaults = dict(id=id, method="POST", path="/login", body={"user": "a", "ts": 1690000000})
    defaults.update(kwargs)
    return RequestTemplate(**defaults)


# ─── SeedManager ─────────────────────────────────────────────────────────────

def test_next_is_round_robin():
    """next() cycles through templates in load order."""
    seeds = SeedManager([_make_template("a"), _make_template("b"), _make_template("c")])
    ids = [seeds.next().id for _ in range(7)]
    assert ids == ["a", "b", "c", "a", "b", "c", "a"]


def test_empty_template_set_rejected():
    with pytest.raises(ConfigError):
        SeedManager([])


def test_duplicate_ids_rejected():
    with pytest.raises(ConfigError, match="duplicate"):
        SeedManager([_make_template("a"), _make_template("a")])


def test_get_by_id():
    """get() finds templates by id and rejects unknown ids."""
    seeds = SeedManager([_make_template("a"), _make_template("b")])
    assert seeds.get("b").id == "b"
    assert len(seeds) == 2
    with pytest.raises(ConfigError):
        seeds.get("missing")


def test_templates_are_frozen():
    template = _make_template()
    with pytest.raises(Exception):
        template.path = "/other"


# ─── load_templates ──────────────────────────────────────────────────────────

def test_load_templates_bare_list(tmp_path):
    path = tmp_path / "t.json"
    path.write_text(json.dumps([{"path": "/a", "body": {"x": 1}}, {"id": "named", "path": "/b"}]))

    templates = load_templates(path)
    assert [t.id for t in templates] == ["t0", "named"]
    assert templates[0].body == {"x": 1}
    assert templates[1].body is None


def test_load_templates_wrapped(tmp_path):
    """A {"templates": [...]} document is accepted too, freshness fields included."""
    path = tmp_path / "t.json"
    path.write_text(json.dumps({"templates": [{
        "id": "signed",
        "body": {"meta": {"issued_at": 1700000000}},
        "freshness_fields": [{"path": "meta.issued_at"}],
    }]}))

    (template,) = load_templates(path)
    assert template.freshness_fields[0].path == "meta.issued_at"
    assert template.freshness_fields[0].unit == "seconds"


def test_load_templates_invalid_json(tmp_path):
    path = tmp_path / "t.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError, match="invalid JSON"):
        load_templates(path)


def test_load_templates_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_templates(tmp_path / "nope.json")


def test_load_templates_rejects_non_list(tmp_path):
    path = tmp_path / "t.json"
    path.write_text(json.dumps({"path": "/a"}))
    with pytest.raises(ConfigError):
        load_templates(path)


def test_template_from_profile():
    """A profile's endpoint, method and body become a single template."""
    profile = TargetProfile(
        name="sandbox", base_url="http://127.0.0.1:8080", endpoint="v1/pay", method="post",
        body={"amount": 1},
    )
    template = template_from_profile(profile)
    assert template.id == "sandbox"
    assert template.method == "POST"
    assert template.path == "/v1/pay"
    assert template.body == {"amount": 1}
