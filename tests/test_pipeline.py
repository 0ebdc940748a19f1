import json
import random
import sys

import pytest

import tokstat_analyzer
from tokstat_analyzer import (
    BUNDLE_SCHEMA,
    OUTPUT_SCHEMA,
    analyze,
    format_json,
    format_llm,
    load_documents,
    print_report,
    run_cohorted,
)
from tokstat_errors import ConfigError, InputError
from tokstat_pricing import ModelPricing, custom_pricing, get_pricing, resolve_pricing

DOCS = [
    {"title": "first", "status": "completed", "notes": None, "rows": [{"k": 1}, {"k": 2}]},
    {"title": "second", "status": "completed", "notes": None, "rows": [{"k": 3}]},
    {"title": "third", "status": "completed", "notes": "n", "rows": []},
]
EVENTS = [{"event": "click", "ts": i, "meta": {"x": i}} for i in range(3)]


def test_summary_scale_projection(lex, pricing, rng):
    out = analyze(DOCS, pricing, lex, rng=rng)
    s = out.summary
    assert s.file_count == 3
    assert s.cost_per_instance == pytest.approx(s.avg_tokens_per_instance * 10 / 1_000_000)
    assert s.cost_at_1m == pytest.approx(s.cost_per_instance * 1_000_000)
    assert s.cost_at_10k == pytest.approx(s.cost_at_1k * 10)
    assert s.corpus_total_cost == pytest.approx(s.cost_per_instance * 3)
    assert s.avg_tokens_per_instance == out.tree.tokens.total.avg
    assert s.tokenizer == "approx_json_lex"
    assert s.model == "test-model"


def test_ratios_within_bounds(lex, pricing):
    s = analyze(DOCS, pricing, lex).summary
    assert 0 <= s.overhead_ratio <= 1
    assert 0 < s.null_waste_ratio <= 1
    assert s.overhead_ratio + s.null_waste_ratio <= 1


def test_top_insights_are_the_first_five(lex, pricing):
    out = analyze(DOCS, pricing, lex)
    assert out.summary.top_insights == out.insights[:5]


def test_tokenizer_name_override(chars, pricing):
    s = analyze(DOCS, pricing, chars, tokenizer_name="custom").summary
    assert s.tokenizer == "custom"


def test_empty_corpus(lex, pricing):
    with pytest.raises(InputError):
        analyze([], pricing, lex)


def test_invalid_price(lex):
    with pytest.raises(ConfigError):
        analyze(DOCS, ModelPricing("m", "test", float("nan"), "x"), lex)
    with pytest.raises(ConfigError):
        analyze(DOCS, ModelPricing("m", "test", -1.0, "x"), lex)


def test_pricing_lookup():
    assert get_pricing("gpt-4o").output_per_1m == 10.0
    with pytest.raises(ConfigError):
        get_pricing("not-a-model")
    with pytest.raises(ConfigError):
        custom_pricing("m", -0.5)
    with pytest.raises(ConfigError):
        custom_pricing("m", float("inf"))
    assert custom_pricing("m", 0.002).output_per_1m == pytest.approx(2.0)


def test_resolve_pricing():
    assert resolve_pricing("gpt-4o", tokenizer="cl100k_base").tokenizer == "cl100k_base"
    custom = resolve_pricing("mine", cost_per_1k=0.01)
    assert custom.provider == "custom"
    assert custom.tokenizer == "o200k_base"


def test_ignore_patterns_reported(lex, pricing):
    full = analyze(DOCS, pricing, lex)
    trimmed = analyze(DOCS, pricing, lex, ignore=["root.rows"])
    assert trimmed.summary.ignored_fields == 3
    assert [c.name for c in trimmed.tree.children] == ["title", "status", "notes"]
    assert trimmed.summary.avg_tokens_per_instance < full.summary.avg_tokens_per_instance


def test_output_to_dict(lex, pricing):
    data = json.loads(format_json(analyze(DOCS, pricing, lex, source="docs/*.json")))
    assert data["schema"] == OUTPUT_SCHEMA
    assert data["summary"]["source"] == "docs/*.json"
    assert data["tree"]["path"] == "root"
    assert isinstance(data["insights"], list)


def test_run_cohorted(lex, pricing):
    docs = DOCS + EVENTS
    bundle = run_cohorted(docs, pricing, lex, rng=random.Random(0))
    assert bundle.combined.summary.file_count == 6
    assert [c.file_count for c in bundle.cohorts] == [3, 3]
    assert bundle.mixed_schema_detected
    for cohort in bundle.cohorts:
        assert bundle.per_cohort[cohort.id].summary.file_count == cohort.file_count
    data = json.loads(format_json(bundle))
    assert data["schema"] == BUNDLE_SCHEMA
    assert data["cohorting"]["cohort_count"] == 2
    assert data["cohorts"][0]["report"]["schema"] == OUTPUT_SCHEMA


def test_run_cohorted_exact_strategy(lex, pricing):
    bundle = run_cohorted(DOCS, pricing, lex, strategy="exact")
    assert len(bundle.cohorts) == 1
    assert bundle.threshold is None
    assert not bundle.mixed_schema_detected


def test_run_cohorted_unknown_strategy(lex, pricing):
    with pytest.raises(ValueError):
        run_cohorted(DOCS, pricing, lex, strategy="random")


def test_format_llm(lex, pricing):
    text = format_llm(analyze(DOCS, pricing, lex))
    assert text.startswith("tokstat analysis: 3 files, test-model")
    assert "HEADLINE:" in text
    assert "SCALE:" in text
    assert "TOP SAVINGS:" in text


def test_print_report(lex, pricing, capsys):
    print_report(analyze(DOCS, pricing, lex), label="docs")
    out = capsys.readouterr().out
    assert "root" in out
    assert "At scale:" in out
    assert "Insights" in out


def test_load_documents(tmp_path):
    (tmp_path / "b.json").write_text(json.dumps({"b": 1}), encoding="utf-8")
    (tmp_path / "a.json").write_text(json.dumps({"a": 1}), encoding="utf-8")
    paths, docs = load_documents([str(tmp_path / "*.json")])
    assert [p.rsplit("/", 1)[-1] for p in paths] == ["a.json", "b.json"]
    assert docs == [{"a": 1}, {"b": 1}]


def test_load_documents_errors(tmp_path):
    with pytest.raises(InputError):
        load_documents([str(tmp_path / "*.json")])
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(InputError, match="bad.json"):
        load_documents([str(bad)])


def _main(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["tokstat", *argv])
    with pytest.raises(SystemExit) as exc:
        tokstat_analyzer.main()
    return exc.value.code


def test_cli_json_output(tmp_path, monkeypatch, capsys):
    for i, doc in enumerate(DOCS):
        (tmp_path / f"{i}.json").write_text(json.dumps(doc), encoding="utf-8")
    out_file = tmp_path / "out.json"
    code = _main(
        monkeypatch, str(tmp_path / "*.json"),
        "--tokenizer", "approx_json_lex", "--format", "json", "--out", str(out_file),
    )
    assert code == 0
    data = json.loads(out_file.read_text(encoding="utf-8"))
    assert data["summary"]["file_count"] == 3
    assert data["summary"]["tokenizer"] == "approx_json_lex"


def test_cli_cohorts_report(tmp_path, monkeypatch, capsys):
    for i, doc in enumerate(DOCS + EVENTS):
        (tmp_path / f"{i}.json").write_text(json.dumps(doc), encoding="utf-8")
    code = _main(
        monkeypatch, str(tmp_path / "*.json"), "--tokenizer", "approx_json_lex", "--cohorts",
    )
    assert code == 0
    assert "Cohorts: 2" in capsys.readouterr().out


def test_cli_unknown_model(tmp_path, monkeypatch, capsys):
    (tmp_path / "a.json").write_text("{}", encoding="utf-8")
    code = _main(monkeypatch, str(tmp_path / "a.json"), "--model", "nope")
    assert code == 2
    assert "Unknown model" in capsys.readouterr().err


def test_cli_no_files(tmp_path, monkeypatch, capsys):
    code = _main(
        monkeypatch, str(tmp_path / "*.json"), "--tokenizer", "approx_json_lex",
    )
    assert code == 2
    assert capsys.readouterr().err.startswith("Error: No files matched")


def test_cli_missing_patterns(monkeypatch):
    assert _main(monkeypatch) == 2


def test_cli_self_test(monkeypatch, capsys):
    assert _main(monkeypatch, "--test") == 0
    assert "tests passed" in capsys.readouterr().out
